from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

import requests

from tallypoint.auth import basic_header
from tallypoint.errors import RegistryError
from tallypoint.models import Filter, Record, Results


class RegistryClient:
    """Thin requests wrapper around the supervisor's filter API."""

    def __init__(self, base_url: str, user: str, password: str, timeout: float = 5.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers["Authorization"] = basic_header(user, password)

    def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise RegistryError(f"{method} {url} failed: {exc}") from exc
        try:
            doc = resp.json()
        except ValueError:
            raise RegistryError(f"{method} {url}: HTTP {resp.status_code} {resp.text.strip()}")
        if not isinstance(doc, dict) or doc.get("status") != "ok":
            message = doc.get("message") if isinstance(doc, dict) else None
            raise RegistryError(message or f"{method} {url}: HTTP {resp.status_code}")
        return doc

    def health(self) -> str:
        return self._call("GET", "/")["hello"]

    def create_filter(self, name: str, regex: str) -> str:
        return self._call("POST", "/filter", params={"name": name, "regex": regex})["filter_id"]

    def list_filters(self) -> List[Filter]:
        return [Filter.model_validate(obj) for obj in self._call("GET", "/filter")["filters"]]

    def results(self, filter_id: str) -> Results:
        raw = self._call("GET", f"/filter/{filter_id}/result")["results"] or {}
        return {int(m): {int(b): int(c) for b, c in series.items()} for m, series in raw.items()}

    def put_results(self, filter_id: str, records: Iterable[Record]) -> Dict[str, int]:
        body = "\n".join(rec.to_line() for rec in records)
        doc = self._call("PUT", f"/filter/{filter_id}/result", data=body.encode("utf-8"))
        return {"ack": doc["ack"], "lines": doc["lines"]}

    def delete_filter(self, filter_id: str) -> bool:
        return bool(self._call("DELETE", f"/filter/{filter_id}")["deleted"])
