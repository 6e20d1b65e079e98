from __future__ import annotations

import json
import threading
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


class AccessLogMiddleware(BaseHTTPMiddleware):
    """
    Writes one JSON line per registry request.
    Credentials and bodies are never recorded.
    """
    def __init__(self, app, *, path: str):
        super().__init__(app)
        self.path = path
        self._lock = threading.Lock()

    async def dispatch(self, request: Request, call_next):
        start = time.time()
        request_id = uuid.uuid4().hex
        status = 500
        try:
            resp = await call_next(request)
            status = resp.status_code
            resp.headers["x-tallypoint-request-id"] = request_id
            return resp
        finally:
            dur_ms = (time.time() - start) * 1000.0
            record = {
                "ts": time.time(),
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "query": str(request.url.query),
                "client": request.client.host if request.client else None,
                "ua": request.headers.get("user-agent"),
                "status": int(status),
                "duration_ms": round(dur_ms, 3),
            }
            self._append(record)

    def _append(self, record: dict) -> None:
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record) + "\n")
