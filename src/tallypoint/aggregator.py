from __future__ import annotations

import logging
import queue
import threading
import time
from collections import defaultdict
from typing import Callable, DefaultDict, Dict, List, NamedTuple, Optional

import requests

from tallypoint.auth import basic_header
from tallypoint.errors import DeliveryFailure
from tallypoint.models import BucketKey, Record, bucket_for

log = logging.getLogger(__name__)


class MatchEvent(NamedTuple):
    filter_id: str
    metric: int
    increment: int


class ProcessingUnit:
    """
    Lifecycle seen by a unit hosted in a stream engine.

    The host guarantees on_event and on_tick never run concurrently.
    """

    def on_start(self) -> None:
        pass

    def on_event(self, event: MatchEvent) -> None:
        raise NotImplementedError

    def on_tick(self) -> None:
        pass

    def on_stop(self) -> None:
        pass


class FlushSink:
    def send(self, filter_id: str, records: List[Record]) -> None:
        raise NotImplementedError


class HttpFlushSink(FlushSink):
    """PUTs a batch to the registry merge endpoint."""

    def __init__(self, base_url: str, user: str, password: str, timeout: float = 2.0, retries: int = 0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = max(0, retries)
        self.session = session or requests.Session()
        self.headers = {"Authorization": basic_header(user, password), "Content-Type": "text/plain"}

    def send(self, filter_id: str, records: List[Record]) -> None:
        url = f"{self.base_url}/filter/{filter_id}/result"
        body = "\n".join(rec.to_line() for rec in records)
        last: Optional[Exception] = None
        for _ in range(self.retries + 1):
            try:
                resp = self.session.put(url, data=body.encode("utf-8"), headers=self.headers, timeout=self.timeout)
            except requests.RequestException as exc:
                last = exc
                continue
            if resp.status_code >= 400:
                last = DeliveryFailure(f"invalid status {resp.status_code}")
                # the registry has no such filter; another attempt cannot help
                if resp.status_code < 500:
                    break
                continue
            return
        raise DeliveryFailure(f"failed to write {len(records)} records for {filter_id}: {last}")


class MetricAggregator(ProcessingUnit):
    """
    Accumulates match events into minute buckets and flushes them on tick.

    The table is cleared after every flush whether or not delivery worked;
    a failed batch is logged and lost.
    """

    def __init__(self, sink: FlushSink, clock: Callable[[], float] = time.time):
        self.sink = sink
        self.clock = clock
        self.pending: Dict[BucketKey, int] = {}
        self.flushed = 0
        self.dropped = 0

    def on_event(self, event: MatchEvent) -> None:
        key = BucketKey(event.filter_id, int(event.metric), bucket_for(self.clock()))
        self.pending[key] = self.pending.get(key, 0) + int(event.increment)

    def on_tick(self) -> None:
        self.flush()

    def on_stop(self) -> None:
        self.flush()

    def flush(self) -> None:
        if not self.pending:
            return
        batches: DefaultDict[str, List[Record]] = defaultdict(list)
        for key, count in self.pending.items():
            batches[key.filter_id].append(Record(key.metric, key.bucket, count))
        self.pending.clear()

        for filter_id, records in batches.items():
            try:
                self.sink.send(filter_id, records)
                self.flushed += len(records)
            except DeliveryFailure as exc:
                self.dropped += len(records)
                log.error("Failed to write data to supervisor: %s", exc)


class UnitRunner:
    """
    Hosts one processing unit on a worker thread.

    Events queue up and are handed to the unit one at a time; a tick fires
    every ``tick_interval`` seconds between events. Events are dropped when
    the queue is full.
    """

    _STOP = object()

    def __init__(self, unit: ProcessingUnit, tick_interval: float = 1.0, max_q: int = 8000):
        self.unit = unit
        self.tick_interval = tick_interval
        self.q: "queue.Queue[object]" = queue.Queue(maxsize=max_q)
        self.dropped = 0
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self.unit.on_start()
        self._thread = threading.Thread(target=self._worker, daemon=True)
        self._thread.start()

    def submit(self, event: MatchEvent) -> bool:
        try:
            self.q.put_nowait(event)
            return True
        except queue.Full:
            # drop under pressure
            self.dropped += 1
            return False

    def stop(self, timeout: Optional[float] = None) -> None:
        if self._thread is None:
            return
        self.q.put(self._STOP)
        self._thread.join(timeout)
        self._thread = None

    def _worker(self) -> None:
        next_tick = time.monotonic() + self.tick_interval
        while True:
            wait = max(0.0, next_tick - time.monotonic())
            try:
                item = self.q.get(timeout=wait)
            except queue.Empty:
                item = None
            if item is self._STOP:
                self.unit.on_stop()
                return
            if item is not None:
                self._call(self.unit.on_event, item)
            if time.monotonic() >= next_tick:
                self._call(self.unit.on_tick)
                next_tick = time.monotonic() + self.tick_interval

    @staticmethod
    def _call(fn, *args) -> None:
        try:
            fn(*args)
        except Exception:
            log.exception("processing unit hook %s failed", getattr(fn, "__name__", fn))
