from __future__ import annotations

import logging
from typing import List, NamedTuple, Optional

from tallypoint.models import Record
from tallypoint.store import FilterStore

log = logging.getLogger(__name__)


class IngestResult(NamedTuple):
    ack: int
    lines: int


def parse_record(line: str) -> Optional[Record]:
    """
    Parse one "<metric> <bucket> <count>" line.
    Returns None for anything else, including blank lines.
    """
    parts = line.split()
    if len(parts) != 3:
        return None
    try:
        metric, bucket, count = (int(p) for p in parts)
    except ValueError:
        return None
    return Record(metric, bucket, count)


def ingest_batch(store: FilterStore, filter_id: str, body: str) -> IngestResult:
    lines = body.split("\n")
    if lines[-1] == "":
        lines.pop()
    records: List[Record] = []
    for line in lines:
        rec = parse_record(line)
        if rec is None:
            log.debug("skipping malformed record for %s: %r", filter_id, line)
            continue
        records.append(rec)

    ack = store.merge_results(filter_id, records)
    if ack != len(lines):
        log.info("filter %s: merged %d of %d lines", filter_id, ack, len(lines))
    return IngestResult(ack=ack, lines=len(lines))
