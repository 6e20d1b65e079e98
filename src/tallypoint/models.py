from __future__ import annotations

import time
from enum import IntEnum
from typing import Dict, NamedTuple, Optional

from pydantic import BaseModel, Field

BUCKET_S = 60


class Metric(IntEnum):
    MATCH = 1
    ERROR = 2


# metric -> bucket -> count
Results = Dict[int, Dict[int, int]]


class Filter(BaseModel):
    id: str
    name: str
    owner: str = ""                # originating address
    pattern: str
    results: Results = Field(default_factory=dict)

    def without_results(self) -> "Filter":
        return self.model_copy(update={"results": {}})


class Record(NamedTuple):
    metric: int
    bucket: int
    count: int

    def to_line(self) -> str:
        return f"{self.metric} {self.bucket} {self.count}"


class BucketKey(NamedTuple):
    filter_id: str
    metric: int
    bucket: int


def bucket_for(ts: Optional[float] = None) -> int:
    """Floor a unix timestamp to its minute bucket."""
    if ts is None:
        ts = time.time()
    ts = int(ts)
    return ts - (ts % BUCKET_S)
