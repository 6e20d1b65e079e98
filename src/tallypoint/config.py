from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _env_float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


@dataclass
class Settings:
    host: str = "127.0.0.1"
    port: int = 1525
    auth_user: str = "cloud"
    auth_password: str = "pelican"
    db_file: Optional[str] = None      # snapshot path; None keeps state in memory only
    access_log: Optional[str] = None   # JSON lines, one per request
    log_level: str = "info"
    supervisor_url: str = "http://127.0.0.1:1525"
    flush_timeout: float = 2.0
    flush_retries: int = 0
    tick_s: float = 1.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            host=os.getenv("TALLY_HOST", "127.0.0.1"),
            port=int(os.getenv("TALLY_PORT", "1525")),
            auth_user=os.getenv("TALLY_AUTH_USER", "cloud"),
            auth_password=os.getenv("TALLY_AUTH_PASSWORD", "pelican"),
            db_file=os.getenv("TALLY_DB_FILE", "").strip() or None,
            access_log=os.getenv("TALLY_ACCESS_LOG", "").strip() or None,
            log_level=os.getenv("TALLY_LOG_LEVEL", "info"),
            supervisor_url=os.getenv("TALLY_SUPERVISOR_URL", "http://127.0.0.1:1525"),
            flush_timeout=_env_float("TALLY_FLUSH_TIMEOUT", "2.0"),
            flush_retries=int(os.getenv("TALLY_FLUSH_RETRIES", "0")),
            tick_s=_env_float("TALLY_TICK_S", "1.0"),
        )


def configure_logging(level: str = "info") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
