import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from .config import settings

logger = logging.getLogger("fabtrack")
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
logger.setLevel(getattr(logging, settings.LOG_LEVEL.strip().upper(), logging.INFO))
logger.propagate = False


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def log_event(event: str, level: str = "info", **payload: Any) -> None:
    record = {"ts": _utc_now_iso(), "event": event, **payload}
    if settings.LOG_FORMAT.strip().lower() == "json":
        msg = json.dumps(record, ensure_ascii=False, default=str)
    else:
        msg = f"{record['ts']} {event} {payload}"
    fn = getattr(logger, level, logger.info)
    fn(msg)
