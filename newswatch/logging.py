"""JSON log lines carrying the id of the job being processed."""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, FrozenSet, Optional

_JOB_ID: ContextVar[Optional[str]] = ContextVar("job_id", default=None)

# Attributes every LogRecord has; anything else arrived through ``extra``.
_RECORD_FIELDS: FrozenSet[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}

_QUIET_LOGGERS = ("httpx", "httpcore", "botocore", "boto3", "urllib3")


class JsonFormatter(logging.Formatter):
    """Render a record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "event": record.getMessage(),
            "logger": record.name,
        }
        job_id = getattr(record, "job_id", None) or _JOB_ID.get()
        if job_id:
            payload["job_id"] = job_id
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_FIELDS and key != "job_id"
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level_name: str) -> None:
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    # httpx logs every request at INFO.
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def bind_job_context(job_id: str) -> Token:
    """Tag every record logged by the current task with ``job_id``."""

    return _JOB_ID.set(job_id)


def reset_job_context(token: Optional[Token]) -> None:
    if token is not None:
        _JOB_ID.reset(token)
