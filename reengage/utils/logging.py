"""
Structured JSON logging with correlation IDs.

Every log line is one JSON object: timestamp, level, correlation_id, module,
message, plus any campaign fields known at the time of the call.

An HTTP request gets its correlation ID from middleware. A scheduler pass or
a notification job opens a log_run(), which gives it a fresh ID and binds
fields such as campaign_id and level to every line logged inside it.
"""
import json
import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
log_fields_ctx: ContextVar[Optional[dict]] = ContextVar("log_fields", default=None)

# Extra fields copied from `logger.x(..., extra={...})` into the JSON line
EXTRA_FIELDS = ("user_id", "campaign_id", "notification_id", "job_id", "campaign_level", "error_code")


def get_correlation_id() -> Optional[str]:
    return correlation_id_ctx.get()


def set_correlation_id(cid: str) -> None:
    correlation_id_ctx.set(cid)


def generate_correlation_id() -> str:
    """UUID4 hex, 32 chars."""
    return uuid.uuid4().hex


def get_log_fields() -> dict:
    return dict(log_fields_ctx.get() or {})


def bind_log_fields(**fields) -> None:
    """Attach fields to the current run, e.g. user_id once the campaign is loaded."""
    log_fields_ctx.set({**get_log_fields(), **fields})


@contextmanager
def log_run(**fields):
    """
    Scope one scheduler pass or job execution: new correlation ID, bound
    fields. Both are restored when the block exits.
    """
    cid_token = correlation_id_ctx.set(generate_correlation_id())
    fields_token = log_fields_ctx.set({**get_log_fields(), **fields})
    try:
        yield
    finally:
        log_fields_ctx.reset(fields_token)
        correlation_id_ctx.reset(cid_token)


class StructuredJsonFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Bound run fields come first; `extra=` values on the call override them.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "correlation_id": get_correlation_id(),
            "module": record.name,
            "message": record.getMessage(),
        }
        log_entry.update(get_log_fields())

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_entry[key] = val

        return json.dumps(log_entry, default=str)


def configure_structured_logging(log_level: str = "INFO") -> None:
    """Install the JSON formatter on the root logger. Call once at startup."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(StructuredJsonFormatter())
    root_logger.addHandler(stream_handler)

    # Per-request access lines and SQL echo drown out campaign events
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpcore", "httpx"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
