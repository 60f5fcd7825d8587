# meal_audit/logging_setup.py
import json
import logging
import sys
from contextvars import ContextVar

request_id_ctx: ContextVar[str] = ContextVar("request_id", default="")

EXTRA_FIELDS = (
    "path",
    "method",
    "status",
    "duration_ms",
    "client_ip",
    "fingerprint",
    "cache",
    "kind",
    "state",
    "language",
    "items",
)


def safe_log_message(record: logging.LogRecord) -> str:
    """Make formatter never crash on weird msg/args."""
    try:
        if isinstance(record.msg, (dict, list)):
            return json.dumps(record.msg, ensure_ascii=False)
        return record.getMessage()
    except Exception:
        try:
            return str(record.msg)
        except Exception:
            return repr(record.msg)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": safe_log_message(record),
        }

        req_id = request_id_ctx.get()
        if req_id:
            log_data["request_id"] = req_id

        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
