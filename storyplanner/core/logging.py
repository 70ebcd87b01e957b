import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from storyplanner.core.request_context import get_item_id, get_operation, get_request_id

# Attributes every LogRecord has; anything else on a record came from `extra=`.
_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
    "taskName",
}
_CONTEXT_ATTRS = ("request_id", "operation", "item_id")


class RequestIdFilter(logging.Filter):
    """Stamp records with the request id and the orchestration scope, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "unknown"
        record.operation = get_operation() or ""
        record.item_id = get_item_id() or ""
        return True


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per line: fixed fields, then any `extra=` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "unknown"),
            "operation": getattr(record, "operation", ""),
        }
        if getattr(record, "item_id", ""):
            payload["item_id"] = record.item_id
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS
            and key not in _CONTEXT_ATTRS
            and not key.startswith("_")
            and value is not None
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info
        try:
            return json.dumps(payload, default=str)
        except (TypeError, ValueError):
            return super().format(record)


def _structured(handler: logging.Handler, formatter: logging.Formatter) -> logging.Handler:
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    return handler


def configure_logging(level_name: str, log_file: str | None = None) -> None:
    """Install the JSON formatter on the root logger, replacing existing handlers."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = StructuredJsonFormatter(datefmt="%Y-%m-%dT%H:%M:%S%z")
    root_logger.addHandler(_structured(logging.StreamHandler(), formatter))
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
        root_logger.addHandler(_structured(file_handler, formatter))

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    # The SDK logs every HTTP exchange at INFO.
    logging.getLogger("google_genai").setLevel(logging.WARNING)
