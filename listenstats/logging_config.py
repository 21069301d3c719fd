import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# Exposed so other modules can set/request ids
req_id_var: ContextVar[str] = ContextVar("req_id", default="-")

# Lightweight in-process error ring buffer, exposed on /api/debug/errors in dev
_ERRORS: list[dict[str, Any]] = []
_MAX_ERRORS = 200

_SENSITIVE_META_KEYS = {"access_token", "refresh_token", "authorization", "code"}


def _scrub(meta: Any) -> Any:
    if not isinstance(meta, dict):
        return meta
    return {
        k: ("***" if k.lower() in _SENSITIVE_META_KEYS and v else v)
        for k, v in meta.items()
    }


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "req_id": getattr(record, "req_id", req_id_var.get()),
            "level": record.levelname,
            "component": record.name,
            "msg": record.getMessage(),
        }
        env = os.getenv("ENV", "").strip()
        if env:
            payload["env"] = env
        if hasattr(record, "meta"):
            payload["meta"] = _scrub(record.meta)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        try:
            return json.dumps(payload, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return payload.get("msg", "")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Propagate request id from context-var into every log line
        record.req_id = req_id_var.get()
        return True


class _ErrorBufferHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - IO free
        if record.levelno < logging.ERROR:
            return
        item = {
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "component": record.name,
            "msg": record.getMessage(),
            "req_id": getattr(record, "req_id", "-"),
        }
        _ERRORS.append(item)
        if len(_ERRORS) > _MAX_ERRORS:
            # keep newest
            del _ERRORS[: len(_ERRORS) - _MAX_ERRORS]


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """
    Call once at app startup.
    LOG_LEVEL env var controls verbosity (default INFO).
    LOG_FORMAT=text switches from JSON lines to a human-readable format.
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    fmt = (fmt or os.getenv("LOG_FORMAT", "json")).lower()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    # Clear existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    request_id_filter = RequestIdFilter()

    if fmt == "text":
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(req_id)s] %(message)s"
        )
    else:
        formatter = JsonFormatter()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    stderr_handler.addFilter(request_id_filter)
    root_logger.addHandler(stderr_handler)

    error_handler = _ErrorBufferHandler()
    error_handler.addFilter(request_id_filter)
    root_logger.addHandler(error_handler)

    # Reduce third-party verbosity unless LOG_LEVEL is DEBUG
    if level != "DEBUG":
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("asyncio").setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        "logging configured", extra={"meta": {"level": level, "format": fmt}}
    )


def get_last_errors(n: int = 50) -> list[dict[str, Any]]:
    """Return the last ``n`` buffered error records."""
    return _ERRORS[-int(n):] if n > 0 else []


def clear_errors() -> None:
    """Clear the error buffer."""
    _ERRORS.clear()
