# FILE: weblog/logging.py
from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import sys
import traceback
from typing import Any, Dict, Iterable, Mapping, MutableMapping, Optional, Set, Tuple, Union

from .levels import LogLevel

# Logger name (and SourceContext property) for request events.
SOURCE_CONTEXT = "weblog.requests"

# ---------- Module-level config (env-driven, safe defaults) ----------
_LOG_SCHEMA = os.environ.get("WEBLOG_LOG_SCHEMA", "weblog.log.v1")
_LOG_SERVICE = os.environ.get("WEBLOG_SERVICE", "weblog")

# Max chars per string field (truncate to keep JSON small)
try:
    _MAX_FIELD = int(os.environ.get("WEBLOG_LOG_MAX_FIELD", "8192"))
    _MAX_FIELD = max(512, _MAX_FIELD)
except Exception:
    _MAX_FIELD = 8192

_INCLUDE_STACK = os.environ.get("WEBLOG_LOG_INCLUDE_STACK", "1") == "1"

# Event properties promoted to top-level JSON fields, in output order.
_EVENT_FIELDS: Tuple[str, ...] = (
    "SourceContext",
    "MessageTemplate",
    "Method",
    "RawUrl",
    "StatusCode",
    "ElapsedMilliseconds",
    "FormData",
)

# Standard LogRecord attributes that are not treated as dynamic properties
_LOG_RECORD_STD_ATTRS: Set[str] = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "message",
    "asctime",
}


# ---------- Event logger (the structured logger boundary) ----------


def _destructure(value: Any) -> Any:
    """Turn structured values into plain JSON-friendly containers."""
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, Mapping):
        return {str(k): _destructure(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_destructure(v) for v in value]
    return value


class EventLogger(logging.LoggerAdapter):
    """
    Logger carrying a set of named event properties.

    Properties are merged into ``extra`` of every record, so they show up
    as attributes on the ``LogRecord`` (and as fields in JSON output).
    ``with_context`` returns a derived logger; the original is untouched.
    """

    def __init__(
        self,
        logger: Union[logging.Logger, logging.LoggerAdapter],
        properties: Optional[Mapping[str, Any]] = None,
    ):
        props: Dict[str, Any] = {}
        # Flatten adapter chains; stdlib adapters would overwrite our extra.
        while isinstance(logger, logging.LoggerAdapter):
            props = {**dict(logger.extra or {}), **props}
            logger = logger.logger
        props.update(properties or {})
        super().__init__(logger, props)

    @property
    def properties(self) -> Dict[str, Any]:
        return dict(self.extra)

    def is_enabled(self, level: Union[int, LogLevel]) -> bool:
        return self.isEnabledFor(int(level))

    def with_context(self, name: str, value: Any, destructure: bool = False) -> "EventLogger":
        props = dict(self.extra)
        props[name] = _destructure(value) if destructure else value
        return EventLogger(self.logger, props)

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        merged = dict(self.extra)
        merged.update(kwargs.get("extra") or {})
        kwargs["extra"] = merged
        return msg, kwargs

    def write(
        self,
        level: Union[int, LogLevel],
        error: Optional[BaseException],
        template: str,
        **properties: Any,
    ) -> bool:
        """
        Emit one event rendered from a ``str.format`` template.

        Each named argument becomes a record attribute; the raw template is
        kept as ``MessageTemplate`` so events group by shape, not by values.
        """
        lvl = int(level)
        if not self.isEnabledFor(lvl):
            return False
        message = template.format(**properties)
        extra = dict(properties)
        extra["MessageTemplate"] = template
        self.log(lvl, message, exc_info=error, extra=extra)
        return True


_default_logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None


def set_default_logger(logger: Optional[Union[logging.Logger, logging.LoggerAdapter]]) -> None:
    """Replace the process-wide logger used when no custom logger is configured."""
    global _default_logger
    _default_logger = logger


def get_default_logger() -> Union[logging.Logger, logging.LoggerAdapter]:
    if _default_logger is not None:
        return _default_logger
    return logging.getLogger(SOURCE_CONTEXT)


# ---------- Helpers ----------


def _ts_iso() -> str:
    # RFC3339 with milliseconds, UTC Z
    now = _dt.datetime.now(_dt.timezone.utc)
    ms = int(now.microsecond / 1000)
    base = now.replace(microsecond=0).isoformat().replace("+00:00", "Z")
    return f"{base[:-1]}.{ms:03d}Z"


def _compact_json(obj: Dict[str, Any]) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"), default=str)


def _truncate(v: Any) -> Any:
    if isinstance(v, str) and len(v) > _MAX_FIELD:
        return v[:_MAX_FIELD] + "...<truncated>"
    if isinstance(v, dict):
        return {k: _truncate(x) for k, x in v.items()}
    if isinstance(v, (list, tuple)):
        return [_truncate(x) for x in v]
    return v


# ---------- JSON formatter ----------


class JSONFormatter(logging.Formatter):
    """
    JSON formatter with a stable envelope.

    Envelope fields:
      - schema, service, ts, lvl, logger, msg
      - request event properties (SourceContext, Method, RawUrl, StatusCode,
        ElapsedMilliseconds, FormData) when present
      - exc_type, exc_message, stack for attached errors
      - props: any other non-standard record attributes (enrichers etc.)
    """

    def __init__(self, *, include_stack: bool = _INCLUDE_STACK):
        super().__init__()
        self.include_stack = include_stack

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        evt: Dict[str, Any] = {
            "schema": _LOG_SCHEMA,
            "service": _LOG_SERVICE,
            "ts": _ts_iso(),
            "lvl": record.levelname,
            "logger": record.name,
            "msg": _truncate(str(record.getMessage())),
        }

        for name in _EVENT_FIELDS:
            if name in record.__dict__:
                evt[name] = _truncate(record.__dict__[name])

        if record.exc_info:
            exc_type, exc_val, exc_tb = record.exc_info
            if exc_type is not None:
                evt["exc_type"] = getattr(exc_type, "__name__", str(exc_type))
                evt["exc_message"] = str(exc_val)[:_MAX_FIELD]
                if self.include_stack:
                    evt["stack"] = "".join(
                        traceback.format_exception(exc_type, exc_val, exc_tb)
                    )[:_MAX_FIELD]

        props: Dict[str, Any] = {}
        for k, v in record.__dict__.items():
            if k in _LOG_RECORD_STD_ATTRS or k in evt or k.startswith("_"):
                continue
            props[k] = _truncate(v)
        if props:
            evt["props"] = props

        return _compact_json(evt)


# ---------- Root integration ----------


def _clear_handlers(logger: logging.Logger) -> None:
    for h in list(logger.handlers):
        logger.removeHandler(h)


def configure_json_logging(
    level: Union[str, int] = "INFO",
    *,
    include_uvicorn: bool = True,
    stream: Any = None,
    include_stack: bool = _INCLUDE_STACK,
    filters: Iterable[logging.Filter] = (),
) -> logging.Logger:
    """
    Configure root (+ optionally uvicorn) loggers for JSON output.

    ``filters`` are attached to the shared handler (e.g. EnricherFilter),
    so they see records propagated from every logger.
    """
    if isinstance(level, int):
        lvl = level
    else:
        lvl = logging.getLevelName((level or "INFO").upper())
        if not isinstance(lvl, int):
            lvl = logging.INFO
    stream = stream or sys.stderr

    h = logging.StreamHandler(stream=stream)
    h.setFormatter(JSONFormatter(include_stack=include_stack))
    h.setLevel(lvl)
    for f in filters:
        h.addFilter(f)

    root = logging.getLogger()
    root.setLevel(lvl)
    _clear_handlers(root)
    root.addHandler(h)

    if include_uvicorn:
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
            lg = logging.getLogger(name)
            lg.setLevel(lvl)
            _clear_handlers(lg)
            lg.addHandler(h)
            lg.propagate = False

    return root


__all__ = [
    "SOURCE_CONTEXT",
    "EventLogger",
    "JSONFormatter",
    "configure_json_logging",
    "get_default_logger",
    "set_default_logger",
]
