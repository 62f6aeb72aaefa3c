# FILE: weblog/config.py
"""
Request logging configuration.

A configuration is an immutable snapshot. Changing it means building a new
snapshot (through ``ConfigurationBuilder``) and swapping the process-wide
reference held by ``ReloadableConfiguration``; a request reads that
reference once and uses the same snapshot until it is logged.

    configure(lambda cfg: cfg
              .log_at_level(LogLevel.DEBUG)
              .ignore_requests_matching(lambda ctx: ctx.request.raw_url == "/healthz")
              .enable_form_data_logging(lambda forms: forms.only_on_error()))
"""
from __future__ import annotations

import logging
import os
import re
import threading
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict

from .errors import InvalidArgumentError
from .form_data import FormDataMode
from .levels import LogLevel, parse_level
from .logging import SOURCE_CONTEXT, EventLogger, get_default_logger

_log = logging.getLogger(__name__)

RequestPredicate = Callable[[Any], bool]

DEFAULT_FILTER_KEYWORDS: Tuple[str, ...] = ("password",)


def always_false(ctx: Any) -> bool:
    return False


_UNSET: Any = object()


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------


class RequestLoggingConfiguration(BaseModel):
    """
    One fully-populated, immutable set of request logging rules.

    Predicates are never None: "no filter" is ``always_false``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    is_enabled: bool = True
    request_logging_level: LogLevel = LogLevel.INFORMATION
    request_filter: RequestPredicate = always_false
    custom_logger: Optional[Any] = None

    form_data_mode: FormDataMode = FormDataMode.NEVER
    form_data_level: LogLevel = LogLevel.DEBUG
    form_data_match: RequestPredicate = always_false
    redaction_enabled: bool = True
    redaction_keywords: Tuple[str, ...] = DEFAULT_FILTER_KEYWORDS

    @property
    def logger(self) -> EventLogger:
        """Custom logger if set, else the process default, tagged with the source context."""
        base = self.custom_logger if self.custom_logger is not None else get_default_logger()
        return EventLogger(base, {"SourceContext": SOURCE_CONTEXT})


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def _require_predicate(value: Any, name: str) -> RequestPredicate:
    if value is None:
        raise InvalidArgumentError(f"{name} must not be None")
    if not callable(value):
        raise InvalidArgumentError(f"{name} must be callable, got {type(value).__name__}")
    return value


class FormDataBuilder:
    """Fine-grained form data settings; only reachable from enable_form_data_logging()."""

    def __init__(self, owner: "ConfigurationBuilder"):
        self._owner = owner

    def at_level(self, level: Union[str, int, LogLevel]) -> "FormDataBuilder":
        """Attach form data only when this level is enabled on the logger (default Debug)."""
        self._owner._form_data_level = parse_level(level)
        return self

    def only_on_error(self) -> "FormDataBuilder":
        """Attach form data only to responses with status >= 500."""
        self._owner._form_data_mode = FormDataMode.ONLY_ON_ERROR
        # ignored in this mode
        self._owner._form_data_match = always_false
        return self

    def on_match(self, predicate: RequestPredicate) -> "FormDataBuilder":
        """Attach form data only when ``predicate(ctx)`` is true."""
        self._owner._form_data_match = _require_predicate(predicate, "predicate")
        self._owner._form_data_mode = FormDataMode.ON_MATCH
        return self

    def disable_password_filtering(self) -> "FormDataBuilder":
        self._owner._redaction_enabled = False
        return self

    def filter_keywords(self, keywords: Any = _UNSET) -> "FormDataBuilder":
        """
        Mask values whose key contains one of ``keywords``.

        Without argument the default ("password") list is used; an empty
        list disables masking altogether.
        """
        if keywords is _UNSET:
            keywords = DEFAULT_FILTER_KEYWORDS
        if keywords is None:
            raise InvalidArgumentError("keywords must not be None")
        if isinstance(keywords, str):
            keywords = (keywords,)
        kws = tuple(str(k) for k in keywords)
        if not kws:
            return self.disable_password_filtering()
        self._owner._redaction_enabled = True
        self._owner._redaction_keywords = kws
        return self


class ConfigurationBuilder:
    """
    Mutable staging area for a RequestLoggingConfiguration.

    Setters validate eagerly and return the builder for chaining;
    ``build()`` freezes the current state into a new snapshot.
    """

    def __init__(self, existing: Optional[RequestLoggingConfiguration] = None):
        self._reset()
        if existing is not None:
            self._is_enabled = existing.is_enabled
            self._request_logging_level = existing.request_logging_level
            self._request_filter = existing.request_filter
            self._custom_logger = existing.custom_logger
            self._form_data_mode = existing.form_data_mode
            self._form_data_level = existing.form_data_level
            self._form_data_match = existing.form_data_match
            self._redaction_enabled = existing.redaction_enabled
            self._redaction_keywords = existing.redaction_keywords

    @classmethod
    def from_configuration(cls, existing: RequestLoggingConfiguration) -> "ConfigurationBuilder":
        if existing is None:
            raise InvalidArgumentError("existing configuration must not be None")
        return cls(existing)

    def _reset(self) -> None:
        self._is_enabled = True
        self._request_logging_level = LogLevel.INFORMATION
        self._request_filter: RequestPredicate = always_false
        self._custom_logger: Optional[Any] = None
        self._reset_form_data()

    def _reset_form_data(self) -> None:
        self._form_data_mode = FormDataMode.NEVER
        self._form_data_level = LogLevel.DEBUG
        self._form_data_match: RequestPredicate = always_false
        self._redaction_enabled = True
        self._redaction_keywords: Tuple[str, ...] = DEFAULT_FILTER_KEYWORDS

    # ---- public API ----------------------------------------------------- #

    def enable(self) -> "ConfigurationBuilder":
        self._is_enabled = True
        return self

    def disable(self) -> "ConfigurationBuilder":
        """No events at all; timers are not even started."""
        self._is_enabled = False
        return self

    def log_at_level(self, level: Union[str, int, LogLevel]) -> "ConfigurationBuilder":
        """Level for successful requests (default Information); errors always log at Error."""
        self._request_logging_level = parse_level(level)
        return self

    def ignore_requests_matching(self, predicate: RequestPredicate) -> "ConfigurationBuilder":
        self._request_filter = _require_predicate(predicate, "predicate")
        return self

    def use_logger(self, logger: Any) -> "ConfigurationBuilder":
        if logger is None:
            raise InvalidArgumentError("logger must not be None")
        if not (hasattr(logger, "isEnabledFor") and hasattr(logger, "log")):
            raise InvalidArgumentError(f"not a logger: {type(logger).__name__}")
        self._custom_logger = logger
        return self

    def use_default_logger(self) -> "ConfigurationBuilder":
        self._custom_logger = None
        return self

    def enable_form_data_logging(
        self, configure: Optional[Callable[[FormDataBuilder], Any]] = None
    ) -> "ConfigurationBuilder":
        """
        Attach posted form data to events.

        Form data settings are reset to their defaults first (always, at
        Debug, "password" masked), then ``configure`` is applied; earlier
        form data settings are not merged in.
        """
        if configure is not None and not callable(configure):
            raise InvalidArgumentError("configure must be callable")
        self._reset_form_data()
        self._form_data_mode = FormDataMode.ALWAYS
        if configure is not None:
            configure(FormDataBuilder(self))
        return self

    def disable_form_data_logging(self) -> "ConfigurationBuilder":
        self._reset_form_data()
        return self

    def build(self) -> RequestLoggingConfiguration:
        return RequestLoggingConfiguration(
            is_enabled=self._is_enabled,
            request_logging_level=self._request_logging_level,
            request_filter=self._request_filter,
            custom_logger=self._custom_logger,
            form_data_mode=self._form_data_mode,
            form_data_level=self._form_data_level,
            form_data_match=self._form_data_match,
            redaction_enabled=self._redaction_enabled,
            redaction_keywords=self._redaction_keywords,
        )


# ---------------------------------------------------------------------------
# Loading (defaults -> YAML -> environment)
# ---------------------------------------------------------------------------

# setting name -> environment variable
_ENV_KEYS: Tuple[Tuple[str, str], ...] = (
    ("enabled", "WEBLOG_ENABLED"),
    ("level", "WEBLOG_LEVEL"),
    ("form_data", "WEBLOG_FORM_DATA"),
    ("form_data_level", "WEBLOG_FORM_DATA_LEVEL"),
    ("filter_keywords", "WEBLOG_FILTER_KEYWORDS"),
    ("ignore_paths", "WEBLOG_IGNORE_PATHS"),
)


def _parse_bool(raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    v = str(raw).strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    raise InvalidArgumentError(f"not a boolean: {raw!r}")


def _parse_list(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [p.strip() for p in raw.split(",") if p.strip()]
    if isinstance(raw, (list, tuple)):
        return [str(p).strip() for p in raw if str(p).strip()]
    raise InvalidArgumentError(f"not a list: {raw!r}")


def _load_yaml_mapping(path: str) -> Dict[str, Any]:
    """
    Load a simple top-level mapping from YAML.

    Missing paths and non-mapping documents are ignored. Values are kept
    only if they are scalars or flat lists of scalars.
    """
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = yaml.safe_load(f)
    except Exception:
        _log.warning("failed to load YAML config from %s", path, exc_info=True)
        return {}
    if not isinstance(doc, dict):
        return {}
    out: Dict[str, Any] = {}
    for k, v in doc.items():
        if isinstance(v, (str, int, float, bool)) or v is None:
            out[str(k)] = v
        elif isinstance(v, list):
            out[str(k)] = [str(x) for x in v if isinstance(x, (str, int, float))]
        else:
            out[str(k)] = str(v)
    return out


class PathFilter:
    """Request predicate matching the raw URL against a set of regexes."""

    def __init__(self, patterns: Sequence[str]):
        self.patterns = tuple(re.compile(p) for p in patterns)

    def __call__(self, ctx: Any) -> bool:
        req = getattr(ctx, "request", None)
        if req is None:
            return False
        url = req.raw_url or ""
        return any(p.search(url) for p in self.patterns)

    def __repr__(self) -> str:
        return f"PathFilter({[p.pattern for p in self.patterns]!r})"


def _form_data_settings(values: Mapping[str, Any]) -> Callable[[FormDataBuilder], None]:
    def _apply(forms: FormDataBuilder) -> None:
        if "form_data_level" in values:
            try:
                forms.at_level(values["form_data_level"])
            except InvalidArgumentError:
                _log.warning("ignoring invalid form_data_level %r", values["form_data_level"])
        if "filter_keywords" in values:
            try:
                forms.filter_keywords(_parse_list(values["filter_keywords"]))
            except InvalidArgumentError:
                _log.warning("ignoring invalid filter_keywords %r", values["filter_keywords"])

    return _apply


def load_configuration(
    path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RequestLoggingConfiguration:
    """
    Build a snapshot from defaults, an optional YAML file and the environment.

    Priority:
      1. In-code defaults.
      2. YAML mapping at ``path`` (or WEBLOG_CONFIG_PATH).
      3. WEBLOG_* environment variables.

    Invalid values are skipped with a warning; the lower layer's value stays.
    Predicates cannot be expressed here except ``ignore_paths`` (regexes
    searched in the raw URL); use ``configure()`` for anything richer.
    """
    env = os.environ if environ is None else environ
    yaml_path = path if path is not None else env.get("WEBLOG_CONFIG_PATH", "").strip()

    values: Dict[str, Any] = {}
    values.update(_load_yaml_mapping(yaml_path))
    for key, name in _ENV_KEYS:
        if name in env:
            values[key] = env[name]

    b = ConfigurationBuilder()

    if "enabled" in values:
        try:
            if _parse_bool(values["enabled"]):
                b.enable()
            else:
                b.disable()
        except InvalidArgumentError:
            _log.warning("ignoring invalid enabled %r", values["enabled"])

    if "level" in values:
        try:
            b.log_at_level(values["level"])
        except InvalidArgumentError:
            _log.warning("ignoring invalid level %r", values["level"])

    if "ignore_paths" in values:
        try:
            patterns = _parse_list(values["ignore_paths"])
            if patterns:
                b.ignore_requests_matching(PathFilter(patterns))
        except (InvalidArgumentError, re.error):
            _log.warning("ignoring invalid ignore_paths %r", values["ignore_paths"])

    mode = str(values.get("form_data") or "never").strip().lower()
    if mode == FormDataMode.ALWAYS.value:
        b.enable_form_data_logging(_form_data_settings(values))
    elif mode == FormDataMode.ONLY_ON_ERROR.value:
        apply = _form_data_settings(values)

        def _only_on_error(forms: FormDataBuilder) -> None:
            forms.only_on_error()
            apply(forms)

        b.enable_form_data_logging(_only_on_error)
    elif mode != FormDataMode.NEVER.value:
        _log.warning("ignoring unsupported form_data mode %r", values.get("form_data"))

    return b.build()


# ---------------------------------------------------------------------------
# Process-wide reference
# ---------------------------------------------------------------------------


class ReloadableConfiguration:
    """
    Holder for the current snapshot.

    Readers call get() once per request; it is a single reference read,
    so a reader sees either the old or the new snapshot, never a mix.
    Writers serialize on a reentrant lock so concurrent configure() calls
    do not lose each other's changes, and a configure callback may itself
    call configure().
    """

    def __init__(self, initial: Optional[RequestLoggingConfiguration] = None) -> None:
        self._lock = threading.RLock()
        self._current = initial if initial is not None else RequestLoggingConfiguration()

    def get(self) -> RequestLoggingConfiguration:
        return self._current

    def configure(
        self, fn: Callable[[ConfigurationBuilder], Any]
    ) -> RequestLoggingConfiguration:
        """Derive a new snapshot from the current one via ``fn`` and swap it in."""
        if fn is None or not callable(fn):
            raise InvalidArgumentError("configure requires a callable")
        with self._lock:
            builder = ConfigurationBuilder.from_configuration(self._current)
            fn(builder)
            updated = builder.build()
            self._current = updated
            return updated

    def replace(self, snapshot: RequestLoggingConfiguration) -> RequestLoggingConfiguration:
        if not isinstance(snapshot, RequestLoggingConfiguration):
            raise InvalidArgumentError("replace requires a RequestLoggingConfiguration")
        with self._lock:
            self._current = snapshot
            return snapshot

    def reset(self) -> RequestLoggingConfiguration:
        """Back to defaults: enabled, Information, no filter, no custom logger, no form data."""
        return self.replace(RequestLoggingConfiguration())

    def refresh(
        self, path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
    ) -> RequestLoggingConfiguration:
        """Reload from YAML/environment, dropping programmatic changes."""
        return self.replace(load_configuration(path, environ))


def make_reloadable_configuration(
    path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None
) -> ReloadableConfiguration:
    """Holder seeded from YAML/environment; reset() still returns to the in-code defaults."""
    return ReloadableConfiguration(load_configuration(path, environ))


_default = make_reloadable_configuration()


def default_configuration() -> ReloadableConfiguration:
    return _default


def get_configuration() -> RequestLoggingConfiguration:
    return _default.get()


def configure(fn: Callable[[ConfigurationBuilder], Any]) -> RequestLoggingConfiguration:
    return _default.configure(fn)


def reset_configuration() -> RequestLoggingConfiguration:
    return _default.reset()
