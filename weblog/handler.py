# FILE: weblog/handler.py
from __future__ import annotations

import logging
from typing import Optional

from .config import RequestLoggingConfiguration
from .context import RequestContext
from .form_data import build_snapshot, should_attach
from .levels import LogLevel
from .logging import EventLogger
from .request_errors import peek_last

_log = logging.getLogger(__name__)

MESSAGE_TEMPLATE = "HTTP {Method} {RawUrl} responded {StatusCode} in {ElapsedMilliseconds}ms"
FORM_DATA_PROPERTY = "FormData"


class RequestEventHandler:
    """
    Turns the begin/end notifications of one request into one log event.

    Per request: idle -> timing (on_begin_request) -> logged
    (on_log_request). Missing ambient state (no context, no timer, no form)
    ends the request silently; only configuration mistakes raise, and
    those surface when the configuration is built.
    """

    def on_begin_request(
        self, ctx: Optional[RequestContext], config: RequestLoggingConfiguration
    ) -> None:
        if not config.is_enabled or ctx is None:
            return
        ctx.items.start_timer()

    def on_log_request(
        self, ctx: Optional[RequestContext], config: RequestLoggingConfiguration
    ) -> Optional[LogLevel]:
        """
        Emit the request event.

        Returns the level written at, or None when nothing was emitted.
        """
        if not config.is_enabled or ctx is None:
            return None
        request = ctx.request
        if request is None:
            return None
        if config.request_filter(ctx):
            return None

        elapsed = ctx.items.stop_timer()
        if elapsed is None:
            # begin never ran for this request (e.g. enabled mid-request)
            return None

        status_code = ctx.status_code
        error = peek_last(ctx)
        if error is None:
            error = ctx.last_error

        if error is not None or status_code >= 500:
            level = LogLevel.ERROR
        else:
            level = config.request_logging_level

        if level == LogLevel.ERROR and error is None:
            # Best effort: some hosts clear the last-error slot once handled
            # but keep the history.
            all_errors = getattr(ctx, "all_errors", None)
            if all_errors:
                error = all_errors[-1]

        logger = self._with_form_data(config.logger, ctx, config)

        emitted = logger.write(
            level,
            error,
            MESSAGE_TEMPLATE,
            Method=request.http_method,
            RawUrl=request.raw_url,
            StatusCode=status_code,
            ElapsedMilliseconds=int(elapsed * 1000),
        )
        return level if emitted else None

    def _with_form_data(
        self, logger: EventLogger, ctx: RequestContext, config: RequestLoggingConfiguration
    ) -> EventLogger:
        try:
            if not logger.is_enabled(config.form_data_level):
                return logger
            if not should_attach(config.form_data_mode, config.form_data_match, ctx):
                return logger
            form = ctx.request.unvalidated_form
            if form is None or not list(form.keys()):
                return logger
            fields = build_snapshot(form, config.redaction_enabled, config.redaction_keywords)
            return logger.with_context(FORM_DATA_PROPERTY, fields, destructure=True)
        except Exception:
            # The request event matters more than its form data.
            _log.debug("form data not attached", exc_info=True)
            return logger
