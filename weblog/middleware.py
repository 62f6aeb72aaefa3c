# FILE: weblog/middleware.py
from __future__ import annotations

import contextvars
import logging
from typing import Any, AsyncIterator, Callable, List, Optional

from starlette.datastructures import Headers, ImmutableMultiDict
from starlette.formparsers import FormParser, MultiPartParser
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .config import ReloadableConfiguration, default_configuration
from .context import RequestItems, request_items
from .form_data import FormDataMode
from .handler import RequestEventHandler
from .metrics import get_metrics

_logger = logging.getLogger(__name__)

_FORM_URLENCODED = "application/x-www-form-urlencoded"
_FORM_MULTIPART = "multipart/form-data"
_DEFAULT_MAX_FORM_BYTES = 64 * 1024

_current: contextvars.ContextVar[Optional["AsgiRequestContext"]] = contextvars.ContextVar(
    "weblog_current_request", default=None
)


def current_request() -> Optional["AsgiRequestContext"]:
    """The request being handled in this task, if any."""
    return _current.get()


# -------------------------
# Host adapter
# -------------------------


def _raw_url(scope: Scope) -> str:
    raw = scope.get("raw_path")
    if isinstance(raw, (bytes, bytearray)):
        path = bytes(raw).decode("latin-1")
    else:
        path = scope.get("root_path", "") + scope.get("path", "")
    qs = scope.get("query_string") or b""
    if qs:
        return f"{path}?{qs.decode('latin-1')}"
    return path


class _AsgiRequestInfo:
    def __init__(self, owner: "AsgiRequestContext"):
        self._owner = owner
        self.http_method: str = owner.scope.get("method", "")
        self.raw_url: str = _raw_url(owner.scope)

    @property
    def unvalidated_form(self) -> ImmutableMultiDict:
        return self._owner.form()


class AsgiRequestContext:
    """
    RequestContext over an ASGI scope.

    Errors and the response status are fed in by RequestLoggingMiddleware;
    the scratch items live in ``scope["state"]`` so handlers can reach them
    through ``request.state``.
    """

    def __init__(self, scope: Scope, *, max_form_bytes: int = _DEFAULT_MAX_FORM_BYTES):
        self.scope = scope
        self.items: RequestItems = request_items(scope)
        self.all_errors: List[BaseException] = []
        self.last_error: Optional[BaseException] = None
        self.status_code: int = 200
        self.response_started = False
        self.request = _AsgiRequestInfo(self)
        self.headers = Headers(scope=scope)
        self.max_form_bytes = int(max_form_bytes)
        self._body: List[bytes] = []
        self._body_size = 0
        self._body_overflow = False
        self._form: Optional[ImmutableMultiDict] = None

    @property
    def content_type(self) -> str:
        ctype = self.headers.get("content-type", "")
        return ctype.split(";", 1)[0].strip().lower()

    @property
    def wants_form_body(self) -> bool:
        return self.content_type in (_FORM_URLENCODED, _FORM_MULTIPART)

    def record_body(self, chunk: bytes) -> None:
        if self._body_overflow or not chunk:
            return
        self._body_size += len(chunk)
        if self._body_size > self.max_form_bytes:
            self._body_overflow = True
            self._body = []
            return
        self._body.append(bytes(chunk))

    def record_error(self, exc: BaseException) -> None:
        self.all_errors.append(exc)
        self.last_error = exc

    @property
    def has_form_body(self) -> bool:
        return bool(self._body) and not self._body_overflow

    async def load_form(self) -> None:
        """
        Parse the captured body with Starlette's form parsers.

        Urlencoded and multipart bodies are both accepted; file parts are
        dropped, only text fields are kept.
        """
        if not self.has_form_body:
            self._form = ImmutableMultiDict()
            return
        body = b"".join(self._body)

        async def _stream() -> AsyncIterator[bytes]:
            yield body
            # empty chunk finalizes the parser
            yield b""

        if self.content_type == _FORM_MULTIPART:
            parser: Any = MultiPartParser(self.headers, _stream())
        else:
            parser = FormParser(self.headers, _stream())
        parsed = await parser.parse()
        try:
            self._form = ImmutableMultiDict(
                [(k, v) for k, v in parsed.multi_items() if isinstance(v, str)]
            )
        finally:
            await parsed.close()

    def form(self) -> ImmutableMultiDict:
        """Posted text fields, parsed without any validation."""
        if self._form is None:
            return ImmutableMultiDict()
        return self._form


# -------------------------
# Middleware
# -------------------------


class RequestLoggingMiddleware:
    """
    ASGI middleware emitting one structured event per HTTP request.

    Usage:
        app.add_middleware(RequestLoggingMiddleware)

    The configuration snapshot is read once per request. Exceptions from the
    app are recorded on the request and re-raised untouched; failures in the
    logging path itself are logged here and never reach the app.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        configuration: Optional[ReloadableConfiguration] = None,
        handler: Optional[RequestEventHandler] = None,
        max_form_bytes: int = _DEFAULT_MAX_FORM_BYTES,
        metrics: bool = True,
    ):
        self.app = app
        self._configuration = configuration or default_configuration()
        self._handler = handler or RequestEventHandler()
        self._max_form_bytes = int(max_form_bytes)
        self._metrics = get_metrics() if metrics else None

    def _failed(self, stage: str) -> None:
        _logger.warning("request logging failed during %s", stage, exc_info=True)
        if self._metrics is not None:
            self._metrics.failures.labels(stage).inc()

    def _safely(self, stage: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return fn(*args)
        except Exception:
            self._failed(stage)
            return None

    async def _prefetch_form(self, ctx: AsgiRequestContext, receive: Receive) -> Receive:
        """
        Read a form body up front (bounded) and replay it downstream.

        Handlers that never touch the form still get it logged.
        """
        buffered: List[Message] = []
        total = 0
        while True:
            msg = await receive()
            buffered.append(msg)
            if msg["type"] != "http.request":
                break
            body = msg.get("body", b"") or b""
            total += len(body)
            ctx.record_body(body)
            if total > self._max_form_bytes or not msg.get("more_body", False):
                break

        async def replay() -> Message:
            if buffered:
                return buffered.pop(0)
            return await receive()

        return replay

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        config = self._configuration.get()
        ctx = AsgiRequestContext(scope, max_form_bytes=self._max_form_bytes)
        token = _current.set(ctx)
        try:
            self._safely("begin", self._handler.on_begin_request, ctx, config)

            if (
                config.is_enabled
                and config.form_data_mode is not FormDataMode.NEVER
                and ctx.wants_form_body
            ):
                receive = await self._prefetch_form(ctx, receive)

            async def _send(message: Message) -> None:
                if message["type"] == "http.response.start":
                    ctx.status_code = int(message.get("status", 200))
                    ctx.response_started = True
                await send(message)

            try:
                await self.app(scope, receive, _send)
            except Exception as exc:
                ctx.record_error(exc)
                if not ctx.response_started:
                    ctx.status_code = 500
                raise
            finally:
                if ctx.has_form_body:
                    try:
                        await ctx.load_form()
                    except Exception:
                        self._failed("form")
                level = self._safely("log", self._handler.on_log_request, ctx, config)
                if level is not None and self._metrics is not None:
                    self._metrics.logged.labels(level.name.lower()).inc()
        finally:
            _current.reset(token)


# -------------------------
# Wiring helper
# -------------------------


def add_request_logging(
    app: Any,
    *,
    configuration: Optional[ReloadableConfiguration] = None,
    max_form_bytes: int = _DEFAULT_MAX_FORM_BYTES,
    metrics: bool = True,
) -> None:
    """
    Install RequestLoggingMiddleware on a Starlette/FastAPI app.
    """
    app.add_middleware(
        RequestLoggingMiddleware,
        configuration=configuration,
        max_form_bytes=max_form_bytes,
        metrics=metrics,
    )
