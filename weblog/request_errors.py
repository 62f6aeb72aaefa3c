# FILE: weblog/request_errors.py
"""
Per-request error accumulator.

Application code can report an error that the host never sees (for
example one swallowed by an exception handler) so it still ends up on the
request's log event:

    @app.exception_handler(PaymentDeclined)
    @with_error_reporting
    async def declined(request, exc):
        return JSONResponse({"error": "declined"}, status_code=402)
"""
from __future__ import annotations

import functools
import inspect
from typing import Any, Awaitable, Callable, Optional

from .context import RequestItems, request_items
from .errors import InvalidArgumentError


def _items_of(target: Any) -> RequestItems:
    if target is None:
        raise InvalidArgumentError("request context is required")
    items = getattr(target, "items", None)
    if isinstance(items, RequestItems):
        return items
    # Starlette Request/WebSocket expose the ASGI scope; a bare scope dict is accepted too.
    scope = getattr(target, "scope", target)
    return request_items(scope)


def push(target: Any, error: BaseException) -> None:
    """Record ``error`` as the most recent error of the request."""
    items = _items_of(target)
    if items.errors is None:
        items.errors = []
    items.errors.append(error)


def peek_last(target: Any) -> Optional[BaseException]:
    """Most recently pushed error, without removing it."""
    items = _items_of(target)
    if not items.errors:
        return None
    return items.errors[-1]


def with_error_reporting(
    handler: Callable[[Any, Exception], Any],
) -> Callable[[Any, Exception], Awaitable[Any]]:
    """Wrap an exception handler so the handled exception is pushed first."""

    @functools.wraps(handler)
    async def _wrapped(request: Any, exc: Exception) -> Any:
        push(request, exc)
        result = handler(request, exc)
        if inspect.isawaitable(result):
            result = await result
        return result

    return _wrapped
