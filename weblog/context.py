# FILE: weblog/context.py
"""
Narrow view of an in-flight request.

The handler never touches framework objects directly; it only relies on
the capabilities declared here. ``middleware.AsgiRequestContext`` is the
ASGI implementation, and tests provide a plain fake.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Iterable, List, MutableMapping, Optional, Protocol, Sequence


# Key under which the per-request items live in ``scope["state"]``;
# readable as ``request.state.weblog_items`` from Starlette handlers.
ITEMS_KEY = "weblog_items"


class FormMultiMap(Protocol):
    """Unordered multi-map of posted form fields (Starlette MultiDict shape)."""

    def keys(self) -> Iterable[str]: ...

    def getlist(self, key: Any) -> List[Any]: ...


class RequestInfo(Protocol):
    http_method: str
    raw_url: str

    @property
    def unvalidated_form(self) -> FormMultiMap: ...


class RequestContext(Protocol):
    items: "RequestItems"
    all_errors: Sequence[BaseException]
    request: Optional[RequestInfo]
    status_code: int
    last_error: Optional[BaseException]


@dataclass
class RequestItems:
    """
    Typed per-request scratch store.

    Created with the request, dropped with it; nothing here is shared
    across requests so no locking is involved.
    """

    timer: Optional[float] = None
    errors: Optional[List[BaseException]] = None
    request_id: Optional[str] = None

    def start_timer(self) -> None:
        self.timer = time.perf_counter()

    def stop_timer(self) -> Optional[float]:
        """Consume the timer and return elapsed seconds, or None if never started."""
        started = self.timer
        if started is None:
            return None
        self.timer = None
        return max(0.0, time.perf_counter() - started)


def request_items(scope: MutableMapping[str, Any]) -> RequestItems:
    """Return the RequestItems attached to an ASGI scope, creating them on first use."""
    state = scope.setdefault("state", {})
    items = state.get(ITEMS_KEY)
    if not isinstance(items, RequestItems):
        items = RequestItems()
        state[ITEMS_KEY] = items
    return items
