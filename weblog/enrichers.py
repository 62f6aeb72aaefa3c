# FILE: weblog/enrichers.py
"""
Request-scoped log enrichment.

Each enricher is a plain function ``(AsgiRequestContext) -> (name, value)
or None``. ``EnricherFilter`` applies one to every record emitted while a
request is being handled by RequestLoggingMiddleware, adding the property
only if the record does not already carry it. Attach the filter to a
handler so records propagated from child loggers are enriched too:

    handler.addFilter(EnricherFilter(client_host_ip()))
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Mapping, Optional, Tuple

from .middleware import AsgiRequestContext, current_request

_log = logging.getLogger(__name__)

Enricher = Callable[[AsgiRequestContext], Optional[Tuple[str, Any]]]

CLIENT_HOST_IP_PROPERTY = "HttpRequestClientHostIP"
CLIENT_HOST_NAME_PROPERTY = "HttpRequestClientHostName"
USER_NAME_PROPERTY = "UserName"
REQUEST_ID_PROPERTY = "HttpRequestId"


def client_host_ip(check_for_http_proxies: bool = True) -> Enricher:
    """
    Client address; with proxies checked, the first X-Forwarded-For hop wins.
    """

    def _enrich(ctx: AsgiRequestContext) -> Optional[Tuple[str, Any]]:
        address = ""
        if check_for_http_proxies:
            address = (ctx.headers.get("x-forwarded-for") or "").strip()
        if not address:
            client = ctx.scope.get("client")
            address = client[0] if client else ""
        if "," in address:
            address = address.split(",", 1)[0].strip()
        if not address:
            return None
        return CLIENT_HOST_IP_PROPERTY, address

    return _enrich


def client_host_name() -> Enricher:
    """Remote client host as seen by the server (ASGI ``client``); honours ``DNT: 1``."""

    def _enrich(ctx: AsgiRequestContext) -> Optional[Tuple[str, Any]]:
        if (ctx.headers.get("dnt") or "").strip() == "1":
            return None
        client = ctx.scope.get("client")
        host = str(client[0]).strip() if client else ""
        if not host:
            return None
        return CLIENT_HOST_NAME_PROPERTY, host

    return _enrich


def user_name(anonymous: Optional[str] = "(anonymous)", no_user: Optional[str] = None) -> Enricher:
    """
    Name of the Starlette ``scope["user"]``.

    Unauthenticated users map to ``anonymous``; requests without any user
    (no AuthenticationMiddleware) map to ``no_user``. None means "omit".
    """

    def _enrich(ctx: AsgiRequestContext) -> Optional[Tuple[str, Any]]:
        user = ctx.scope.get("user")
        if user is None:
            name = no_user
        elif getattr(user, "is_authenticated", False):
            name = getattr(user, "display_name", "") or anonymous
        else:
            name = anonymous
        if name is None:
            return None
        return USER_NAME_PROPERTY, name

    return _enrich


def _claims_lookup(claims: Any, claim: str) -> Optional[str]:
    if isinstance(claims, Mapping):
        value = claims.get(claim)
        return None if value is None else str(value)
    for item in claims or ():
        if isinstance(item, tuple) and len(item) == 2 and item[0] == claim:
            return str(item[1])
        if getattr(item, "type", None) == claim:
            return str(getattr(item, "value", ""))
    return None


def claim_value(claim: str, property_name: Optional[str] = None) -> Enricher:
    """
    Value of ``claim`` on the authenticated user's ``claims``.

    ``claims`` may be a mapping, a sequence of (type, value) pairs or of
    objects with ``type``/``value`` attributes. Blank values are skipped.
    """
    prop = property_name or claim

    def _enrich(ctx: AsgiRequestContext) -> Optional[Tuple[str, Any]]:
        user = ctx.scope.get("user")
        if user is None:
            return None
        value = _claims_lookup(getattr(user, "claims", None), claim)
        if value is None or not value.strip():
            return None
        return prop, value

    return _enrich


def request_id(header: str = "X-Request-Id") -> Enricher:
    """Incoming request id header, else one uuid4 per request."""

    def _enrich(ctx: AsgiRequestContext) -> Optional[Tuple[str, Any]]:
        items = ctx.items
        if items.request_id is None:
            rid = (ctx.headers.get(header) or "").strip()
            items.request_id = rid or uuid.uuid4().hex
        return REQUEST_ID_PROPERTY, items.request_id

    return _enrich


class EnricherFilter(logging.Filter):
    """logging.Filter that never drops records, only adds request properties."""

    def __init__(self, enricher: Enricher, name: str = ""):
        super().__init__(name)
        self.enricher = enricher

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = current_request()
        if ctx is None:
            return True
        try:
            pair = self.enricher(ctx)
        except Exception:
            _log.debug("enricher failed", exc_info=True)
            return True
        if pair is not None:
            prop, value = pair
            if not hasattr(record, prop):
                setattr(record, prop, value)
        return True
