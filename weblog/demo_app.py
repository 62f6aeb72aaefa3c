# FILE: weblog/demo_app.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .config import ReloadableConfiguration
from .middleware import add_request_logging
from .request_errors import push, with_error_reporting

_log = logging.getLogger("weblog.demo")


class PaymentDeclined(Exception):
    """Business error turned into a 402 by an exception handler."""


def create_app(
    *,
    configuration: Optional[ReloadableConfiguration] = None,
    metrics: bool = True,
) -> FastAPI:
    """
    Small app showing each path of the request logger:

    - /healthz: plain success
    - /old: redirect (302), logged at the configured level
    - /boom: unhandled exception, logged at Error with the exception
    - /pay: exception handled into a 402; still logged at Error through
      with_error_reporting
    - /report: error reported by hand while the response stays 200
    - /login: urlencoded form post; fields appear on the event when form
      data logging is enabled, passwords masked
    """
    app = FastAPI(title="weblog-demo", openapi_url=None, docs_url=None, redoc_url=None)
    add_request_logging(app, configuration=configuration, metrics=metrics)

    @app.exception_handler(PaymentDeclined)
    @with_error_reporting
    async def payment_declined(request: Request, exc: PaymentDeclined) -> JSONResponse:
        return JSONResponse({"error": "payment declined", "detail": str(exc)}, status_code=402)

    @app.get("/metrics")
    def metrics_endpoint() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    def healthz() -> Dict[str, Any]:
        return {"ok": True}

    @app.get("/old")
    def old() -> RedirectResponse:
        return RedirectResponse("/healthz", status_code=302)

    @app.get("/boom")
    def boom() -> Dict[str, Any]:
        raise RuntimeError("boom")

    @app.post("/pay")
    def pay() -> Dict[str, Any]:
        raise PaymentDeclined("card expired")

    @app.get("/report")
    def report(request: Request) -> Dict[str, Any]:
        try:
            int("not a number")
        except ValueError as exc:
            _log.info("recovered from bad input")
            push(request, exc)
        return {"ok": True, "degraded": True}

    @app.post("/login")
    async def login(request: Request) -> Dict[str, Any]:
        body = await request.body()
        return {"received": len(body)}

    return app
