from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tradescope.api.routes_companies import router as companies_router
from tradescope.api.routes_compliance import router as compliance_router
from tradescope.api.routes_shipments import router as shipments_router
from tradescope.api.routes_tariffs import router as tariffs_router
from tradescope.errors import (
    InsufficientTier,
    NotFound,
    QuotaExceeded,
    TradeScopeError,
    UpstreamUnavailable,
    ValidationError,
)
from tradescope.observability import log_event, request_scope
from tradescope.services import TradeScopeServices, build_services
from tradescope.version import __version__

# -----------------------------------------------------------------------------
# App setup
# -----------------------------------------------------------------------------
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 422,
    InsufficientTier: 403,
    QuotaExceeded: 402,
    NotFound: 404,
    UpstreamUnavailable: 503,
}


def _status_for(exc: TradeScopeError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status
    return 500


def _redact_message(msg: str) -> str:
    if msg.lower().startswith("value error, "):
        msg = msg.split(", ", 1)[1]
    lowered = msg.lower()
    if "key" in lowered or "token" in lowered or "secret" in lowered:
        return "Invalid request payload"
    return msg


def _normalize_validation_errors(raw_errors: List[Dict[str, Any]]) -> Dict[str, Any]:
    fields: List[Dict[str, str]] = []
    for err in raw_errors:
        loc = err.get("loc", [])
        loc_parts = [str(part) for part in loc if part not in ("body", "query", "path")]
        field = ".".join(loc_parts) if loc_parts else "request"
        fields.append({"field": field, "message": _redact_message(err.get("msg", "Invalid request"))})
    first = fields[0] if fields else {"field": "request", "message": "Invalid request"}
    return {"error": ValidationError.code, **first, "fields": fields}


def create_app(services: Optional[TradeScopeServices] = None) -> FastAPI:
    """Build the API; ``services`` is built from the environment when omitted."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = services if services is not None else build_services()
        try:
            yield
        finally:
            if owned:
                app.state.services.shutdown()

    app = FastAPI(title="tradescope API", version=__version__, lifespan=lifespan)
    if services is not None:
        app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Export-Truncated", "X-Export-Rows", "X-Export-Total"],
    )
    app.include_router(shipments_router)
    app.include_router(tariffs_router)
    app.include_router(compliance_router)
    app.include_router(companies_router)

    @app.middleware("http")
    async def attach_request_id(request: Request, call_next):
        path = str(request.url.path)
        with request_scope(request.headers.get("X-Request-ID"), request.headers.get("X-API-Key", "")) as scope:
            log_event("request.start", path=path)
            status = 500
            try:
                response = await call_next(request)
                status = response.status_code
                response.headers["X-Request-ID"] = scope.request_id
                return response
            finally:
                log_event("request.end", path=path, status=status)

    @app.exception_handler(TradeScopeError)
    async def handle_domain_error(request: Request, exc: TradeScopeError):
        status = _status_for(exc)
        if status >= 500:
            logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        return JSONResponse(status_code=status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=422, content=_normalize_validation_errors(exc.errors()))

    @app.get("/v1/health")
    def health(request: Request) -> Dict[str, Any]:
        state: TradeScopeServices = request.app.state.services
        index_ok = state.index.ping()
        cache_ok = state.cache.ping()
        return {
            "status": "ok" if index_ok else "degraded",
            "version": __version__,
            "index": index_ok,
            "cache": cache_ok,
        }

    return app


app = create_app()
