"""
HTTP surface of the Unified Action API.

``POST /api`` is the single dispatch endpoint; health and documentation
routes are read-only and public.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from .bootstrap import Container, build_container
from .config import Settings, validate_config
from .errors import ApiError
from .logging_config import log_extra
from .responses import ResponseFormatter
from .security import extract_client_id, generate_request_id
from .util import isoformat_utc, utc_now

logger = logging.getLogger(__name__)

DISPATCH_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]

_NO_BODY = object()


async def _read_json(request: Request) -> Any:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except ValueError:
        return _NO_BODY
    except RecursionError:
        # Valid JSON nested deeper than the decoder can follow.
        logger.warning("Request body nested too deeply to decode", extra=log_extra(bytes=len(raw)))
        return _NO_BODY


def create_app(settings: Optional[Settings] = None, container: Optional[Container] = None) -> FastAPI:
    container = container or build_container(settings)
    settings = container.settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        container.close()

    # The generated OpenAPI export below documents /api; FastAPI's own schema would not.
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.container = container

    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError):
        request_id = request.headers.get("x-request-id") or generate_request_id()
        body = ResponseFormatter(request_id).from_error(exc)
        return JSONResponse(body, status_code=exc.status_code, headers={"X-Request-ID": request_id})

    # ------------------------------------------------------------------
    # Unified endpoint
    # ------------------------------------------------------------------

    @app.api_route("/api", methods=DISPATCH_METHODS)
    async def dispatch(request: Request):
        body = await _read_json(request) if request.method == "POST" else {}
        if body is _NO_BODY:
            body = None
        client_host = request.client.host if request.client else None
        result = await run_in_threadpool(
            container.dispatcher.dispatch,
            request.method,
            body,
            request.headers.get("authorization"),
            extract_client_id(request.headers, client_host, settings.trust_forwarded_for),
        )
        return JSONResponse(result.body, status_code=result.status_code, headers=result.headers)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    @app.get("/api/health")
    def health():
        return {
            "status": "healthy",
            "timestamp": isoformat_utc(utc_now()),
            "version": settings.api_version,
        }

    @app.get("/api/health/detailed")
    def health_detailed():
        database_ok = container.db.ping()
        config_checks = validate_config(settings)
        healthy = database_ok and all(config_checks.values())
        body = {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": isoformat_utc(utc_now()),
            "version": settings.api_version,
            "environment": settings.env,
            "checks": {
                "database": "healthy" if database_ok else "unhealthy",
                "config": config_checks,
            },
            "actions": container.registry.statistics(),
        }
        if database_ok:
            body["database"] = container.db.stats()
            body["usage"] = container.audit_logs.usage_stats()
        return JSONResponse(body, status_code=200 if healthy else 503)

    # ------------------------------------------------------------------
    # Documentation
    # ------------------------------------------------------------------

    docs = container.docs

    @app.get("/api/docs/json")
    def docs_json():
        return ResponseFormatter().success(docs.generate(), "API documentation")

    @app.get("/api/docs/openapi.json")
    def docs_openapi():
        return Response(docs.export_openapi(), media_type="application/json")

    @app.get("/api/docs/actions")
    def docs_actions():
        return ResponseFormatter().success(docs.actions_summary(), "Action list")

    @app.get("/api/docs/actions/{action_type}")
    def docs_action(action_type: str):
        return ResponseFormatter().success(docs.action_documentation(action_type), "Action documentation")

    @app.get("/api/docs/statistics")
    def docs_statistics():
        return ResponseFormatter().success(docs.statistics(), "Documentation statistics")

    @app.get("/api/docs/validate/{action_type}")
    def docs_validate(action_type: str):
        return ResponseFormatter().success(docs.validate(action_type), "Documentation validation")

    @app.post("/api/docs/regenerate")
    def docs_regenerate():
        document = docs.regenerate()
        return ResponseFormatter().success(
            {"generated_at": document["generated_at"], "statistics": document["statistics"]},
            "Documentation regenerated",
        )

    return app
