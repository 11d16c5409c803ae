"""FastAPI application entry point."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from crm_ai.api import admin, ai
from crm_ai.core.config import load_config, verify_environment
from crm_ai.core.container import ServiceContainer, get_container
from crm_ai.logging import configure_logging, get_request_id, redact_secrets
from crm_ai.middleware.request_context import RequestContextMiddleware

configure_logging()

logger = logging.getLogger("crm_ai.app")

app = FastAPI(
    title="CRM AI Orchestrator",
    version="0.1.0",
    openapi_url="/api/openapi.json",
)
app.include_router(ai.router)
app.include_router(admin.router)
app.add_middleware(RequestContextMiddleware)


def _container(request: Request) -> ServiceContainer:
    factory = request.app.dependency_overrides.get(get_container, get_container)
    return factory()


@app.on_event("startup")
def on_startup() -> None:
    load_config()
    for problem in verify_environment():
        logger.warning(problem, extra={"event": "environment_check"})
    get_container().database.create_all()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    container = get_container()
    await container.usage.drain()
    container.database.dispose()


@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


@app.exception_handler(Exception)
async def unexpected_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error",
        extra={
            "event": "request_error",
            "path": request.url.path,
            "request_id": get_request_id(),
        },
    )
    try:
        _container(request).events.record(
            "request_error",
            "ERROR",
            message=redact_secrets(str(exc)),
            meta={"path": request.url.path},
        )
    except Exception:
        logger.warning("Could not record request error event", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": {
                "message": "Internal server error",
                "type": "internal_server_error",
                "code": "internal_error",
            },
        },
    )
