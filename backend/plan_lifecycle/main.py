"""Main FastAPI application for the plan lifecycle service."""
from fastapi import FastAPI, Request

from plan_lifecycle.api.routes.history import router as history_router
from plan_lifecycle.api.routes.jobs import router as jobs_router
from plan_lifecycle.api.routes.plans import router as plans_router
from plan_lifecycle.core.config import settings
from plan_lifecycle.core.logging import configure_logging
from plan_lifecycle.core.middleware import RequestIDMiddleware
from plan_lifecycle.observability.client import flush_opik, init_opik
from plan_lifecycle.observability.tracing import trace

configure_logging(log_level=settings.log_level)

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(RequestIDMiddleware)
app.include_router(plans_router)
app.include_router(history_router)
app.include_router(jobs_router)


@app.on_event("startup")
async def startup_observability() -> None:
    """Initialize observability backends after the event loop starts."""
    init_opik()


@app.on_event("shutdown")
async def shutdown_observability() -> None:
    flush_opik()


@app.get("/health", tags=["health"], summary="Readiness probe")
async def health_check(request: Request) -> dict[str, str]:
    """Return a simple status payload so automation can probe the API."""
    with trace("http.health_check", metadata={"route": "/health"}, request_id=request.state.request_id):
        return {"status": "ok"}
