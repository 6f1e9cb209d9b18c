"""Operational endpoints for scheduler jobs."""
from __future__ import annotations

from time import perf_counter

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from plan_lifecycle.api.schemas.jobs import JobRunRequest, JobRunResponse
from plan_lifecycle.core.config import settings
from plan_lifecycle.db.deps import get_db
from plan_lifecycle.observability.metrics import log_metric
from plan_lifecycle.observability.tracing import trace
from plan_lifecycle.services.job_runner import run_plan_migrations, run_week_closeout

router = APIRouter()


@router.get("/jobs", tags=["jobs"])
def get_jobs_config(request: Request) -> dict:
    request_id = getattr(request.state, "request_id", None)
    with trace("jobs.config", metadata={"request_id": request_id}, request_id=request_id):
        data = {
            "scheduler_enabled": settings.scheduler_enabled,
            "schedule": {
                "timezone": settings.scheduler_timezone,
                "maintenance_day": settings.maintenance_job_day,
                "maintenance_time": f"{settings.maintenance_job_hour:02d}:{settings.maintenance_job_minute:02d}",
            },
            "strict_migrations": settings.strict_migrations,
        }
    return {**data, "request_id": request_id or ""}


@router.post("/jobs/run-now", response_model=JobRunResponse, tags=["jobs"])
def run_job_now(
    request: Request,
    payload: JobRunRequest,
    db: Session = Depends(get_db),
) -> JobRunResponse:
    if not settings.debug:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Run-now only allowed in debug mode")

    request_id = getattr(request.state, "request_id", None)
    metadata = {"job": payload.job, "request_id": request_id}
    start = perf_counter()
    with trace("jobs.run_now", metadata=metadata, request_id=request_id):
        if payload.job == "plan_migration":
            result = run_plan_migrations(db)
        else:
            result = run_week_closeout(db)

    latency_ms = (perf_counter() - start) * 1000
    log_metric("jobs.run_now.success", 1, metadata={"job": payload.job})
    log_metric("jobs.run_now.latency_ms", latency_ms, metadata={"job": payload.job})

    return JobRunResponse(
        job=payload.job,
        plans_scanned=result.plans_scanned,
        plans_updated=result.plans_updated,
        request_id=request_id or "",
    )
