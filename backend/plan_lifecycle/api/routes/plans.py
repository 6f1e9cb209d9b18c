"""Weekly practice plan endpoints."""
from __future__ import annotations

from time import perf_counter
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from plan_lifecycle.api.schemas.history import (
    FeedbackRequest,
    FeedbackResponse,
    HistoryEntryResponse,
    ProgressResponse,
    ReconcileRequest,
    StatusUpdateRequest,
)
from plan_lifecycle.api.schemas.plan import (
    PlanCreateRequest,
    PlanGenerateRequest,
    PlanListItem,
    PlanListResponse,
    PlanResponse,
)
from plan_lifecycle.db.deps import get_db
from plan_lifecycle.observability.metrics import log_route_metrics
from plan_lifecycle.observability.tracing import trace
from plan_lifecycle.services import plan_service
from plan_lifecycle.services.errors import MalformedPlanError, PlanHistoryConflictError, PlanNotFoundError

router = APIRouter()


def raise_for_domain_error(exc: Exception) -> None:
    """Translate a lifecycle error into the matching HTTP status."""
    if isinstance(exc, PlanNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Plan not found") from exc
    if isinstance(exc, PlanHistoryConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, MalformedPlanError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    raise exc


def _plan_response(loaded: plan_service.LoadedPlan, request_id: str | None) -> PlanResponse:
    return PlanResponse(
        plan=loaded.document,
        was_migrated=loaded.was_migrated,
        migrations_applied=loaded.migrations_applied,
        request_id=request_id or "",
    )


@router.post("/plans", response_model=PlanResponse, status_code=status.HTTP_201_CREATED, tags=["plans"])
def create_plan(request: Request, payload: PlanCreateRequest, db: Session = Depends(get_db)) -> PlanResponse:
    """Store a plan document, upgrading it to the current schema first."""
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    plan_id = payload.plan.get("id")
    try:
        with trace(
            "plans.create",
            metadata={"migrated_on_save": None},
            user_id=str(payload.user_id),
            request_id=request_id,
            plan_id=str(plan_id) if plan_id else None,
        ) as plan_trace:
            loaded = plan_service.save_plan(db, user_id=payload.user_id, document=payload.plan)
            if plan_trace:
                plan_trace.update(metadata={"migrated_on_save": loaded.was_migrated})
    except (MalformedPlanError, PlanNotFoundError) as exc:
        db.rollback()
        raise_for_domain_error(exc)

    log_route_metrics("plans.create", start, metadata={"user_id": str(payload.user_id)})
    return _plan_response(loaded, request_id)


@router.post("/plans/generate", response_model=PlanResponse, status_code=status.HTTP_201_CREATED, tags=["plans"])
def generate_plan(request: Request, payload: PlanGenerateRequest, db: Session = Depends(get_db)) -> PlanResponse:
    """Generate next week's plan, feeding the user's history into the prompt."""
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    try:
        with trace(
            "plans.generate",
            metadata={"include_history": payload.include_history},
            user_id=str(payload.user_id),
            request_id=request_id,
        ):
            loaded = plan_service.generate_plan(db, payload, request_id=request_id)
    except MalformedPlanError as exc:
        db.rollback()
        raise_for_domain_error(exc)

    log_route_metrics("plans.generate", start, metadata={"user_id": str(payload.user_id)})
    return _plan_response(loaded, request_id)


@router.get("/plans", response_model=PlanListResponse, tags=["plans"])
def list_plans(
    request: Request,
    user_id: UUID = Query(..., description="Owner of the plans"),
    db: Session = Depends(get_db),
) -> PlanListResponse:
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    with trace("plans.list", metadata={}, user_id=str(user_id), request_id=request_id):
        rows = plan_service.list_plans(db, user_id)

    items = [
        PlanListItem(
            id=model.id,
            week_start_date=model.document.get("weekStartDate"),
            goal_statement=model.goal_statement,
            status=plan_status,
        )
        for model, plan_status in rows
    ]
    log_route_metrics("plans.list", start, metadata={"user_id": str(user_id), "count": len(items)})
    return PlanListResponse(user_id=user_id, items=items, request_id=request_id or "")


@router.get("/plans/{plan_id}", response_model=PlanResponse, tags=["plans"])
def get_plan(request: Request, plan_id: str, db: Session = Depends(get_db)) -> PlanResponse:
    """Return a plan; records written by older releases are upgraded and saved on read."""
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    try:
        with trace("plans.get", metadata={}, request_id=request_id, plan_id=plan_id):
            loaded = plan_service.load_plan(db, plan_id)
    except (MalformedPlanError, PlanNotFoundError) as exc:
        db.rollback()
        raise_for_domain_error(exc)

    log_route_metrics("plans.get", start, metadata={"plan_id": plan_id, "was_migrated": loaded.was_migrated})
    return _plan_response(loaded, request_id)


@router.post("/plans/{plan_id}/feedback", response_model=FeedbackResponse, tags=["history"])
def log_feedback(
    request: Request,
    plan_id: str,
    payload: FeedbackRequest,
    db: Session = Depends(get_db),
) -> FeedbackResponse:
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    try:
        with trace(
            "plans.feedback",
            metadata={"date": payload.date.isoformat(), "day_name": payload.feedback.day_name},
            request_id=request_id,
            plan_id=plan_id,
        ):
            result = plan_service.record_feedback(db, plan_id, payload.date, payload.feedback)
    except (MalformedPlanError, PlanNotFoundError, PlanHistoryConflictError) as exc:
        db.rollback()
        raise_for_domain_error(exc)

    log_route_metrics("plans.feedback", start, metadata={"plan_id": plan_id})
    return FeedbackResponse(entry=result.entry, feedback=result.feedback, request_id=request_id or "")


@router.get("/plans/{plan_id}/history", response_model=HistoryEntryResponse, tags=["history"])
def get_history(request: Request, plan_id: str, db: Session = Depends(get_db)) -> HistoryEntryResponse:
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    try:
        with trace("plans.history", metadata={}, request_id=request_id, plan_id=plan_id):
            entry = plan_service.get_history_entry(db, plan_id)
    except (MalformedPlanError, PlanNotFoundError) as exc:
        db.rollback()
        raise_for_domain_error(exc)

    log_route_metrics("plans.history", start, metadata={"plan_id": plan_id})
    return HistoryEntryResponse(entry=entry, request_id=request_id or "")


@router.get("/plans/{plan_id}/progress", response_model=ProgressResponse, tags=["history"])
def get_progress(request: Request, plan_id: str, db: Session = Depends(get_db)) -> ProgressResponse:
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    try:
        with trace("plans.progress", metadata={}, request_id=request_id, plan_id=plan_id):
            progress = plan_service.get_progress(db, plan_id)
    except (MalformedPlanError, PlanNotFoundError) as exc:
        db.rollback()
        raise_for_domain_error(exc)

    log_route_metrics("plans.progress", start, metadata={"plan_id": plan_id, "days": len(progress.days)})
    return ProgressResponse(
        plan_id=plan_id,
        days=progress.days,
        plan_days=progress.plan_days,
        request_id=request_id or "",
    )


@router.post("/plans/{plan_id}/reconcile", response_model=HistoryEntryResponse, tags=["history"])
def reconcile_plan(
    request: Request,
    plan_id: str,
    payload: ReconcileRequest,
    db: Session = Depends(get_db),
) -> HistoryEntryResponse:
    """Rebuild the plan's history entry from the practice tracker's completion dates."""
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    try:
        with trace(
            "plans.reconcile",
            metadata={"practices": len(payload.completion_history)},
            request_id=request_id,
            plan_id=plan_id,
        ):
            entry = plan_service.reconcile_plan(db, plan_id, payload.completion_history)
    except (MalformedPlanError, PlanNotFoundError) as exc:
        db.rollback()
        raise_for_domain_error(exc)

    log_route_metrics("plans.reconcile", start, metadata={"plan_id": plan_id})
    return HistoryEntryResponse(entry=entry, request_id=request_id or "")


@router.patch("/plans/{plan_id}/status", response_model=HistoryEntryResponse, tags=["history"])
def update_status(
    request: Request,
    plan_id: str,
    payload: StatusUpdateRequest,
    db: Session = Depends(get_db),
) -> HistoryEntryResponse:
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    try:
        with trace("plans.status", metadata={"status": payload.status}, request_id=request_id, plan_id=plan_id):
            entry = plan_service.update_plan_status(db, plan_id, payload.status)
    except (MalformedPlanError, PlanNotFoundError) as exc:
        db.rollback()
        raise_for_domain_error(exc)

    log_route_metrics("plans.status", start, metadata={"plan_id": plan_id, "status": payload.status})
    return HistoryEntryResponse(entry=entry, request_id=request_id or "")


@router.get("/plans/{plan_id}/calendar.ics", tags=["plans"], response_class=Response)
def export_calendar(request: Request, plan_id: str, db: Session = Depends(get_db)) -> Response:
    """Download the plan as an iCalendar file."""
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    try:
        with trace("plans.calendar_export", metadata={}, request_id=request_id, plan_id=plan_id) as export_trace:
            export = plan_service.export_calendar(db, plan_id)
            if export_trace:
                export_trace.update(metadata={"event_count": export.event_count})
    except (MalformedPlanError, PlanNotFoundError) as exc:
        db.rollback()
        raise_for_domain_error(exc)

    log_route_metrics("plans.calendar_export", start, metadata={"plan_id": plan_id, "events": export.event_count})
    return Response(
        content=export.content,
        media_type=export.content_type,
        headers={"Content-Disposition": f'attachment; filename="{export.filename}"'},
    )
