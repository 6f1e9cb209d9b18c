"""Cross-plan history endpoints: compliance summary and personalization."""
from __future__ import annotations

from time import perf_counter
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from plan_lifecycle.api.schemas.history import PersonalizationResponse, SummaryResponse
from plan_lifecycle.db.deps import get_db
from plan_lifecycle.observability.metrics import log_route_metrics
from plan_lifecycle.observability.tracing import trace
from plan_lifecycle.services import plan_service

router = APIRouter()


@router.get("/history/summary", response_model=SummaryResponse, tags=["history"])
def get_summary(
    request: Request,
    user_id: UUID = Query(...),
    day_patterns: Optional[List[str]] = Query(default=None),
    adjustments: Optional[List[str]] = Query(default=None),
    db: Session = Depends(get_db),
) -> SummaryResponse:
    """Summarise every tracked plan of the user for the next generation request."""
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    with trace("history.summary", metadata={}, user_id=str(user_id), request_id=request_id) as summary_trace:
        summary = plan_service.build_user_summary(
            db,
            user_id,
            day_patterns=day_patterns or (),
            adjustments=adjustments or (),
        )
        if summary_trace:
            summary_trace.update(metadata={"plans_analyzed": summary.total_plans_analyzed})

    log_route_metrics("history.summary", start, metadata={"user_id": str(user_id)})
    return SummaryResponse(user_id=user_id, summary=summary, request_id=request_id or "")


@router.get("/history/personalization", response_model=PersonalizationResponse, tags=["history"])
def get_personalization(
    request: Request,
    user_id: UUID = Query(...),
    db: Session = Depends(get_db),
) -> PersonalizationResponse:
    request_id = getattr(request.state, "request_id", None)
    start = perf_counter()
    with trace("history.personalization", metadata={}, user_id=str(user_id), request_id=request_id):
        personalization = plan_service.build_user_personalization(db, user_id)

    log_route_metrics("history.personalization", start, metadata={"user_id": str(user_id)})
    return PersonalizationResponse(user_id=user_id, personalization=personalization, request_id=request_id or "")
