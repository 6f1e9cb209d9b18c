"""Schemas for job operations endpoints."""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class JobRunRequest(BaseModel):
    job: Literal["plan_migration", "week_closeout"]


class JobRunResponse(BaseModel):
    job: str
    plans_scanned: int
    plans_updated: int
    request_id: str
