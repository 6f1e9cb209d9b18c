"""Per-request and per-plan context utilities used to enrich log records."""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

request_id_ctx_var: ContextVar[str | None] = ContextVar("request_id", default=None)
plan_id_ctx_var: ContextVar[str | None] = ContextVar("plan_id", default=None)


def get_request_id() -> str | None:
    """Return the current request id if available."""
    return request_id_ctx_var.get()


def get_plan_id() -> str | None:
    """Return the plan currently being processed, if any."""
    return plan_id_ctx_var.get()


@contextmanager
def bind_plan_id(plan_id: str | None) -> Iterator[None]:
    """Tag every log record emitted inside the block with ``plan_id``."""
    token = plan_id_ctx_var.set(plan_id)
    try:
        yield
    finally:
        plan_id_ctx_var.reset(token)
