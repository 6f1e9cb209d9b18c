"""Lightweight metrics helpers."""
from __future__ import annotations

import logging
from time import perf_counter
from typing import Any, Dict, Optional

from plan_lifecycle.observability import tracing

logger = logging.getLogger(__name__)


def log_metric(name: str, value: float | int, metadata: Optional[Dict[str, Any]] = None) -> None:
    """Log a metric to Opik if it is enabled."""
    client = tracing.get_opik_client()
    if not client:
        return

    payload: Dict[str, Any] = {"value": value}
    if metadata:
        payload.update(metadata)

    try:
        metric_trace = client.trace(name=f"metric:{name}", metadata=payload)
    except Exception as exc:  # pragma: no cover - defensive
        logger.debug("Unable to record metric %s: %s", name, exc)
        return

    end = getattr(metric_trace, "end", None)
    if callable(end):
        try:
            end()
        except Exception:  # pragma: no cover - defensive
            logger.debug("Unable to close metric trace %s", name, exc_info=True)


def log_route_metrics(prefix: str, start: float, metadata: Optional[Dict[str, Any]] = None) -> None:
    """Emit the ``<prefix>.success`` and ``<prefix>.latency_ms`` pair used by every route."""
    latency_ms = (perf_counter() - start) * 1000
    log_metric(f"{prefix}.success", 1, metadata=metadata)
    log_metric(f"{prefix}.latency_ms", latency_ms, metadata=metadata)
