"""
Prometheus metrics middleware for the Luvia product assistant API.

Exposes /metrics endpoint with request counters, latency histograms,
and business metrics for the chat pipeline.
"""

import logging
import time
from typing import Any, Dict

from fastapi import Request, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

# Request metrics
REQUEST_COUNT = Counter(
    "luvia_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)
REQUEST_LATENCY = Histogram(
    "luvia_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)
ACTIVE_REQUESTS = Gauge(
    "luvia_http_active_requests",
    "Currently active HTTP requests",
)

# Business metrics
WORKFLOW_STATUS = Counter(
    "luvia_workflow_total",
    "Chat turns by workflow status",
    ["status"],
)
AGENT_USED = Counter(
    "luvia_agent_used_total",
    "Chat turns by answering agent",
    ["agent"],
)
RESOLUTION_OUTCOME = Counter(
    "luvia_resolution_outcome_total",
    "Product resolution outcomes",
    ["outcome"],
)
GUARDRAIL_ISSUES = Counter(
    "luvia_guardrail_issues_total",
    "Guardrail issues on drafted replies",
    ["type", "severity"],
)
ESCALATIONS = Counter(
    "luvia_escalations_total",
    "Escalations to the human team",
    ["reason"],
)
PIPELINE_LATENCY = Histogram(
    "luvia_pipeline_duration_seconds",
    "End-to-end chat pipeline latency",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 20.0],
)


def record_chat_turn(response: Dict[str, Any]):
    """Record business metrics for one processed chat turn."""
    WORKFLOW_STATUS.labels(status=response.get("workflow_status", "unknown")).inc()
    AGENT_USED.labels(agent=response.get("agent_used") or "none").inc()

    metadata = response.get("metadata") or {}
    outcome = metadata.get("resolution_outcome")
    if outcome:
        RESOLUTION_OUTCOME.labels(outcome=outcome).inc()

    for issue in response.get("validation_issues") or []:
        GUARDRAIL_ISSUES.labels(type=issue.get("type"), severity=issue.get("severity")).inc()

    reason = metadata.get("escalation_reason")
    if response.get("ticket_id") and reason:
        ESCALATIONS.labels(reason=reason).inc()

    latency_ms = response.get("processing_time_ms")
    if latency_ms:
        PIPELINE_LATENCY.observe(latency_ms / 1000.0)


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that records HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        ACTIVE_REQUESTS.inc()
        start = time.time()

        try:
            response = await call_next(request)
        except Exception:
            ACTIVE_REQUESTS.dec()
            raise

        duration = time.time() - start
        endpoint = request.url.path

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)
        ACTIVE_REQUESTS.dec()

        return response


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
