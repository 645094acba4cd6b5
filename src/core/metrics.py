"""
Prometheus Metrics for Observability

Tracks stage latency, provider calls, retries, budget rejections and
reported provider spend.
"""

import time
from decimal import Decimal
from typing import Union
from contextlib import contextmanager

from prometheus_client import (
    Counter,
    Histogram,
    Info,
    generate_latest,
)

# =============================================================================
# Metrics Definitions
# =============================================================================

# Pipeline Latency - Per Stage
pipeline_latency_seconds = Histogram(
    "bggen_stage_latency_seconds",
    "Time spent in each pipeline transition",
    labelnames=["stage", "status"],
    buckets=[0.01, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0]
)

# Provider calls, one per attempt
provider_calls_total = Counter(
    "bggen_provider_calls_total",
    "Total number of image provider calls",
    labelnames=["operation", "outcome"]
)

provider_retries_total = Counter(
    "bggen_provider_retries_total",
    "Retries scheduled after a transient provider failure",
    labelnames=["operation"]
)

budget_rejections_total = Counter(
    "bggen_budget_rejections_total",
    "Generation requests refused before any provider spend",
    labelnames=["tier", "model_id"]
)

provider_cost_usd_total = Counter(
    "bggen_provider_cost_usd_total",
    "Cost reported by the provider for successful calls",
    labelnames=["model_id"]
)

workflows_completed_total = Counter(
    "bggen_workflows_completed_total",
    "Workflows that reached the final stage",
    labelnames=["quality_tier"]
)

# Application Info
app_info = Info(
    "bggen_app",
    "Application information"
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_app_info(version: str, environment: str):
    """Set application info metric."""
    app_info.info({
        "version": version,
        "environment": environment
    })


@contextmanager
def track_stage_latency(stage: str):
    """Observe the block's wall time under (stage, success|error); cancellation counts as error."""
    started = time.perf_counter()
    outcome = "error"
    try:
        yield
        outcome = "success"
    finally:
        pipeline_latency_seconds.labels(stage=stage, status=outcome).observe(time.perf_counter() - started)


def record_provider_call(operation: str, outcome: str):
    """Record one provider attempt (outcome: success, transient, permanent, unknown)."""
    provider_calls_total.labels(operation=operation, outcome=outcome).inc()


def record_retry(operation: str):
    provider_retries_total.labels(operation=operation).inc()


def record_budget_rejection(tier: str, model_id: str):
    budget_rejections_total.labels(tier=tier, model_id=model_id).inc()


def record_provider_cost(model_id: str, cost: Union[Decimal, float, None]):
    if cost:
        provider_cost_usd_total.labels(model_id=model_id).inc(float(cost))


def record_workflow_completion(quality_tier: str):
    workflows_completed_total.labels(quality_tier=quality_tier).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output."""
    return generate_latest()
