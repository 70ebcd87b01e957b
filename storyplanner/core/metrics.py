from __future__ import annotations

from contextlib import contextmanager

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

registry = CollectorRegistry(auto_describe=True)

JSON_PARSE_FAILURES = Counter(
    "storyplanner_json_parse_failures_total",
    "Number of times parsing JSON from Gemini failed, labeled by the extraction tier.",
    ["tier"],
    registry=registry,
)

GEMINI_CALL_DURATION = Histogram(
    "storyplanner_gemini_call_duration_seconds",
    "Latency for Gemini API calls per operation.",
    ["operation"],
    registry=registry,
)

GEMINI_CALLS_TOTAL = Counter(
    "storyplanner_gemini_calls_total",
    "Total Gemini API calls partitioned by operation and status.",
    ["operation", "status"],
    registry=registry,
)

PLAN_GENERATIONS_TOTAL = Counter(
    "storyplanner_plan_generations_total",
    "Plan and reference-sheet requests by grounding mode.",
    ["agent", "mode"],
    registry=registry,
)

ITEM_TRANSITIONS_TOTAL = Counter(
    "storyplanner_item_transitions_total",
    "Per-item lifecycle transitions for shots and characters.",
    ["kind", "status"],
    registry=registry,
)

STALE_COMPLETIONS_TOTAL = Counter(
    "storyplanner_stale_completions_total",
    "Completions discarded because a newer request superseded them.",
    ["kind"],
    registry=registry,
)


def increment_json_parse_failure(tier: str) -> None:
    JSON_PARSE_FAILURES.labels(tier=tier).inc()


@contextmanager
def track_gemini_call(operation: str):
    """Time one backend attempt and count it as success or error."""
    status = "error"
    try:
        with GEMINI_CALL_DURATION.labels(operation=operation).time():
            yield
        status = "success"
    finally:
        GEMINI_CALLS_TOTAL.labels(operation=operation, status=status).inc()


def record_generation_mode(agent: str, mode: str) -> None:
    PLAN_GENERATIONS_TOTAL.labels(agent=agent, mode=mode).inc()


def record_item_transition(kind: str, status: str) -> None:
    ITEM_TRANSITIONS_TOTAL.labels(kind=kind, status=status).inc()


def record_stale_completion(kind: str) -> None:
    STALE_COMPLETIONS_TOTAL.labels(kind=kind).inc()


def get_metrics_payload() -> bytes:
    return generate_latest(registry)
