"""Telemetry module for tracking request performance with PostHog."""

import logging
import time
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from posthog import Posthog

logger = logging.getLogger(__name__)

DISTINCT_ID = "soundtrace-core-service"


@dataclass
class StepResult:
    """Result of a tracked step."""

    duration_ms: float
    success: bool = True
    error_type: str | None = None


@dataclass
class RequestTelemetry:
    """Tracks performance metrics for a single request."""

    steps: dict[str, StepResult] = field(default_factory=dict)
    api_calls: dict[str, int] = field(default_factory=lambda: {"acrcloud": 0, "backend": 0})
    start_time: float = field(default_factory=time.perf_counter)

    @contextmanager
    def track_step(self, step_name: str):
        """Context manager to time a step.

        Args:
            step_name: Name of the step being tracked

        Yields:
            None
        """
        step_start = time.perf_counter()
        error_type = None

        try:
            yield
        except Exception as e:
            error_type = type(e).__name__
            raise
        finally:
            duration_ms = (time.perf_counter() - step_start) * 1000
            self.steps[step_name] = StepResult(
                duration_ms=duration_ms,
                success=error_type is None,
                error_type=error_type,
            )

    def record_api_call(self, service: str) -> None:
        """Increment API call counter for a service.

        Args:
            service: Name of the service ("acrcloud" or "backend")
        """
        if service in self.api_calls:
            self.api_calls[service] += 1
        else:
            logger.warning(f"Unknown service for API call tracking: {service}")

    def get_total_duration_ms(self) -> float:
        """Get total elapsed time since telemetry was created."""
        return (time.perf_counter() - self.start_time) * 1000

    def get_step_timings(self) -> dict[str, float]:
        """Get timing for each step in milliseconds."""
        return {f"{name}_ms": step.duration_ms for name, step in self.steps.items()}

    def send_to_posthog(
        self,
        posthog_client: Posthog,
        event_prefix: str = "scan",
        extra_properties: dict[str, Any] | None = None,
    ) -> None:
        """Send all telemetry events to PostHog.

        Args:
            posthog_client: PostHog client instance
            event_prefix: Prefix for event names ("scan" -> "scan_identify", "scan_completed")
            extra_properties: Additional properties to include in the completed event
        """
        extra_properties = extra_properties or {}

        for step_name, step_result in self.steps.items():
            posthog_client.capture(
                distinct_id=DISTINCT_ID,
                event=f"{event_prefix}_{step_name}",
                properties={
                    "step": step_name,
                    "duration_ms": round(step_result.duration_ms, 2),
                    "success": step_result.success,
                    "error_type": step_result.error_type,
                },
            )

        cache_props = (get_request_stats() or _empty_stats()).copy()

        posthog_client.capture(
            distinct_id=DISTINCT_ID,
            event=f"{event_prefix}_completed",
            properties={
                "total_duration_ms": round(self.get_total_duration_ms(), 2),
                "steps": self.get_step_timings(),
                "api_calls": self.api_calls.copy(),
                "cache": cache_props,
                **extra_properties,
            },
        )

        logger.debug(
            f"Sent telemetry: {len(self.steps)} steps, total {self.get_total_duration_ms():.1f}ms"
        )


# ---------------------------------------------------------------------------
# Per-request stats via ContextVar
# ---------------------------------------------------------------------------

_request_stats_var: ContextVar[dict | None] = ContextVar("request_stats")


def _empty_stats() -> dict:
    return {"memory_hits": 0, "api_calls": 0, "api_time_ms": 0.0}


def init_request_stats() -> None:
    """Initialize stats for the current request context."""
    _request_stats_var.set(_empty_stats())


def record_memory_cache_hit() -> None:
    """Record an in-memory TTL cache hit in the current request context."""
    stats = _request_stats_var.get(None)
    if stats is not None:
        stats["memory_hits"] += 1


def record_api_call() -> None:
    """Record an outbound API call in the current request context."""
    stats = _request_stats_var.get(None)
    if stats is not None:
        stats["api_calls"] += 1


def record_api_time(ms: float) -> None:
    """Accumulate outbound API call time in the current request context."""
    stats = _request_stats_var.get(None)
    if stats is not None:
        stats["api_time_ms"] += ms


def get_request_stats() -> dict | None:
    """Get stats for the current request context, or None if not initialized."""
    return _request_stats_var.get(None)
