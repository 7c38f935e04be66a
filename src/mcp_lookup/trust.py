"""
Trust score calculation.

trust = uptime (40) + latency (20) + DNS verification (20) + community (20)

Pure and deterministic: no I/O, no clock.
"""

import math

from .models import HealthMetrics, HealthStatus, VerificationInfo

UPTIME_WEIGHT = 0.4
LATENCY_MAX = 20.0
LATENCY_MS_PER_POINT = 50.0
VERIFICATION_POINTS = 20.0
COMMUNITY_MAX = 20.0
COMMUNITY_SCALE = 5.0


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def trust_breakdown(
    verification: VerificationInfo | None,
    health: HealthMetrics | None,
    community_rating: float | None = None,
) -> dict[str, float]:
    """
    Compute the individual trust score components.

    A server that has never been probed contributes nothing for uptime
    or latency.
    """
    probed = health is not None and (
        health.status != HealthStatus.UNKNOWN or health.total_checks > 0
    )

    if probed:
        uptime = _clamp(health.uptime_percentage, 0.0, 100.0) * UPTIME_WEIGHT
        latency = _clamp(
            LATENCY_MAX - health.avg_response_time_ms / LATENCY_MS_PER_POINT,
            0.0,
            LATENCY_MAX,
        )
    else:
        uptime = 0.0
        latency = 0.0

    dns_verified = bool(verification and verification.dns_verified)
    rating = _clamp(community_rating or 0.0, 0.0, COMMUNITY_SCALE)

    return {
        "uptime_component": uptime,
        "latency_component": latency,
        "verification_component": VERIFICATION_POINTS if dns_verified else 0.0,
        "community_component": rating / COMMUNITY_SCALE * COMMUNITY_MAX,
    }


def trust_score(
    verification: VerificationInfo | None,
    health: HealthMetrics | None,
    community_rating: float | None = None,
) -> int:
    """Sum of the components, floored and clamped to [0, 100]."""
    total = sum(trust_breakdown(verification, health, community_rating).values())
    return int(_clamp(math.floor(total), 0, 100))
