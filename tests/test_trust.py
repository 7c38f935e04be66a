"""Tests for the trust score calculator."""

import pytest

from mcp_lookup.models import HealthMetrics, HealthStatus, VerificationInfo, VerificationStatus
from mcp_lookup.trust import trust_breakdown, trust_score

VERIFIED = VerificationInfo(status=VerificationStatus.VERIFIED, dns_verified=True)


def health(uptime=100.0, avg_ms=0.0, status=HealthStatus.HEALTHY):
    return HealthMetrics(
        status=status, uptime_percentage=uptime, avg_response_time_ms=avg_ms, total_checks=5
    )


class TestTrustScore:
    def test_perfect_server(self):
        assert trust_score(VERIFIED, health(), community_rating=5.0) == 100

    def test_components(self):
        parts = trust_breakdown(VERIFIED, health(uptime=90.0, avg_ms=250.0), community_rating=2.5)
        assert parts == {
            "uptime_component": pytest.approx(36.0),
            "latency_component": pytest.approx(15.0),
            "verification_component": 20.0,
            "community_component": pytest.approx(10.0),
        }
        assert trust_score(VERIFIED, health(uptime=90.0, avg_ms=250.0), 2.5) == 81

    def test_slow_server_gets_no_latency_points(self):
        parts = trust_breakdown(VERIFIED, health(avg_ms=5000.0))
        assert parts["latency_component"] == 0.0

    def test_never_probed_contributes_nothing_for_health(self):
        unknown = HealthMetrics()
        assert trust_score(VERIFIED, unknown) == 20
        assert trust_score(None, None) == 0

    def test_unverified_loses_dns_points(self):
        unverified = VerificationInfo()
        assert trust_score(unverified, health()) == 60

    def test_floors_fractional_totals(self):
        # 40 * 0.995 = 39.8 uptime points
        assert trust_score(None, health(uptime=99.5, avg_ms=1000.0)) == 39

    def test_clamps_out_of_range_inputs(self):
        assert trust_score(VERIFIED, health(uptime=150.0), community_rating=9.0) == 100
        assert trust_score(None, health(uptime=-10.0, avg_ms=1000.0), community_rating=-1) == 0

    def test_monotonic_in_uptime(self):
        scores = [
            trust_score(VERIFIED, health(uptime=u, avg_ms=120.0), community_rating=3.0)
            for u in range(0, 101, 5)
        ]
        assert scores == sorted(scores)
        assert all(0 <= s <= 100 for s in scores)
