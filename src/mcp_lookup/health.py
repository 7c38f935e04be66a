"""
Health monitoring for registered MCP endpoints.

Each probe sends a JSON-RPC ``initialize`` request to the endpoint; any
2xx response counts as up. Probes run concurrently under a bounded
pool and each carries its own timeout, so a hanging endpoint only ever
occupies one slot for at most the timeout.

Rolling metrics per domain:
- avg_response_time_ms: exponential moving average (alpha ~0.2);
  a failed probe counts as a full-timeout sample
- uptime_percentage: decayed average of 100 (up) / 0 (down) samples,
  a plain mean while the history is shorter than the decay window
- consecutive_failures: reset on success; 3 in a row force unhealthy
"""

import asyncio
import logging
import time
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

import httpx

from . import store as kv
from .config import (
    HEALTH_EMA_ALPHA,
    HEALTH_FAILURE_THRESHOLD,
    HEALTH_MAX_CONCURRENCY,
    HEALTH_PROBE_TIMEOUT_SECONDS,
    HEALTH_UPTIME_DECAY,
)
from .errors import DomainNotFound
from .models import HealthMetrics, HealthStatus, ServerRecord, utcnow
from .schemas import HealthQuery
from .store import RecordStore
from .trust import trust_breakdown, trust_score

logger = logging.getLogger(__name__)

HEALTHY_UPTIME = 99.0
DEGRADED_UPTIME = 95.0

USER_AGENT = "MCPLookup-HealthChecker/1.0"


@dataclass
class ProbeResult:
    ok: bool
    response_time_ms: float
    status_code: int | None = None
    error: str | None = None


def status_for_uptime(uptime_percentage: float) -> HealthStatus:
    if uptime_percentage >= HEALTHY_UPTIME:
        return HealthStatus.HEALTHY
    if uptime_percentage >= DEGRADED_UPTIME:
        return HealthStatus.DEGRADED
    return HealthStatus.UNHEALTHY


def apply_probe(
    metrics: HealthMetrics,
    result: ProbeResult,
    now: datetime,
    alpha: float = HEALTH_EMA_ALPHA,
    decay: float = HEALTH_UPTIME_DECAY,
    failure_sample_ms: float = HEALTH_PROBE_TIMEOUT_SECONDS * 1000,
) -> HealthMetrics:
    """
    Fold one probe result into the rolling metrics. Pure.

    The first probe seeds the averages instead of blending with zeros.
    Until ``1 / decay`` probes have run, uptime is the plain mean of all
    samples so far, so an early outage weighs no more than its share.
    """
    first = metrics.total_checks == 0
    total_checks = metrics.total_checks + 1
    sample_ms = result.response_time_ms if result.ok else failure_sample_ms
    uptime_sample = 100.0 if result.ok else 0.0
    uptime_weight = max(decay, 1 / total_checks)

    updated = replace(
        metrics,
        total_checks=total_checks,
        last_check=now,
        response_time_ms=round(result.response_time_ms, 3),
        avg_response_time_ms=(
            sample_ms if first else alpha * sample_ms + (1 - alpha) * metrics.avg_response_time_ms
        ),
        uptime_percentage=(
            uptime_weight * uptime_sample + (1 - uptime_weight) * metrics.uptime_percentage
        ),
    )

    if result.ok:
        updated.consecutive_failures = 0
        updated.last_error = None
        updated.status = status_for_uptime(updated.uptime_percentage)
        return updated

    updated.consecutive_failures = metrics.consecutive_failures + 1
    updated.last_error = result.error or "probe failed"
    if updated.consecutive_failures >= HEALTH_FAILURE_THRESHOLD:
        updated.status = HealthStatus.UNHEALTHY
    elif metrics.status in (HealthStatus.UNKNOWN, HealthStatus.HEALTHY):
        updated.status = HealthStatus.DEGRADED
    else:
        updated.status = metrics.status
    return updated


class HealthMonitor:
    """Probes verified servers and keeps their health metrics current."""

    def __init__(
        self,
        store: RecordStore,
        timeout: float = HEALTH_PROBE_TIMEOUT_SECONDS,
        max_concurrency: int = HEALTH_MAX_CONCURRENCY,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
        timer: Callable[[], float] = time.perf_counter,
    ):
        """
        Initialize the monitor.

        Args:
            store: Record store holding server records
            timeout: Per-probe timeout in seconds
            max_concurrency: Worker pool size for check_all
            transport: Optional httpx transport (tests use httpx.MockTransport)
            clock: Returns the current UTC time
            timer: Monotonic timer used to measure response times
        """
        self.store = store
        self.timeout = timeout
        self.max_concurrency = max_concurrency
        self.transport = transport
        self.clock = clock
        self.timer = timer

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self.transport,
            timeout=self.timeout,
            headers={"User-Agent": USER_AGENT},
        )

    async def probe(self, client: httpx.AsyncClient, endpoint: str) -> ProbeResult:
        """Send one MCP initialize request. Never raises."""
        payload = {
            "jsonrpc": "2.0",
            "id": "health-check",
            "method": "initialize",
            "params": {
                "protocolVersion": "2024-11-05",
                "capabilities": {},
                "clientInfo": {"name": "mcplookup-health-checker", "version": "1.0.0"},
            },
        }
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }

        started = self.timer()
        try:
            response = await asyncio.wait_for(
                client.post(endpoint, json=payload, headers=headers),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            return ProbeResult(ok=False, response_time_ms=self._elapsed(started), error="timeout")
        except httpx.HTTPError as e:
            # Connection refused, TLS failure, protocol errors
            return ProbeResult(
                ok=False,
                response_time_ms=self._elapsed(started),
                error=f"{type(e).__name__}: {e}",
            )

        elapsed = self._elapsed(started)
        if not response.is_success:
            return ProbeResult(
                ok=False,
                response_time_ms=elapsed,
                status_code=response.status_code,
                error=f"HTTP {response.status_code}",
            )
        return ProbeResult(ok=True, response_time_ms=elapsed, status_code=response.status_code)

    def _elapsed(self, started: float) -> float:
        return (self.timer() - started) * 1000

    async def check_domain(self, domain: str, client: httpx.AsyncClient | None = None) -> HealthMetrics:
        """
        Probe one registered domain and persist the updated metrics.

        Raises:
            DomainNotFound: Domain has no server record
        """
        record = await self._load(domain)

        if client is None:
            async with self._client() as own_client:
                result = await self.probe(own_client, record.endpoint)
        else:
            result = await self.probe(client, record.endpoint)

        if not result.ok:
            logger.debug(f"Health probe failed for {domain}: {result.error}")

        # Re-read so a verification change during the probe is not lost
        record = await self._load(domain)
        previous = record.health.status
        record.health = apply_probe(record.health, result, self.clock())
        record.trust_score = trust_score(
            record.verification, record.health, record.community_rating
        )
        record.updated_at = self.clock()
        await self.store.set(kv.SERVERS, domain, record.to_dict())

        if record.health.status != previous:
            logger.info(f"Health of {domain}: {previous.value} -> {record.health.status.value}")
        return record.health

    async def check_all(self) -> dict[str, dict[str, Any]]:
        """
        Probe every verified server through the bounded pool.

        One failing check never cancels the others; its error is reported
        under its domain instead.
        """
        records = [ServerRecord.from_dict(d) for d in await self.store.get_all(kv.SERVERS)]
        domains = [r.domain for r in records if r.is_verified]
        semaphore = asyncio.Semaphore(self.max_concurrency)
        results: dict[str, dict[str, Any]] = {}

        async with self._client() as client:

            async def run(domain: str) -> None:
                async with semaphore:
                    try:
                        metrics = await self.check_domain(domain, client)
                    except Exception as e:
                        logger.error(f"Health check for {domain} failed: {e}")
                        results[domain] = {"error": str(e)}
                        return
                results[domain] = metrics.to_dict()

            await asyncio.gather(*(run(d) for d in domains))

        unhealthy = sum(1 for r in results.values() if r.get("status") == HealthStatus.UNHEALTHY.value)
        logger.info(f"Health sweep: {len(domains)} checked, {unhealthy} unhealthy")
        return {d: results[d] for d in sorted(results)}

    async def get_health(self, query: HealthQuery) -> dict[str, Any]:
        """
        Current health and trust score for one or many domains.

        Raises:
            DomainNotFound: Single-domain query for an unknown domain
        """
        if query.domain:
            return self._health_entry(await self._load(query.domain))

        entries = []
        for domain in query.domains or []:
            data = await self.store.get(kv.SERVERS, domain)
            if not data:
                entries.append({"domain": domain, "error": DomainNotFound.kind})
                continue
            entries.append(self._health_entry(ServerRecord.from_dict(data)))
        return {"results": entries}

    @staticmethod
    def _health_entry(record: ServerRecord) -> dict[str, Any]:
        return {
            "domain": record.domain,
            "health": record.health.to_dict(),
            "trust_score": record.trust_score,
            "trust_breakdown": {
                name: round(value, 3)
                for name, value in trust_breakdown(
                    record.verification, record.health, record.community_rating
                ).items()
            },
            "verification_status": record.verification.status.value,
        }

    async def _load(self, domain: str) -> ServerRecord:
        data = await self.store.get(kv.SERVERS, domain)
        if not data:
            raise DomainNotFound(f"No server registered for '{domain}'", field="domain")
        return ServerRecord.from_dict(data)
