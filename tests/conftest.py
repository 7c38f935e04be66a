"""pytest configuration and shared fakes for MCP Lookup tests."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from mcp_lookup import store as kv
from mcp_lookup.dns_lookup import LookupOutcome, TxtLookup
from mcp_lookup.models import (
    Capabilities,
    Category,
    HealthMetrics,
    HealthStatus,
    ServerRecord,
    VerificationInfo,
    VerificationStatus,
)
from mcp_lookup.store import MemoryRecordStore
from mcp_lookup.trust import trust_score
from mcp_lookup.verification import VerificationService

T0 = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeResolver:
    """
    In-memory DNS.

    ``txt`` maps record names to their TXT strings; names listed in
    ``transient`` fail as if the nameserver timed out.
    """

    def __init__(self):
        self.txt: dict[str, list[str]] = {}
        self.transient: set[str] = set()
        self.addresses: dict[str, list[str]] = {}
        self.lookups: list[str] = []

    def publish(self, name: str, value: str) -> None:
        self.txt.setdefault(name, []).append(value)

    def remove(self, name: str) -> None:
        self.txt.pop(name, None)

    async def lookup_txt(self, name: str) -> TxtLookup:
        self.lookups.append(name)
        # Yield like a real network call so concurrent checks interleave
        await asyncio.sleep(0)
        if name in self.transient:
            return TxtLookup(name=name, outcome=LookupOutcome.TRANSIENT, error="timeout")
        if name not in self.txt:
            return TxtLookup(name=name, outcome=LookupOutcome.ABSENT)
        return TxtLookup(name=name, outcome=LookupOutcome.FOUND, records=list(self.txt[name]))

    async def resolve_addresses(self, host: str) -> list[str]:
        return self.addresses.get(host, ["93.184.216.34"])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def verification(store, resolver, clock):
    return VerificationService(store, resolver=resolver, clock=clock)


@pytest.fixture
def add_server(store):
    """Save a verified server record and return it."""

    async def _add(
        domain: str,
        tags: list[str] | None = None,
        *,
        keywords: list[str] | None = None,
        category: Category = Category.OTHER,
        status: HealthStatus = HealthStatus.HEALTHY,
        uptime: float = 100.0,
        avg_ms: float = 100.0,
        verified: bool = True,
        created_at: datetime = T0,
        **fields,
    ) -> ServerRecord:
        probed = status != HealthStatus.UNKNOWN
        record = ServerRecord(
            domain=domain,
            endpoint=f"https://{domain}/mcp",
            name=fields.pop("name", domain.split(".")[0].title()),
            capabilities=Capabilities(
                category=category,
                tags=list(tags or []),
                keywords=list(keywords or []),
                use_cases=fields.pop("use_cases", []),
            ),
            health=HealthMetrics(
                status=status,
                uptime_percentage=uptime if probed else 0.0,
                avg_response_time_ms=avg_ms if probed else 0.0,
                total_checks=10 if probed else 0,
            ),
            verification=VerificationInfo(
                status=VerificationStatus.VERIFIED if verified else VerificationStatus.UNVERIFIED,
                dns_verified=verified,
                verified_at=created_at if verified else None,
                txt_record_name=f"_mcp-verify.{domain}",
                token=f"token-{domain}",
            ),
            created_at=created_at,
            updated_at=created_at,
            **fields,
        )
        record.trust_score = trust_score(
            record.verification, record.health, record.community_rating
        )
        await store.set(kv.SERVERS, domain, record.to_dict())
        return record

    return _add
