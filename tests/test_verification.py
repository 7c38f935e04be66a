"""Tests for DNS verification: challenge issue, checking, expiry and re-verification."""

import asyncio
from datetime import timedelta

import pytest

from mcp_lookup import store as kv
from mcp_lookup.errors import (
    ChallengeNotFound,
    DomainAlreadyRegistered,
    InsecureEndpoint,
    InvalidDomain,
)
from mcp_lookup.models import ChallengeStatus, ServerRecord, VerificationStatus
from mcp_lookup.schemas import RegistrationRequest
from mcp_lookup.store import MemoryRecordStore
from mcp_lookup.verification import VerificationService

from conftest import T0


def registration(domain="example.com", endpoint="https://example.com/svc", **extra):
    return RegistrationRequest(
        domain=domain, endpoint=endpoint, contact_email="ops@example.com", **extra
    )


async def register_and_publish(verification, resolver, **extra):
    challenge = await verification.initiate(registration(**extra))
    resolver.publish(challenge["txt_record_name"], challenge["txt_record_value"])
    return challenge


class CountingStore(MemoryRecordStore):
    """Counts writes to the servers collection."""

    def __init__(self):
        super().__init__()
        self.server_writes = 0

    async def set(self, collection, key, value):
        if collection == kv.SERVERS:
            self.server_writes += 1
        await super().set(collection, key, value)


class FlakyStore(MemoryRecordStore):
    """Fails the first write to the servers collection."""

    def __init__(self):
        super().__init__()
        self.failed = False

    async def set(self, collection, key, value):
        if collection == kv.SERVERS and not self.failed:
            self.failed = True
            raise ConnectionError("store unavailable")
        await super().set(collection, key, value)


class TestInitiate:
    @pytest.mark.asyncio
    async def test_issues_challenge_for_domain(self, verification, store):
        """Registering returns the TXT record to publish and a 24h deadline."""
        challenge = await verification.initiate(registration())

        assert challenge["domain"] == "example.com"
        assert challenge["txt_record_name"] == "_mcp-verify.example.com"
        assert challenge["txt_record_value"].startswith("v=mcp1 domain=example.com token=")
        assert challenge["expires_at"] == (T0 + timedelta(hours=24)).isoformat()
        assert "_mcp-verify.example.com" in challenge["instructions"]

        stored = await store.get(kv.CHALLENGES, challenge["challenge_id"])
        assert stored["status"] == "pending"
        assert stored["token"] in challenge["txt_record_value"]

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, verification):
        first = await verification.initiate(registration())
        second = await verification.initiate(registration(domain="other.org", endpoint="https://mcp.other.org"))
        assert first["challenge_id"] != second["challenge_id"]
        assert first["txt_record_value"] != second["txt_record_value"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "domain",
        ["", "localhost", "printer.local", "10.0.0.1", "no_underscores.com", "a" * 64 + ".com"],
    )
    async def test_rejects_invalid_domains(self, verification, store, domain):
        with pytest.raises(InvalidDomain):
            await verification.initiate(registration(domain=domain, endpoint="https://example.com/svc"))
        assert await store.get_all(kv.CHALLENGES) == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "endpoint",
        [
            "http://example.com/svc",
            "https://127.0.0.1/svc",
            "https://evil.net/svc",
            "ftp://example.com/svc",
        ],
    )
    async def test_rejects_insecure_endpoints(self, verification, store, endpoint):
        with pytest.raises(InsecureEndpoint) as exc:
            await verification.initiate(registration(endpoint=endpoint))
        assert exc.value.field == "endpoint"
        assert await store.get_all(kv.CHALLENGES) == []

    @pytest.mark.asyncio
    async def test_accepts_subdomain_endpoint(self, verification):
        challenge = await verification.initiate(registration(endpoint="https://mcp.example.com/v1"))
        assert challenge["domain"] == "example.com"

    @pytest.mark.asyncio
    async def test_rejects_endpoint_resolving_to_private_address(self, verification, resolver, store):
        resolver.addresses["example.com"] = ["10.1.2.3"]
        with pytest.raises(InsecureEndpoint):
            await verification.initiate(registration())
        assert await store.get_all(kv.CHALLENGES) == []

    @pytest.mark.asyncio
    async def test_verified_domain_conflicts_unless_reverify(self, verification, resolver):
        challenge = await register_and_publish(verification, resolver)
        await verification.check_challenge(challenge["challenge_id"])

        with pytest.raises(DomainAlreadyRegistered):
            await verification.initiate(registration())

        again = await verification.initiate(registration(reverify=True))
        assert again["challenge_id"] != challenge["challenge_id"]

    @pytest.mark.asyncio
    async def test_new_challenge_supersedes_pending_one(self, verification, resolver):
        first = await register_and_publish(verification, resolver)
        second = await verification.initiate(registration())

        status = await verification.get_status(first["challenge_id"])
        assert status["status"] == "failed"
        assert "superseded" in status["reason"]

        # The first token is still in DNS but the old challenge stays failed
        result = await verification.check_challenge(first["challenge_id"])
        assert result["status"] == "failed"

        resolver.publish(second["txt_record_name"], second["txt_record_value"])
        result = await verification.check_challenge(second["challenge_id"])
        assert result["status"] == "verified"

    @pytest.mark.asyncio
    async def test_challenge_replaced_during_lookup_is_not_promoted(self, verification, resolver, store):
        """A newer registration landing mid-check wins over the old token."""
        first = await register_and_publish(verification, resolver)
        lookup_txt = resolver.lookup_txt
        replacements = []

        async def lookup_then_reregister(name):
            lookup = await lookup_txt(name)
            if not replacements:
                replacements.append(await verification.initiate(registration()))
            return lookup

        resolver.lookup_txt = lookup_then_reregister

        result = await verification.check_challenge(first["challenge_id"])

        assert result["status"] == "failed"
        assert await store.get(kv.SERVERS, "example.com") is None
        assert await store.get(kv.VERIFICATION_CLAIMS, first["challenge_id"]) is None
        active = await store.get(kv.ACTIVE_CHALLENGES, "example.com")
        assert active["challenge_id"] == replacements[0]["challenge_id"]


class TestCheckChallenge:
    @pytest.mark.asyncio
    async def test_matching_txt_record_verifies_and_creates_server(self, verification, resolver, store):
        challenge = await register_and_publish(
            verification, resolver, name="Example", capabilities=["email", "calendar"]
        )

        result = await verification.check_challenge(challenge["challenge_id"])

        assert result["status"] == "verified"
        assert result["verified_at"] == T0.isoformat()
        record = ServerRecord.from_dict(await store.get(kv.SERVERS, "example.com"))
        assert record.verification.dns_verified is True
        assert record.verification.status == VerificationStatus.VERIFIED
        assert record.endpoint == "https://example.com/svc"
        assert record.capabilities.tags == ["email", "calendar"]
        assert record.trust_score == 20

    @pytest.mark.asyncio
    async def test_token_found_among_other_records(self, verification, resolver):
        challenge = await verification.initiate(registration())
        resolver.publish(challenge["txt_record_name"], "google-site-verification=abc")
        resolver.publish(challenge["txt_record_name"], challenge["txt_record_value"])

        result = await verification.check_challenge(challenge["challenge_id"])
        assert result["status"] == "verified"

    @pytest.mark.asyncio
    async def test_missing_record_stays_pending(self, verification, resolver, store):
        challenge = await verification.initiate(registration())

        result = await verification.check_challenge(challenge["challenge_id"])

        assert result["status"] == "pending"
        assert result["dns_lookup"] == "absent"
        assert await store.get(kv.SERVERS, "example.com") is None

    @pytest.mark.asyncio
    async def test_wrong_token_stays_pending(self, verification, resolver):
        challenge = await verification.initiate(registration())
        resolver.publish(challenge["txt_record_name"], "v=mcp1 domain=example.com token=deadbeef")

        result = await verification.check_challenge(challenge["challenge_id"])
        assert result["status"] == "pending"
        assert result["dns_lookup"] == "found"

    @pytest.mark.asyncio
    async def test_transient_dns_failure_stays_pending(self, verification, resolver):
        challenge = await verification.initiate(registration())
        resolver.transient.add(challenge["txt_record_name"])

        result = await verification.check_challenge(challenge["challenge_id"])
        assert result["status"] == "pending"
        assert result["dns_lookup"] == "transient"

    @pytest.mark.asyncio
    async def test_expired_after_deadline_without_record(self, verification, clock):
        challenge = await verification.initiate(registration())
        clock.advance(hours=25)

        result = await verification.check_challenge(challenge["challenge_id"])
        assert result["status"] == "expired"

    @pytest.mark.asyncio
    async def test_expiry_takes_precedence_over_valid_record(self, verification, resolver, clock, store):
        challenge = await register_and_publish(verification, resolver)
        clock.advance(hours=24, seconds=1)

        result = await verification.check_challenge(challenge["challenge_id"])

        assert result["status"] == "expired"
        assert await store.get(kv.SERVERS, "example.com") is None
        assert resolver.lookups == []

    @pytest.mark.asyncio
    async def test_unknown_challenge(self, verification):
        with pytest.raises(ChallengeNotFound):
            await verification.check_challenge("missing")

    @pytest.mark.asyncio
    async def test_concurrent_checks_promote_once(self, resolver, clock):
        store = CountingStore()
        verification = VerificationService(store, resolver=resolver, clock=clock)
        challenge = await register_and_publish(verification, resolver)

        results = await asyncio.gather(
            *(verification.check_challenge(challenge["challenge_id"]) for _ in range(5))
        )

        assert {r["status"] for r in results} == {"verified"}
        assert store.server_writes == 1
        assert len(await store.get_all(kv.SERVERS)) == 1

    @pytest.mark.asyncio
    async def test_failed_promotion_can_be_retried(self, resolver, clock):
        store = FlakyStore()
        verification = VerificationService(store, resolver=resolver, clock=clock)
        challenge = await register_and_publish(verification, resolver)

        with pytest.raises(ConnectionError):
            await verification.check_challenge(challenge["challenge_id"])
        assert await store.get(kv.SERVERS, "example.com") is None

        result = await verification.check_challenge(challenge["challenge_id"])

        assert result["status"] == "verified"
        record = ServerRecord.from_dict(await store.get(kv.SERVERS, "example.com"))
        assert record.verification.dns_verified is True
        assert record.verification.challenge_id == challenge["challenge_id"]
        stored = await store.get(kv.CHALLENGES, challenge["challenge_id"])
        assert stored["status"] == "verified"


class TestTerminalStates:
    @pytest.mark.asyncio
    async def test_verified_is_absorbing(self, verification, resolver, clock):
        challenge = await register_and_publish(verification, resolver)
        await verification.check_challenge(challenge["challenge_id"])

        resolver.remove(challenge["txt_record_name"])
        clock.advance(hours=48)

        assert (await verification.check_challenge(challenge["challenge_id"]))["status"] == "verified"
        assert (await verification.abandon(challenge["challenge_id"]))["status"] == "verified"
        assert await verification.expire_stale() == 0

    @pytest.mark.asyncio
    async def test_expired_is_absorbing(self, verification, resolver, clock):
        challenge = await verification.initiate(registration())
        clock.advance(hours=25)
        await verification.check_challenge(challenge["challenge_id"])

        resolver.publish(challenge["txt_record_name"], challenge["txt_record_value"])
        result = await verification.check_challenge(challenge["challenge_id"])
        assert result["status"] == "expired"

    @pytest.mark.asyncio
    async def test_abandon_fails_pending_challenge(self, verification, resolver):
        challenge = await verification.initiate(registration())

        result = await verification.abandon(challenge["challenge_id"], "wrong domain")
        assert result["status"] == "failed"
        assert result["reason"] == "wrong domain"

        resolver.publish(challenge["txt_record_name"], challenge["txt_record_value"])
        assert (await verification.check_challenge(challenge["challenge_id"]))["status"] == "failed"


class TestSweeps:
    @pytest.mark.asyncio
    async def test_expire_stale_counts_only_overdue_pending(self, verification, resolver, clock, store):
        stale = await verification.initiate(registration())
        clock.advance(hours=20)
        fresh = await verification.initiate(registration(domain="fresh.io", endpoint="https://fresh.io/mcp"))
        clock.advance(hours=5)

        assert await verification.expire_stale() == 1
        assert (await verification.get_status(stale["challenge_id"]))["status"] == "expired"
        assert (await verification.get_status(fresh["challenge_id"]))["status"] == "pending"
        assert await store.get(kv.ACTIVE_CHALLENGES, "example.com") is None

    @pytest.mark.asyncio
    async def test_get_status_applies_expiry_without_dns(self, verification, resolver, clock):
        challenge = await verification.initiate(registration())
        clock.advance(hours=30)

        assert (await verification.get_status(challenge["challenge_id"]))["status"] == "expired"
        assert resolver.lookups == []

    @pytest.mark.asyncio
    async def test_reverify_keeps_published_and_demotes_removed(self, verification, resolver, add_server, store):
        await add_server("kept.com", ["email"])
        await add_server("gone.com", ["email"])
        await add_server("flaky.com", ["email"])
        resolver.publish("_mcp-verify.kept.com", "v=mcp1 domain=kept.com token=token-kept.com")
        resolver.transient.add("_mcp-verify.flaky.com")

        result = await verification.reverify_all()

        assert result.checked == 3
        assert result.still_verified == ["kept.com"]
        assert result.demoted == ["gone.com"]
        assert result.errors == ["flaky.com"]

        gone = ServerRecord.from_dict(await store.get(kv.SERVERS, "gone.com"))
        assert gone.verification.status == VerificationStatus.UNVERIFIED
        assert gone.verification.dns_verified is False
        assert gone.verification.failure_reason == "verification TXT record removed"

        flaky = ServerRecord.from_dict(await store.get(kv.SERVERS, "flaky.com"))
        assert flaky.is_verified

    @pytest.mark.asyncio
    async def test_reverify_skips_unverified_records(self, verification, add_server):
        await add_server("draft.com", ["email"], verified=False)
        result = await verification.reverify_all()
        assert result.checked == 0
        assert result.to_dict()["details"]["demoted_domains"] == []


def test_challenge_status_values():
    assert {s.value for s in ChallengeStatus} == {"pending", "verified", "expired", "failed"}
    assert not ChallengeStatus.PENDING.is_terminal
    assert ChallengeStatus.EXPIRED.is_terminal
