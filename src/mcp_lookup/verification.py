"""
DNS ownership verification.

A registration creates a pending challenge; the operator publishes the
challenge token in a TXT record at ``_mcp-verify.<domain>``; checking the
challenge looks the record up and, on a match, promotes the domain to a
discoverable server record.

Challenge states:

    pending -> verified   token found in DNS before expiry
    pending -> expired    checked after expires_at
    pending -> failed     abandoned by the operator, or superseded by a
                          newer challenge for the same domain

Terminal states are absorbing. DNS errors never fail a challenge; only
expiry turns prolonged absence into a negative outcome.
"""

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable
from urllib.parse import urlsplit

from . import store as kv
from .config import CHALLENGE_TTL_HOURS, VERIFICATION_PREFIX
from .dns_lookup import DnsResolver, LookupOutcome
from .errors import ChallengeNotFound, DomainAlreadyRegistered, InsecureEndpoint
from .models import (
    Capabilities,
    ChallengeStatus,
    ServerRecord,
    VerificationChallenge,
    VerificationInfo,
    VerificationStatus,
    utcnow,
)
from .schemas import RegistrationRequest
from .store import RecordStore
from .trust import trust_score
from .validators import is_public_ip, validate_domain, validate_endpoint

logger = logging.getLogger(__name__)

# Token entropy in bytes (128 bits)
TOKEN_BYTES = 16

SUPERSEDED = "superseded by a newer challenge"


@dataclass
class SweepResult:
    """Outcome of re-verifying every verified server."""

    checked: int = 0
    still_verified: list[str] = field(default_factory=list)
    demoted: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "still_verified": len(self.still_verified),
            "demoted": len(self.demoted),
            "errors": len(self.errors),
            "details": {
                "verified_domains": self.still_verified,
                "demoted_domains": self.demoted,
                "error_domains": self.errors,
            },
        }


def txt_record_name_for(domain: str) -> str:
    return f"{VERIFICATION_PREFIX}.{domain}"


def build_txt_record_value(domain: str, token: str, now: datetime) -> str:
    """Format: v=mcp1 domain=example.com token=abc123 timestamp=1234567890"""
    return f"v=mcp1 domain={domain} token={token} timestamp={int(now.timestamp())}"


def build_instructions(domain: str, txt_record_name: str, txt_record_value: str) -> str:
    return (
        f"To verify ownership of {domain}, add this DNS TXT record:\n\n"
        f"Type:  TXT\n"
        f"Name:  {txt_record_name}\n"
        f"Value: {txt_record_value}\n\n"
        "Propagation can take up to 24 hours. Check the challenge again once "
        "the record is published."
    )


class VerificationService:
    """Issues DNS challenges and drives them through their lifecycle."""

    def __init__(
        self,
        store: RecordStore,
        resolver: DnsResolver | None = None,
        clock: Callable[[], datetime] = utcnow,
        challenge_ttl: timedelta = timedelta(hours=CHALLENGE_TTL_HOURS),
        sweep_concurrency: int = 10,
    ):
        """
        Initialize the service.

        Args:
            store: Record store holding challenges and server records
            resolver: DNS resolver (anything with lookup_txt / resolve_addresses)
            clock: Returns the current UTC time
            challenge_ttl: How long a challenge stays valid
            sweep_concurrency: Parallel lookups during re-verification
        """
        self.store = store
        self.resolver = resolver or DnsResolver()
        self.clock = clock
        self.challenge_ttl = challenge_ttl
        self.sweep_concurrency = sweep_concurrency

    # ==================== Registration ====================

    async def initiate(self, request: RegistrationRequest) -> dict[str, Any]:
        """
        Start verification for a domain.

        Raises:
            InvalidDomain: Domain is malformed or private
            InsecureEndpoint: Endpoint is not https or resolves to a private host
            DomainAlreadyRegistered: Domain is verified and reverify was not requested
        """
        domain = validate_domain(request.domain)
        endpoint = validate_endpoint(request.endpoint, domain)
        await self._check_endpoint_addresses(endpoint)

        existing = await self.store.get(kv.SERVERS, domain)
        if existing and ServerRecord.from_dict(existing).is_verified and not request.reverify:
            raise DomainAlreadyRegistered(
                f"{domain} is already registered and verified", field="domain"
            )

        now = self.clock()
        token = secrets.token_hex(TOKEN_BYTES)
        txt_record_name = txt_record_name_for(domain)
        txt_record_value = build_txt_record_value(domain, token, now)

        challenge = VerificationChallenge(
            challenge_id=secrets.token_urlsafe(TOKEN_BYTES),
            domain=domain,
            endpoint=endpoint,
            contact_email=request.contact_email,
            txt_record_name=txt_record_name,
            txt_record_value=txt_record_value,
            token=token,
            created_at=now,
            expires_at=now + self.challenge_ttl,
            name=request.name,
            description=request.description,
            category=request.category,
            capabilities=list(request.capabilities),
            keywords=list(request.keywords),
            transport=request.transport,
            auth_type=request.auth_type,
            cors_enabled=request.cors_enabled,
        )

        # The index moves to the new challenge before the old one is failed,
        # so a concurrent check of the old challenge sees it superseded
        previous = await self.store.get(kv.ACTIVE_CHALLENGES, domain)
        await self.store.set(kv.CHALLENGES, challenge.challenge_id, challenge.to_dict())
        await self.store.set(
            kv.ACTIVE_CHALLENGES, domain, {"challenge_id": challenge.challenge_id}
        )
        if previous:
            await self._supersede(previous["challenge_id"], challenge.challenge_id)

        logger.info(f"Issued verification challenge for {domain}")

        return {
            "challenge_id": challenge.challenge_id,
            "domain": domain,
            "txt_record_name": txt_record_name,
            "txt_record_value": txt_record_value,
            "expires_at": challenge.expires_at.isoformat(),
            "instructions": build_instructions(domain, txt_record_name, txt_record_value),
        }

    async def _check_endpoint_addresses(self, endpoint: str) -> None:
        """Reject endpoints whose host resolves into private address space."""
        host = urlsplit(endpoint).hostname or ""
        addresses = await self.resolver.resolve_addresses(host)
        private = [a for a in addresses if not is_public_ip(a)]
        if private:
            logger.warning(f"SECURITY: Endpoint host {host} resolves to private {private}")
            raise InsecureEndpoint(
                f"Endpoint host '{host}' resolves to a private or loopback address",
                field="endpoint",
            )

    async def _supersede(self, challenge_id: str, new_challenge_id: str) -> None:
        previous = await self.store.get(kv.CHALLENGES, challenge_id)
        if not previous:
            return
        challenge = VerificationChallenge.from_dict(previous)
        if challenge.status == ChallengeStatus.PENDING:
            challenge.superseded_by = new_challenge_id
            await self._transition(challenge, ChallengeStatus.FAILED, SUPERSEDED)

    # ==================== Checking ====================

    async def check_challenge(self, challenge_id: str) -> dict[str, Any]:
        """
        Look up the TXT record for a challenge and advance its state.

        Safe to call repeatedly and concurrently: promotion happens at most
        once, guarded by an atomic claim in the store.

        Raises:
            ChallengeNotFound: Unknown challenge_id
        """
        challenge = await self._load(challenge_id)
        if challenge.status.is_terminal:
            return self._status(challenge)

        now = self.clock()
        if challenge.is_expired(now):
            return await self._transition(
                challenge, ChallengeStatus.EXPIRED, "no matching TXT record before expiry"
            )

        active = await self.store.get(kv.ACTIVE_CHALLENGES, challenge.domain)
        if active and active.get("challenge_id") != challenge_id:
            challenge.superseded_by = active.get("challenge_id")
            return await self._transition(challenge, ChallengeStatus.FAILED, SUPERSEDED)

        lookup = await self.resolver.lookup_txt(challenge.txt_record_name)
        if not lookup.contains(challenge.token):
            logger.debug(
                f"Challenge for {challenge.domain} still pending ({lookup.outcome.value})"
            )
            status = self._status(challenge)
            status["dns_lookup"] = lookup.outcome.value
            return status

        claimed = await self.store.set_if_absent(
            kv.VERIFICATION_CLAIMS,
            challenge_id,
            {"challenge_id": challenge_id, "verified_at": now.isoformat()},
        )
        if not claimed:
            return await self._observe_claimed(challenge_id)

        try:
            # A newer challenge may have been issued since the check above
            active = await self.store.get(kv.ACTIVE_CHALLENGES, challenge.domain)
            if active and active.get("challenge_id") != challenge_id:
                await self.store.delete(kv.VERIFICATION_CLAIMS, challenge_id)
                challenge.superseded_by = active.get("challenge_id")
                return await self._transition(challenge, ChallengeStatus.FAILED, SUPERSEDED)

            await self._promote(challenge, now)
            challenge.verified_at = now
            result = await self._transition(challenge, ChallengeStatus.VERIFIED)
        except Exception:
            # Release the claim so a retry can finish the promotion
            logger.error(f"Promotion of {challenge.domain} failed, releasing claim")
            await self.store.delete(kv.VERIFICATION_CLAIMS, challenge_id)
            raise

        logger.info(f"Domain verified: {challenge.domain}")
        return result

    async def _observe_claimed(self, challenge_id: str) -> dict[str, Any]:
        """Result for a caller that lost the promotion race."""
        challenge = await self._load(challenge_id)
        status = self._status(challenge)
        if challenge.status == ChallengeStatus.PENDING:
            # Winner has claimed but not yet written the challenge
            claim = await self.store.get(kv.VERIFICATION_CLAIMS, challenge_id) or {}
            status["status"] = ChallengeStatus.VERIFIED.value
            status["verified_at"] = claim.get("verified_at")
        return status

    async def _promote(self, challenge: VerificationChallenge, now: datetime) -> ServerRecord:
        """Create or refresh the server record for a verified challenge."""
        existing = await self.store.get(kv.SERVERS, challenge.domain)

        if existing:
            record = ServerRecord.from_dict(existing)
            record.endpoint = challenge.endpoint
            record.contact_email = challenge.contact_email
            if challenge.name:
                record.name = challenge.name
            if challenge.description:
                record.description = challenge.description
            if challenge.capabilities or challenge.keywords:
                record.capabilities = Capabilities(
                    category=challenge.category,
                    tags=list(challenge.capabilities),
                    keywords=list(challenge.keywords),
                    use_cases=record.capabilities.use_cases,
                )
            record.transport = challenge.transport
            record.auth_type = challenge.auth_type
            record.cors_enabled = challenge.cors_enabled
        else:
            record = ServerRecord(
                domain=challenge.domain,
                endpoint=challenge.endpoint,
                name=challenge.name or challenge.domain,
                description=challenge.description or "",
                contact_email=challenge.contact_email,
                capabilities=Capabilities(
                    category=challenge.category,
                    tags=list(challenge.capabilities),
                    keywords=list(challenge.keywords),
                ),
                transport=challenge.transport,
                auth_type=challenge.auth_type,
                cors_enabled=challenge.cors_enabled,
                created_at=now,
            )

        record.verification = VerificationInfo(
            status=VerificationStatus.VERIFIED,
            dns_verified=True,
            verified_at=now,
            last_checked=now,
            challenge_id=challenge.challenge_id,
            txt_record_name=challenge.txt_record_name,
            token=challenge.token,
        )
        record.trust_score = trust_score(
            record.verification, record.health, record.community_rating
        )
        record.updated_at = now

        await self.store.set(kv.SERVERS, record.domain, record.to_dict())
        return record

    # ==================== Other transitions ====================

    async def abandon(
        self,
        challenge_id: str,
        reason: str = "abandoned by operator",
    ) -> dict[str, Any]:
        """Operator gives up on a pending challenge (pending -> failed)."""
        challenge = await self._load(challenge_id)
        if challenge.status.is_terminal:
            return self._status(challenge)
        return await self._transition(challenge, ChallengeStatus.FAILED, reason)

    async def get_status(self, challenge_id: str) -> dict[str, Any]:
        """Read the challenge status without a DNS lookup (expiry still applies)."""
        challenge = await self._load(challenge_id)
        if challenge.status == ChallengeStatus.PENDING and challenge.is_expired(self.clock()):
            return await self._transition(
                challenge, ChallengeStatus.EXPIRED, "no matching TXT record before expiry"
            )
        return self._status(challenge)

    async def expire_stale(self) -> int:
        """Expire every pending challenge past its deadline. Returns the count."""
        now = self.clock()
        expired = 0
        for data in await self.store.get_all(kv.CHALLENGES):
            challenge = VerificationChallenge.from_dict(data)
            if challenge.status == ChallengeStatus.PENDING and challenge.is_expired(now):
                result = await self._transition(
                    challenge, ChallengeStatus.EXPIRED, "no matching TXT record before expiry"
                )
                if result["status"] == ChallengeStatus.EXPIRED.value:
                    expired += 1
        if expired:
            logger.info(f"Expired {expired} stale challenge(s)")
        return expired

    async def _transition(
        self,
        challenge: VerificationChallenge,
        status: ChallengeStatus,
        reason: str | None = None,
    ) -> dict[str, Any]:
        """Move a pending challenge to a terminal state (no-op if already terminal)."""
        current = await self._load(challenge.challenge_id)
        if current.status.is_terminal:
            return self._status(current)

        challenge.status = status
        challenge.failure_reason = reason
        await self.store.set(kv.CHALLENGES, challenge.challenge_id, challenge.to_dict())

        active = await self.store.get(kv.ACTIVE_CHALLENGES, challenge.domain)
        if active and active.get("challenge_id") == challenge.challenge_id:
            await self.store.delete(kv.ACTIVE_CHALLENGES, challenge.domain)

        if status != ChallengeStatus.VERIFIED:
            logger.info(f"Challenge for {challenge.domain} -> {status.value}: {reason}")
        return self._status(challenge)

    async def _load(self, challenge_id: str) -> VerificationChallenge:
        data = await self.store.get(kv.CHALLENGES, challenge_id)
        if not data:
            raise ChallengeNotFound(
                f"Challenge '{challenge_id}' not found", field="challenge_id"
            )
        return VerificationChallenge.from_dict(data)

    @staticmethod
    def _status(challenge: VerificationChallenge) -> dict[str, Any]:
        status: dict[str, Any] = {
            "domain": challenge.domain,
            "challenge_id": challenge.challenge_id,
            "status": challenge.status.value,
            "expires_at": challenge.expires_at.isoformat(),
        }
        if challenge.verified_at:
            status["verified_at"] = challenge.verified_at.isoformat()
        if challenge.failure_reason:
            status["reason"] = challenge.failure_reason
        return status

    # ==================== Re-verification sweep ====================

    async def reverify_all(self) -> SweepResult:
        """
        Re-check the TXT record of every verified server.

        A record whose token has definitively disappeared is demoted to
        unverified (and so drops out of discovery). Transient DNS errors
        leave the record untouched.
        """
        result = SweepResult()
        semaphore = asyncio.Semaphore(self.sweep_concurrency)

        async def check(record: ServerRecord) -> None:
            async with semaphore:
                outcome = await self._reverify(record)
            if outcome == "verified":
                result.still_verified.append(record.domain)
            elif outcome == "demoted":
                result.demoted.append(record.domain)
            else:
                result.errors.append(record.domain)

        records = [ServerRecord.from_dict(d) for d in await self.store.get_all(kv.SERVERS)]
        verified = [r for r in records if r.is_verified]
        result.checked = len(verified)
        await asyncio.gather(*(check(r) for r in verified))

        for bucket in (result.still_verified, result.demoted, result.errors):
            bucket.sort()

        logger.info(
            f"Verification sweep: {result.checked} checked, "
            f"{len(result.demoted)} demoted, {len(result.errors)} errors"
        )
        return result

    async def _reverify(self, record: ServerRecord) -> str:
        name = record.verification.txt_record_name or txt_record_name_for(record.domain)
        lookup = await self.resolver.lookup_txt(name)
        now = self.clock()

        if lookup.outcome == LookupOutcome.TRANSIENT:
            return "error"

        # Re-read so concurrent health updates are not overwritten
        fresh = await self.store.get(kv.SERVERS, record.domain)
        if not fresh:
            return "error"
        record = ServerRecord.from_dict(fresh)

        if lookup.contains(record.verification.token or ""):
            record.verification.last_checked = now
            record.verification.consecutive_failures = 0
            record.verification.failure_reason = None
            await self.store.set(kv.SERVERS, record.domain, record.to_dict())
            return "verified"

        reason = (
            "verification TXT record removed"
            if lookup.outcome == LookupOutcome.ABSENT
            else "verification token no longer published"
        )
        record.verification.status = VerificationStatus.UNVERIFIED
        record.verification.dns_verified = False
        record.verification.last_checked = now
        record.verification.consecutive_failures += 1
        record.verification.failure_reason = reason
        record.trust_score = trust_score(
            record.verification, record.health, record.community_rating
        )
        record.updated_at = now
        await self.store.set(kv.SERVERS, record.domain, record.to_dict())

        logger.warning(f"Demoted {record.domain}: {reason}")
        return "demoted"
