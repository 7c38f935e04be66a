"""
Operation dispatch for MCP Lookup.

Every public operation is a member of ``Operation`` and has exactly one
entry in the dispatch table: the request model its payload is validated
against, the handler it runs, and the error raised for a bad payload.
The table is checked for exhaustiveness when the service is built.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx
from pydantic import BaseModel

from .discovery import DiscoveryEngine
from .dns_lookup import DnsResolver
from .errors import InvalidQuery, InvalidRequest, LookupServiceError
from .health import HealthMonitor
from .models import utcnow
from .schemas import (
    AbandonRequest,
    ChallengeRequest,
    DiscoveryQuery,
    EmptyRequest,
    HealthQuery,
    RegistrationRequest,
    parse_request,
)
from .store import RecordStore, get_record_store
from .verification import VerificationService

logger = logging.getLogger(__name__)


class Operation(str, Enum):
    REGISTER = "register"
    CHECK_CHALLENGE = "check_challenge"
    CHALLENGE_STATUS = "challenge_status"
    ABANDON_CHALLENGE = "abandon_challenge"
    DISCOVER = "discover"
    HEALTH = "health"
    CHECK_ALL_HEALTH = "check_all_health"
    EXPIRE_CHALLENGES = "expire_challenges"
    REVERIFY = "reverify"


@dataclass(frozen=True)
class Route:
    request_model: type[BaseModel]
    handler: Callable[[Any], Awaitable[dict[str, Any]]]
    error_cls: type[LookupServiceError] = InvalidRequest


class LookupService:
    """Wires the verification, discovery and health components over one store."""

    def __init__(
        self,
        store: RecordStore | None = None,
        resolver: DnsResolver | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.store = store if store is not None else get_record_store()
        self.verification = VerificationService(self.store, resolver=resolver, clock=clock)
        self.discovery = DiscoveryEngine(self.store, monotonic=monotonic)
        self.health = HealthMonitor(self.store, transport=transport, clock=clock)

        self.routes: dict[Operation, Route] = {
            Operation.REGISTER: Route(RegistrationRequest, self._register),
            Operation.CHECK_CHALLENGE: Route(ChallengeRequest, self._check_challenge),
            Operation.CHALLENGE_STATUS: Route(ChallengeRequest, self._challenge_status),
            Operation.ABANDON_CHALLENGE: Route(AbandonRequest, self._abandon),
            Operation.DISCOVER: Route(DiscoveryQuery, self._discover, InvalidQuery),
            Operation.HEALTH: Route(HealthQuery, self._health),
            Operation.CHECK_ALL_HEALTH: Route(EmptyRequest, self._check_all_health),
            Operation.EXPIRE_CHALLENGES: Route(EmptyRequest, self._expire_challenges),
            Operation.REVERIFY: Route(EmptyRequest, self._reverify),
        }
        missing = set(Operation) - set(self.routes)
        if missing:
            raise RuntimeError(f"No handler for operations: {sorted(m.value for m in missing)}")

    async def dispatch(
        self,
        operation: Operation | str,
        payload: dict[str, Any] | BaseModel | None = None,
    ) -> dict[str, Any]:
        """
        Validate a payload and run an operation.

        Raises:
            LookupServiceError: Invalid payload or a domain error from the handler
        """
        try:
            operation = Operation(operation)
        except ValueError as e:
            raise InvalidRequest(f"Unknown operation '{operation}'", field="operation") from e

        route = self.routes[operation]
        request = parse_request(route.request_model, payload, route.error_cls)
        logger.debug(f"Dispatching {operation.value}")
        return await route.handler(request)

    # ==================== Handlers ====================

    async def _register(self, request: RegistrationRequest) -> dict[str, Any]:
        return await self.verification.initiate(request)

    async def _check_challenge(self, request: ChallengeRequest) -> dict[str, Any]:
        return await self.verification.check_challenge(request.challenge_id)

    async def _challenge_status(self, request: ChallengeRequest) -> dict[str, Any]:
        return await self.verification.get_status(request.challenge_id)

    async def _abandon(self, request: AbandonRequest) -> dict[str, Any]:
        return await self.verification.abandon(request.challenge_id, request.reason)

    async def _discover(self, request: DiscoveryQuery) -> dict[str, Any]:
        return await self.discovery.discover(request)

    async def _health(self, request: HealthQuery) -> dict[str, Any]:
        return await self.health.get_health(request)

    async def _check_all_health(self, request: EmptyRequest) -> dict[str, Any]:
        results = await self.health.check_all()
        return {"checked": len(results), "results": results}

    async def _expire_challenges(self, request: EmptyRequest) -> dict[str, Any]:
        return {"expired": await self.verification.expire_stale()}

    async def _reverify(self, request: EmptyRequest) -> dict[str, Any]:
        return (await self.verification.reverify_all()).to_dict()
