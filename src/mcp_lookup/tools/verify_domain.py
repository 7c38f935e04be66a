"""
verify_domain tool handler

Checks, inspects or abandons a pending DNS verification challenge.
"""

import logging

from ..errors import InvalidRequest, LookupServiceError
from ..operations import LookupService, Operation
from ..responses import internal_error, service_error, success

logger = logging.getLogger(__name__)

ACTIONS = {
    "check": Operation.CHECK_CHALLENGE,
    "status": Operation.CHALLENGE_STATUS,
    "abandon": Operation.ABANDON_CHALLENGE,
}

STATUS_HINTS = {
    "verified": (
        "Domain ownership is verified. The server is now discoverable with "
        "discover_servers; its trust score grows as health checks come in."
    ),
    "pending": (
        "The TXT record was not found yet. DNS propagation can take a while; "
        "ask the user to confirm the record is published, then check again later."
    ),
    "expired": (
        "The challenge expired before the TXT record was found. The user must call "
        "register_server again to get a new challenge."
    ),
    "failed": (
        "This challenge is closed (abandoned or replaced by a newer one). Use the "
        "most recent challenge for this domain, or register again."
    ),
}


async def verify_domain_handler(
    service: LookupService,
    challenge_id: str,
    action: str = "check",
    reason: str | None = None,
) -> dict:
    """
    Drive a verification challenge.

    Args:
        service: Lookup service to dispatch to
        challenge_id: Id returned by register_server
        action: "check" (look up DNS), "status" (no lookup) or "abandon"
        reason: Optional reason when abandoning

    Returns:
        Challenge status with guidance for the next step
    """
    operation = ACTIONS.get(action.strip().lower())
    if operation is None:
        return service_error(
            InvalidRequest(
                f"Unknown action '{action}' (expected one of: {', '.join(ACTIONS)})",
                field="action",
            )
        )

    payload = {"challenge_id": challenge_id}
    if operation == Operation.ABANDON_CHALLENGE and reason:
        payload["reason"] = reason

    try:
        status = await service.dispatch(operation, payload)
    except LookupServiceError as e:
        return service_error(e)
    except Exception as e:
        logger.error(f"Verification {action} failed for {challenge_id}: {e}")
        return internal_error()

    hint = STATUS_HINTS.get(status["status"])
    if status["status"] == "pending" and status.get("dns_lookup") == "transient":
        hint = (
            "The DNS lookup failed temporarily; the challenge is still pending. "
            "Try again in a few minutes."
        )
    return success(status, hint=hint)
