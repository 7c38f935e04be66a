"""
server_health tool handler

Reports health metrics and trust score for registered domains.
"""

import logging

from ..errors import LookupServiceError
from ..operations import LookupService, Operation
from ..responses import internal_error, service_error, success

logger = logging.getLogger(__name__)


async def server_health_handler(
    service: LookupService,
    domain: str | None = None,
    domains: list[str] | None = None,
) -> dict:
    """
    Get current health for one domain or a list of domains.

    Args:
        service: Lookup service to dispatch to
        domain: Single domain
        domains: Several domains (unknown ones get a per-domain error entry)

    Returns:
        Health metrics, trust score and its breakdown
    """
    payload = {}
    if domain is not None:
        payload["domain"] = domain
    if domains is not None:
        payload["domains"] = domains

    try:
        result = await service.dispatch(Operation.HEALTH, payload)
    except LookupServiceError as e:
        return service_error(e)
    except Exception as e:
        logger.error(f"Health lookup failed: {e}")
        return internal_error()

    entries = result["results"] if "results" in result else [result]
    unhealthy = [
        e["domain"] for e in entries if e.get("health", {}).get("status") == "unhealthy"
    ]
    if unhealthy:
        hint = (
            f"Unhealthy: {', '.join(unhealthy)}. These servers are failing health checks "
            "and are hidden from discovery; suggest an alternative."
        )
    else:
        hint = "Present the status, uptime and trust score. Trust scores range from 0 to 100."
    return success(result, hint=hint)
