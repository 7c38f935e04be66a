"""
register_server tool handler

Registers an MCP server for a domain and returns the DNS TXT challenge
the domain owner must publish to prove ownership.
"""

import logging

from ..errors import LookupServiceError
from ..operations import LookupService, Operation
from ..responses import internal_error, service_error, success

logger = logging.getLogger(__name__)


async def register_server_handler(
    service: LookupService,
    domain: str,
    endpoint: str,
    contact_email: str,
    name: str | None = None,
    description: str | None = None,
    category: str | None = None,
    capabilities: list[str] | None = None,
    keywords: list[str] | None = None,
    transport: str | None = None,
    auth_type: str | None = None,
    cors_enabled: bool | None = None,
    reverify: bool = False,
) -> dict:
    """
    Start DNS verification for a domain's MCP server.

    Args:
        service: Lookup service to dispatch to
        domain: Domain the server belongs to (e.g., "example.com")
        endpoint: Public https MCP endpoint on that domain
        contact_email: Owner contact address
        name, description, category, capabilities, keywords: Listing metadata
        transport, auth_type, cors_enabled: Technical metadata
        reverify: Re-run verification for an already verified domain

    Returns:
        Challenge id, TXT record name/value, expiry and instructions
    """
    payload = {
        key: value
        for key, value in {
            "domain": domain,
            "endpoint": endpoint,
            "contact_email": contact_email,
            "name": name,
            "description": description,
            "category": category,
            "capabilities": capabilities,
            "keywords": keywords,
            "transport": transport,
            "auth_type": auth_type,
            "cors_enabled": cors_enabled,
            "reverify": reverify,
        }.items()
        if value is not None
    }

    try:
        challenge = await service.dispatch(Operation.REGISTER, payload)
    except LookupServiceError as e:
        return service_error(e)
    except Exception as e:
        logger.error(f"Registration failed for {domain}: {e}")
        return internal_error()

    return success(
        challenge,
        hint=(
            f"Registration started for {challenge['domain']}. Show the user the TXT record "
            f"to add at their DNS provider: name {challenge['txt_record_name']}, value "
            f"\"{challenge['txt_record_value']}\". Once it is published, call "
            f"verify_domain with challenge_id {challenge['challenge_id']}. "
            f"The challenge expires at {challenge['expires_at']}."
        ),
    )
