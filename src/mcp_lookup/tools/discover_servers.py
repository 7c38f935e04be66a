"""
discover_servers tool handler

Finds verified MCP servers by domain, capability, intent or similarity
and explains to the agent how to connect to the best match.
"""

import logging
from typing import Any

from ..errors import LookupServiceError
from ..operations import LookupService, Operation
from ..responses import internal_error, service_error, success

logger = logging.getLogger(__name__)


async def discover_servers_handler(
    service: LookupService,
    query: str | None = None,
    domain: str | None = None,
    domains: list[str] | None = None,
    capability: str | None = None,
    capabilities: dict[str, Any] | None = None,
    similar_to: dict[str, Any] | None = None,
    category: str | None = None,
    keywords: list[str] | None = None,
    use_cases: list[str] | None = None,
    exclude_domains: list[str] | None = None,
    technical: dict[str, Any] | None = None,
    performance: dict[str, Any] | None = None,
    sort_by: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> dict:
    """
    Discover MCP servers.

    Args:
        service: Lookup service to dispatch to
        query: Natural-language intent (e.g., "send emails to my team")
        domain / domains: Exact domain lookup
        capability: Single required capability tag
        capabilities: {operator, required, preferred, exclude, minimum_match}
        similar_to: {reference_domain, threshold, exclude_reference}
        category, keywords, use_cases: Listing filters
        exclude_domains: Domains to leave out
        technical: {auth_types, transport, cors_support}
        performance: {min_uptime, max_response_time, min_trust_score, healthy_only}
        sort_by: relevance, uptime, response_time, created_at or trust_score
        limit, offset: Pagination

    Returns:
        Ranked servers, pagination and query metadata
    """
    payload = {
        key: value
        for key, value in {
            "query": query,
            "domain": domain,
            "domains": domains,
            "capability": capability,
            "capabilities": capabilities,
            "similar_to": similar_to,
            "category": category,
            "keywords": keywords,
            "use_cases": use_cases,
            "exclude_domains": exclude_domains,
            "technical": technical,
            "performance": performance,
            "sort_by": sort_by,
            "limit": limit,
            "offset": offset,
        }.items()
        if value is not None
    }

    try:
        result = await service.dispatch(Operation.DISCOVER, payload)
    except LookupServiceError as e:
        return service_error(e)
    except Exception as e:
        logger.error(f"Discovery failed: {e}")
        return internal_error()

    servers = result["servers"]
    if not servers:
        hint = "No verified MCP server matched this query."
        if result["suggestions"]:
            hint += " Suggestions: " + "; ".join(result["suggestions"])
        return success(result, hint=hint)

    best = servers[0]
    names = ", ".join(f"{s['name'] or s['domain']} ({s['endpoint']})" for s in servers[:3])
    response = success(
        result,
        hint=(
            f"Found {result['total_results']} verified MCP server(s). Best matches: {names}. "
            "Every listed server proved ownership of its domain via DNS. "
            "IMPORTANT: If you (the AI assistant) don't have this MCP server installed, "
            "guide the user to add it TO YOU using the endpoint URL."
        ),
    )
    response["_install_instructions"] = _build_install_instructions(best["endpoint"])
    return response


def _build_install_instructions(endpoint: str) -> dict:
    """Build MCP connector installation instructions for AI assistants."""
    return {
        "claude": {
            "steps": [
                "Go to Settings -> Connectors",
                "Click 'Add custom connector'",
                f"Enter URL: {endpoint}",
                "Click Add",
            ],
        },
        "chatgpt": {
            "steps": [
                "Go to Settings -> Apps",
                "Enable Developer mode in Advanced settings",
                "Click Create under Connectors",
                f"Enter URL: {endpoint}",
            ],
        },
        "mistral_le_chat": {
            "steps": [
                "Click Intelligence -> Connectors",
                "Click '+ Add Connector'",
                "Select 'Custom MCP Connector' tab",
                f"Enter URL: {endpoint}",
            ],
        },
    }
