"""
MCP Lookup Server

Lets AI agents discover verified MCP servers by domain, capability or
intent, and lets domain owners register their servers through DNS
verification.
"""

import logging
import secrets
from functools import lru_cache

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from .config import CRON_SECRET, LOG_LEVEL, PORT
from .errors import LookupServiceError
from .operations import LookupService, Operation
from .tools import (
    discover_servers_handler,
    register_server_handler,
    server_health_handler,
    verify_domain_handler,
)

mcp = FastMCP(
    name="MCP Lookup",
    instructions="""
    Use this server to find MCP servers that can do something for the user.
    Describe the task in plain words (e.g., "send emails", "query a database")
    or pass capability tags to discover_servers. Every listed server has
    proved ownership of its domain through a DNS TXT record.
    Domain owners can list their own server with register_server, publish
    the returned TXT record, then confirm with verify_domain.
    """,
)

# Scheduled maintenance tasks, in the order the cron route runs them
MAINTENANCE_TASKS = (
    Operation.EXPIRE_CHALLENGES,
    Operation.REVERIFY,
    Operation.CHECK_ALL_HEALTH,
)


@lru_cache(maxsize=1)
def get_service() -> LookupService:
    """Lookup service over the configured record store."""
    return LookupService()


@mcp.tool
async def discover_servers(
    query: str | None = None,
    domain: str | None = None,
    domains: list[str] | None = None,
    capability: str | None = None,
    capabilities: dict | None = None,
    similar_to: dict | None = None,
    category: str | None = None,
    keywords: list[str] | None = None,
    use_cases: list[str] | None = None,
    exclude_domains: list[str] | None = None,
    technical: dict | None = None,
    performance: dict | None = None,
    sort_by: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> dict:
    """
    Find verified MCP servers.

    Use query for natural language ("send emails to my team"), capability
    or capabilities for tags ({"operator": "AND", "required": ["email"]}),
    domain for a specific organization, or similar_to
    ({"reference_domain": "gmail.com"}) for alternatives.
    """
    return await discover_servers_handler(
        get_service(),
        query=query,
        domain=domain,
        domains=domains,
        capability=capability,
        capabilities=capabilities,
        similar_to=similar_to,
        category=category,
        keywords=keywords,
        use_cases=use_cases,
        exclude_domains=exclude_domains,
        technical=technical,
        performance=performance,
        sort_by=sort_by,
        limit=limit,
        offset=offset,
    )


@mcp.tool
async def register_server(
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
    Register an MCP server for a domain you own.

    Returns a DNS TXT record to publish at _mcp-verify.<domain>. The
    endpoint must be https and live on the domain or one of its subdomains.
    """
    return await register_server_handler(
        get_service(),
        domain=domain,
        endpoint=endpoint,
        contact_email=contact_email,
        name=name,
        description=description,
        category=category,
        capabilities=capabilities,
        keywords=keywords,
        transport=transport,
        auth_type=auth_type,
        cors_enabled=cors_enabled,
        reverify=reverify,
    )


@mcp.tool
async def verify_domain(
    challenge_id: str,
    action: str = "check",
    reason: str | None = None,
) -> dict:
    """
    Check a registration challenge after publishing its TXT record.

    action: "check" looks up DNS, "status" reads the current state,
    "abandon" closes the challenge.
    """
    return await verify_domain_handler(
        get_service(), challenge_id=challenge_id, action=action, reason=reason
    )


@mcp.tool
async def server_health(
    domain: str | None = None,
    domains: list[str] | None = None,
) -> dict:
    """Get health metrics and trust score for one domain or several."""
    return await server_health_handler(get_service(), domain=domain, domains=domains)


# ========================================
# HTTP ROUTES
# ========================================


@mcp.custom_route(path="/health", methods=["GET"])
async def health_check(request: Request) -> JSONResponse:
    """Liveness check for the deployment platform."""
    return JSONResponse({"status": "ok", "service": "mcp-lookup"})


@mcp.custom_route(path="/cron/maintenance", methods=["GET", "POST"])
async def run_maintenance(request: Request) -> JSONResponse:
    """
    Scheduled sweeps: expire stale challenges, re-verify DNS, probe health.

    Requires ``Authorization: Bearer <CRON_SECRET>``.
    """
    provided = request.headers.get("authorization", "")
    if not CRON_SECRET or not secrets.compare_digest(provided, f"Bearer {CRON_SECRET}"):
        return JSONResponse({"error": "unauthorized"}, status_code=401)

    service = get_service()
    report = {}
    for task in MAINTENANCE_TASKS:
        try:
            report[task.value] = await service.dispatch(task)
        except LookupServiceError as e:
            report[task.value] = e.to_dict()
    return JSONResponse(report)


def main():
    """Entry point for the MCP server."""
    logging.basicConfig(
        level=LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp.run(transport="http", host="0.0.0.0", port=PORT)


if __name__ == "__main__":
    main()
