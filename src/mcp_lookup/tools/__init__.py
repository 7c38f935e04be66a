"""
MCP Lookup Tools

Exports the main tool handlers for the MCP server.
"""

from .register_server import register_server_handler
from .verify_domain import verify_domain_handler
from .discover_servers import discover_servers_handler
from .server_health import server_health_handler

__all__ = [
    "register_server_handler",
    "verify_domain_handler",
    "discover_servers_handler",
    "server_health_handler",
]
