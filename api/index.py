"""
MCP Lookup - Vercel entry point

Wraps the FastMCP HTTP app with logging setup, CORS (MCP clients call
from browsers) and per-IP rate limiting.
"""

import logging
import sys
from pathlib import Path

# Add src/ to Python path for Vercel
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware

from mcp_lookup.config import LOG_LEVEL
from mcp_lookup.rate_limit import RateLimitMiddleware, get_rate_limiter
from mcp_lookup.server import mcp

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

middleware = [
    Middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["mcp-session-id", "Retry-After"],
    ),
    # None when Redis is not configured (middleware passes through)
    Middleware(RateLimitMiddleware, limiter=get_rate_limiter()),
]

app = mcp.http_app(middleware=middleware)
