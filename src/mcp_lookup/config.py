"""
Centralized configuration for MCP Lookup

All environment variables and settings are defined here.
"""

import os

# ========================================
# RECORD STORE
# ========================================

# Upstash Redis REST credentials (record store + rate limiting)
UPSTASH_REDIS_REST_URL = os.environ.get("UPSTASH_REDIS_REST_URL")
UPSTASH_REDIS_REST_TOKEN = os.environ.get("UPSTASH_REDIS_REST_TOKEN")

# Key prefix for every record stored in Redis
STORE_KEY_PREFIX = os.environ.get("MCP_LOOKUP_KEY_PREFIX", "mcplookup")

# ========================================
# DOMAIN VERIFICATION
# ========================================

# TXT record label prepended to the domain being verified
VERIFICATION_PREFIX = "_mcp-verify"

# How long a challenge stays valid (DNS propagation can take a day)
CHALLENGE_TTL_HOURS = int(os.environ.get("CHALLENGE_TTL_HOURS", 24))

# Hard limit for a single TXT lookup
DNS_TIMEOUT_SECONDS = float(os.environ.get("DNS_TIMEOUT_SECONDS", 5.0))

# Optional comma-separated resolver list (e.g. "1.1.1.1,8.8.8.8")
DNS_NAMESERVERS = [
    ns.strip()
    for ns in os.environ.get("DNS_NAMESERVERS", "").split(",")
    if ns.strip()
]

# ========================================
# HEALTH MONITORING
# ========================================

HEALTH_PROBE_TIMEOUT_SECONDS = float(os.environ.get("HEALTH_PROBE_TIMEOUT_SECONDS", 5.0))
HEALTH_MAX_CONCURRENCY = int(os.environ.get("HEALTH_MAX_CONCURRENCY", 20))

# Weight of the newest sample in the response time moving average
HEALTH_EMA_ALPHA = float(os.environ.get("HEALTH_EMA_ALPHA", 0.2))

# Weight of the newest sample in the decayed uptime average
HEALTH_UPTIME_DECAY = float(os.environ.get("HEALTH_UPTIME_DECAY", 0.01))

# Failures in a row that force a server to unhealthy
HEALTH_FAILURE_THRESHOLD = 3

# ========================================
# DISCOVERY
# ========================================

# A preferred tag hit counts for this fraction of a required tag hit
PREFERRED_MATCH_WEIGHT = float(os.environ.get("PREFERRED_MATCH_WEIGHT", 0.7))

# Upper bound on scoring work per discovery query
DISCOVERY_DEADLINE_SECONDS = float(os.environ.get("DISCOVERY_DEADLINE_SECONDS", 2.0))

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100

# ========================================
# DEPLOYMENT ENVIRONMENT
# ========================================

# Production detection
IS_PRODUCTION = (
    os.environ.get("VERCEL_ENV") == "production"
    or os.environ.get("NODE_ENV") == "production"
)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Server port (Railway provides PORT, default to 8080 for local dev)
PORT = int(os.environ.get("PORT", 8080))

# Rate limiting for the public HTTP surface
RATE_LIMIT_MAX_REQUESTS = int(os.environ.get("RATE_LIMIT_MAX_REQUESTS", 100))
RATE_LIMIT_WINDOW_SECONDS = int(os.environ.get("RATE_LIMIT_WINDOW_SECONDS", 60))

# Bearer secret for the scheduled maintenance route (Vercel Cron sends it)
CRON_SECRET = os.environ.get("CRON_SECRET")

# ========================================
# VALIDATION
# ========================================

# Production must not fall back to the in-memory store
if IS_PRODUCTION and not (UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN):
    raise RuntimeError("SECURITY: Upstash Redis is required in production")
