"""
Validation utilities for MCP Lookup

Provides input validation patterns and security checks for
domains and endpoints submitted for registration.
"""

import ipaddress
import re
from urllib.parse import urlsplit

from .errors import InsecureEndpoint, InvalidDomain

# ========================================
# VALIDATION PATTERNS
# ========================================

# Domain pattern: standard domain format
DOMAIN_PATTERN = re.compile(
    r"^[a-z0-9]([a-z0-9\-]*[a-z0-9])?(\.[a-z0-9]([a-z0-9\-]*[a-z0-9])?)*\.[a-z]{2,}$",
    re.IGNORECASE,
)

# RFC 1035 limits
MAX_DOMAIN_LENGTH = 253
MAX_LABEL_LENGTH = 63

# Capability tag pattern: lowercase slug, 1-64 chars
TAG_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_\-]{0,63}$")

# Email pattern: good enough to reject obvious garbage
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# ========================================
# SECURITY: NON-PUBLIC NAMES
# ========================================

# Names that never identify a publicly reachable zone
BLOCKED_HOSTNAMES = {"localhost", "localhost.localdomain"}

# Suffixes reserved for private networks or documentation
BLOCKED_SUFFIXES = (
    ".local",
    ".internal",
    ".lan",
    ".localhost",
    ".localdomain",
    ".home.arpa",
    ".test",
    ".example",
    ".invalid",
)


def normalize_domain(domain: str) -> str:
    """Lowercase, strip whitespace and a trailing root dot."""
    return domain.strip().lower().rstrip(".")


def is_ip_address(value: str) -> bool:
    """Check if a string is a literal IPv4 or IPv6 address."""
    try:
        ipaddress.ip_address(value.strip("[]"))
    except ValueError:
        return False
    return True


def is_public_ip(value: str) -> bool:
    """Check if an IP address is routable on the public internet."""
    try:
        addr = ipaddress.ip_address(value.strip("[]"))
    except ValueError:
        return False
    return not (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_reserved
        or addr.is_multicast
        or addr.is_unspecified
    )


def is_valid_domain(domain: str) -> bool:
    """Check if a domain string matches the valid domain pattern."""
    return bool(DOMAIN_PATTERN.match(domain))


def is_valid_tag(tag: str) -> bool:
    """Check if a capability tag matches the valid pattern."""
    return bool(TAG_PATTERN.match(tag))


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_PATTERN.match(email))


def validate_domain(domain: str) -> str:
    """
    Validate a domain submitted for registration.

    Args:
        domain: Domain name without protocol (e.g., "example.com")

    Returns:
        The normalized domain

    Raises:
        InvalidDomain: If the domain is malformed or not publicly resolvable
    """
    domain = normalize_domain(domain or "")

    if not domain:
        raise InvalidDomain("Domain cannot be empty", field="domain")

    if is_ip_address(domain):
        raise InvalidDomain("Bare IP addresses cannot be registered", field="domain")

    if domain in BLOCKED_HOSTNAMES or domain.endswith(BLOCKED_SUFFIXES):
        raise InvalidDomain(
            f"'{domain}' is a private or reserved name", field="domain"
        )

    if len(domain) > MAX_DOMAIN_LENGTH:
        raise InvalidDomain(
            f"Domain exceeds {MAX_DOMAIN_LENGTH} characters", field="domain"
        )

    if any(len(label) > MAX_LABEL_LENGTH for label in domain.split(".")):
        raise InvalidDomain(
            f"Domain labels must be at most {MAX_LABEL_LENGTH} characters",
            field="domain",
        )

    if not is_valid_domain(domain):
        raise InvalidDomain("Invalid domain format", field="domain")

    return domain


def validate_endpoint(endpoint: str, domain: str | None = None) -> str:
    """
    Validate an MCP endpoint URL.

    Only checks what can be decided without the network; the verification
    service additionally resolves the host and rejects private addresses.

    Args:
        endpoint: Full endpoint URL
        domain: If given, the endpoint host must be this domain or a subdomain

    Returns:
        The endpoint with surrounding whitespace removed

    Raises:
        InsecureEndpoint: If the URL is not https or points at a private host
    """
    endpoint = (endpoint or "").strip()
    parts = urlsplit(endpoint)

    if parts.scheme.lower() != "https":
        raise InsecureEndpoint("Endpoint must use https://", field="endpoint")

    host = (parts.hostname or "").lower()
    if not host:
        raise InsecureEndpoint("Endpoint has no host", field="endpoint")

    if is_ip_address(host):
        if not is_public_ip(host):
            raise InsecureEndpoint(
                "Endpoint points at a private or loopback address", field="endpoint"
            )
        raise InsecureEndpoint(
            "Endpoint must use a hostname, not an IP address", field="endpoint"
        )

    if host in BLOCKED_HOSTNAMES or host.endswith(BLOCKED_SUFFIXES):
        raise InsecureEndpoint(
            f"Endpoint host '{host}' is not publicly reachable", field="endpoint"
        )

    if domain and host != domain and not host.endswith(f".{domain}"):
        raise InsecureEndpoint(
            f"Endpoint host '{host}' is not part of {domain}", field="endpoint"
        )

    return endpoint
