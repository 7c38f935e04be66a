"""
Records kept in the store: server records, verification challenges
and health metrics.

All records round-trip through plain dicts (``to_dict`` / ``from_dict``)
so that any key-value backend holding JSON can store them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ========================================
# ENUMS
# ========================================


class ChallengeStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    EXPIRED = "expired"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ChallengeStatus.PENDING


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    UNVERIFIED = "unverified"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


class Transport(str, Enum):
    STREAMABLE_HTTP = "streamable_http"
    SSE = "sse"
    STDIO = "stdio"


class AuthType(str, Enum):
    NONE = "none"
    API_KEY = "api_key"
    OAUTH2 = "oauth2"
    BASIC = "basic"


class Category(str, Enum):
    COMMUNICATION = "communication"
    PRODUCTIVITY = "productivity"
    DATA = "data"
    DEVELOPMENT = "development"
    CONTENT = "content"
    INTEGRATION = "integration"
    ANALYTICS = "analytics"
    SECURITY = "security"
    FINANCE = "finance"
    ECOMMERCE = "ecommerce"
    SOCIAL = "social"
    OTHER = "other"


# ========================================
# HEALTH
# ========================================


@dataclass
class HealthMetrics:
    """Rolling operational signal for a domain."""

    status: HealthStatus = HealthStatus.UNKNOWN
    uptime_percentage: float = 0.0
    avg_response_time_ms: float = 0.0
    response_time_ms: float | None = None  # last sample
    consecutive_failures: int = 0
    total_checks: int = 0
    last_check: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "uptime_percentage": round(self.uptime_percentage, 3),
            "avg_response_time_ms": round(self.avg_response_time_ms, 3),
            "response_time_ms": self.response_time_ms,
            "consecutive_failures": self.consecutive_failures,
            "total_checks": self.total_checks,
            "last_check": _iso(self.last_check),
            "last_error": self.last_error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "HealthMetrics":
        if not data:
            return cls()
        return cls(
            status=HealthStatus(data.get("status", HealthStatus.UNKNOWN.value)),
            uptime_percentage=float(data.get("uptime_percentage", 0.0)),
            avg_response_time_ms=float(data.get("avg_response_time_ms", 0.0)),
            response_time_ms=data.get("response_time_ms"),
            consecutive_failures=int(data.get("consecutive_failures", 0)),
            total_checks=int(data.get("total_checks", 0)),
            last_check=_parse(data.get("last_check")),
            last_error=data.get("last_error"),
        )


# ========================================
# VERIFICATION
# ========================================


@dataclass
class VerificationInfo:
    """Outcome of domain verification attached to a server record."""

    status: VerificationStatus = VerificationStatus.UNVERIFIED
    dns_verified: bool = False
    method: str = "dns-txt-challenge"
    verified_at: datetime | None = None
    last_checked: datetime | None = None
    challenge_id: str | None = None
    txt_record_name: str | None = None
    token: str | None = None
    consecutive_failures: int = 0
    failure_reason: str | None = None

    def to_dict(self, include_secrets: bool = True) -> dict[str, Any]:
        data = {
            "status": self.status.value,
            "dns_verified": self.dns_verified,
            "method": self.method,
            "verified_at": _iso(self.verified_at),
            "last_checked": _iso(self.last_checked),
            "challenge_id": self.challenge_id,
            "txt_record_name": self.txt_record_name,
            "consecutive_failures": self.consecutive_failures,
            "failure_reason": self.failure_reason,
        }
        if include_secrets:
            data["token"] = self.token
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "VerificationInfo":
        if not data:
            return cls()
        return cls(
            status=VerificationStatus(data.get("status", VerificationStatus.UNVERIFIED.value)),
            dns_verified=bool(data.get("dns_verified", False)),
            method=data.get("method", "dns-txt-challenge"),
            verified_at=_parse(data.get("verified_at")),
            last_checked=_parse(data.get("last_checked")),
            challenge_id=data.get("challenge_id"),
            txt_record_name=data.get("txt_record_name"),
            token=data.get("token"),
            consecutive_failures=int(data.get("consecutive_failures", 0)),
            failure_reason=data.get("failure_reason"),
        )


@dataclass
class VerificationChallenge:
    """A time-boxed proof request tying a random token to a domain."""

    challenge_id: str
    domain: str
    endpoint: str
    contact_email: str
    txt_record_name: str
    txt_record_value: str
    token: str
    created_at: datetime
    expires_at: datetime
    status: ChallengeStatus = ChallengeStatus.PENDING
    verified_at: datetime | None = None
    failure_reason: str | None = None
    superseded_by: str | None = None
    # Registration metadata carried over to the server record
    name: str | None = None
    description: str | None = None
    category: Category = Category.OTHER
    capabilities: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    transport: Transport = Transport.STREAMABLE_HTTP
    auth_type: AuthType = AuthType.NONE
    cors_enabled: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "challenge_id": self.challenge_id,
            "domain": self.domain,
            "endpoint": self.endpoint,
            "contact_email": self.contact_email,
            "txt_record_name": self.txt_record_name,
            "txt_record_value": self.txt_record_value,
            "token": self.token,
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "status": self.status.value,
            "verified_at": _iso(self.verified_at),
            "failure_reason": self.failure_reason,
            "superseded_by": self.superseded_by,
            "name": self.name,
            "description": self.description,
            "category": self.category.value,
            "capabilities": list(self.capabilities),
            "keywords": list(self.keywords),
            "transport": self.transport.value,
            "auth_type": self.auth_type.value,
            "cors_enabled": self.cors_enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VerificationChallenge":
        return cls(
            challenge_id=data["challenge_id"],
            domain=data["domain"],
            endpoint=data["endpoint"],
            contact_email=data.get("contact_email", ""),
            txt_record_name=data["txt_record_name"],
            txt_record_value=data["txt_record_value"],
            token=data["token"],
            created_at=_parse(data["created_at"]),
            expires_at=_parse(data["expires_at"]),
            status=ChallengeStatus(data.get("status", ChallengeStatus.PENDING.value)),
            verified_at=_parse(data.get("verified_at")),
            failure_reason=data.get("failure_reason"),
            superseded_by=data.get("superseded_by"),
            name=data.get("name"),
            description=data.get("description"),
            category=Category(data.get("category", Category.OTHER.value)),
            capabilities=list(data.get("capabilities", [])),
            keywords=list(data.get("keywords", [])),
            transport=Transport(data.get("transport", Transport.STREAMABLE_HTTP.value)),
            auth_type=AuthType(data.get("auth_type", AuthType.NONE.value)),
            cors_enabled=bool(data.get("cors_enabled", False)),
        )


# ========================================
# SERVER RECORD
# ========================================


@dataclass
class Capabilities:
    """Capability classification used for discovery."""

    category: Category = Category.OTHER
    tags: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    use_cases: list[str] = field(default_factory=list)

    @property
    def tag_set(self) -> set[str]:
        return {t.lower() for t in self.tags}

    @property
    def keyword_set(self) -> set[str]:
        return {k.lower() for k in self.keywords}

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "tags": list(self.tags),
            "keywords": list(self.keywords),
            "use_cases": list(self.use_cases),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Capabilities":
        if not data:
            return cls()
        return cls(
            category=Category(data.get("category", Category.OTHER.value)),
            tags=list(data.get("tags", [])),
            keywords=list(data.get("keywords", [])),
            use_cases=list(data.get("use_cases", [])),
        )


@dataclass
class ServerRecord:
    """Identity and metadata for one registered MCP server."""

    domain: str
    endpoint: str
    name: str = ""
    description: str = ""
    contact_email: str | None = None
    capabilities: Capabilities = field(default_factory=Capabilities)
    transport: Transport = Transport.STREAMABLE_HTTP
    auth_type: AuthType = AuthType.NONE
    cors_enabled: bool = False
    health: HealthMetrics = field(default_factory=HealthMetrics)
    verification: VerificationInfo = field(default_factory=VerificationInfo)
    trust_score: int = 0
    community_rating: float | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_verified(self) -> bool:
        return self.verification.status == VerificationStatus.VERIFIED

    def is_discoverable(self, healthy_only: bool = True) -> bool:
        """Verified always required; the health rule may be relaxed."""
        if not self.is_verified:
            return False
        if healthy_only and self.health.status == HealthStatus.UNHEALTHY:
            return False
        return True

    def to_dict(self, include_secrets: bool = True) -> dict[str, Any]:
        return {
            "domain": self.domain,
            "endpoint": self.endpoint,
            "name": self.name,
            "description": self.description,
            "contact_email": self.contact_email if include_secrets else None,
            "capabilities": self.capabilities.to_dict(),
            "transport": self.transport.value,
            "auth_type": self.auth_type.value,
            "cors_enabled": self.cors_enabled,
            "health": self.health.to_dict(),
            "verification": self.verification.to_dict(include_secrets=include_secrets),
            "trust_score": self.trust_score,
            "community_rating": self.community_rating,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def to_public_dict(self) -> dict[str, Any]:
        """Serialized form returned to discovery clients (no token, no email)."""
        data = self.to_dict(include_secrets=False)
        data.pop("contact_email")
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerRecord":
        return cls(
            domain=data["domain"],
            endpoint=data["endpoint"],
            name=data.get("name") or "",
            description=data.get("description") or "",
            contact_email=data.get("contact_email"),
            capabilities=Capabilities.from_dict(data.get("capabilities")),
            transport=Transport(data.get("transport", Transport.STREAMABLE_HTTP.value)),
            auth_type=AuthType(data.get("auth_type", AuthType.NONE.value)),
            cors_enabled=bool(data.get("cors_enabled", False)),
            health=HealthMetrics.from_dict(data.get("health")),
            verification=VerificationInfo.from_dict(data.get("verification")),
            trust_score=int(data.get("trust_score", 0)),
            community_rating=data.get("community_rating"),
            created_at=_parse(data.get("created_at")) or utcnow(),
            updated_at=_parse(data.get("updated_at")) or utcnow(),
        )
