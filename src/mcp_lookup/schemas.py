"""
Request models for MCP Lookup operations.

One explicit model per operation, validated at the boundary before any
state is touched. Pydantic validation failures are converted into the
structured errors from ``errors.py`` by ``parse_request``.
"""

from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .errors import InvalidRequest, LookupServiceError
from .models import AuthType, Category, Transport
from .validators import is_valid_email, is_valid_tag, normalize_domain

ModelT = TypeVar("ModelT", bound=BaseModel)


def _normalize_tags(values: list[str] | None) -> list[str]:
    """Lowercase, strip, dedupe (order kept) and validate capability tags."""
    if not values:
        return []
    tags: list[str] = []
    for value in values:
        tag = value.strip().lower().replace(" ", "_")
        if not tag:
            continue
        if not is_valid_tag(tag):
            raise ValueError(f"invalid capability tag '{value}'")
        if tag not in tags:
            tags.append(tag)
    return tags


class _Request(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


# ========================================
# REGISTRATION / VERIFICATION
# ========================================


class RegistrationRequest(_Request):
    """Register a server and receive a DNS challenge."""

    domain: str
    endpoint: str
    contact_email: str
    name: str | None = Field(default=None, max_length=100)
    description: str | None = Field(default=None, max_length=1000)
    category: Category = Category.OTHER
    capabilities: list[str] = Field(default_factory=list, max_length=50)
    keywords: list[str] = Field(default_factory=list, max_length=50)
    transport: Transport = Transport.STREAMABLE_HTTP
    auth_type: AuthType = AuthType.NONE
    cors_enabled: bool = False
    # Re-issue a challenge for an already verified domain
    reverify: bool = False

    @field_validator("contact_email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        if not is_valid_email(value):
            raise ValueError("invalid email address")
        return value.lower()

    @field_validator("capabilities")
    @classmethod
    def _check_capabilities(cls, value: list[str]) -> list[str]:
        return _normalize_tags(value)

    @field_validator("keywords")
    @classmethod
    def _check_keywords(cls, value: list[str]) -> list[str]:
        return [k.strip().lower() for k in value if k.strip()]


class ChallengeRequest(_Request):
    challenge_id: str = Field(min_length=1, max_length=128)


class AbandonRequest(_Request):
    challenge_id: str = Field(min_length=1, max_length=128)
    reason: str = Field(default="abandoned by operator", max_length=500)


# ========================================
# DISCOVERY
# ========================================


class MatchOperator(str, Enum):
    AND = "AND"
    OR = "OR"
    NOT = "NOT"


class SortBy(str, Enum):
    RELEVANCE = "relevance"
    UPTIME = "uptime"
    RESPONSE_TIME = "response_time"
    CREATED_AT = "created_at"
    TRUST_SCORE = "trust_score"


class CapabilityQuery(_Request):
    """Structured capability requirements."""

    operator: MatchOperator = MatchOperator.AND
    required: list[str] = Field(default_factory=list)
    preferred: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    minimum_match: float = Field(default=0.0, ge=0.0, le=1.0)

    @field_validator("operator", mode="before")
    @classmethod
    def _upper_operator(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) else value

    @field_validator("required", "preferred", "exclude")
    @classmethod
    def _check_tags(cls, value: list[str]) -> list[str]:
        return _normalize_tags(value)

    @property
    def is_empty(self) -> bool:
        return not (self.required or self.preferred or self.exclude)


class SimilarityQuery(_Request):
    """Find servers whose capability tags resemble a reference server."""

    reference_domain: str
    threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    exclude_reference: bool = True

    @field_validator("reference_domain")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_domain(value)


class PerformanceFilters(_Request):
    min_uptime: float | None = Field(default=None, ge=0.0, le=100.0)
    max_response_time: float | None = Field(default=None, ge=0.0)
    min_trust_score: int | None = Field(default=None, ge=0, le=100)
    verified_only: bool = True
    healthy_only: bool = True


class TechnicalFilters(_Request):
    auth_types: list[AuthType] | None = None
    transport: Transport | None = None
    cors_support: bool | None = None


class DiscoveryQuery(_Request):
    """
    Structured discovery request.

    Selecting dimensions, highest priority first:
    domain/domains > similar_to > capabilities/intent > category/keywords.
    ``capability`` (single tag) and ``query`` (free text) are shorthand for
    ``capabilities.required`` and ``intent``.
    """

    domain: str | None = None
    domains: list[str] | None = Field(default=None, max_length=100)
    similar_to: SimilarityQuery | None = None
    capabilities: CapabilityQuery | None = None
    capability: str | None = None
    intent: str | None = Field(default=None, max_length=500)
    query: str | None = Field(default=None, max_length=500)
    category: Category | None = None
    keywords: list[str] | None = None
    use_cases: list[str] | None = None
    exclude_domains: list[str] = Field(default_factory=list)
    technical: TechnicalFilters = Field(default_factory=TechnicalFilters)
    performance: PerformanceFilters = Field(default_factory=PerformanceFilters)
    sort_by: SortBy | None = None
    limit: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)
    offset: int = Field(default=0, ge=0)

    @field_validator("domain")
    @classmethod
    def _normalize_domain(cls, value: str | None) -> str | None:
        return normalize_domain(value) if value else value

    @field_validator("domains", "exclude_domains")
    @classmethod
    def _normalize_domains(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return [normalize_domain(d) for d in value if d.strip()]

    @field_validator("keywords", "use_cases")
    @classmethod
    def _normalize_words(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return [v.strip().lower() for v in value if v.strip()]

    @model_validator(mode="after")
    def _require_dimension(self) -> "DiscoveryQuery":
        selectors = (
            self.domain,
            self.domains,
            self.similar_to,
            self.capabilities is not None and not self.capabilities.is_empty,
            self.capability,
            self.intent,
            self.query,
            self.category,
            self.keywords,
            self.use_cases,
        )
        explicit_filters = {"technical", "performance"} & self.model_fields_set
        if not any(selectors) and not explicit_filters:
            raise ValueError("at least one query dimension is required")
        return self

    @property
    def effective_intent(self) -> str | None:
        return self.intent or self.query

    def capability_query(self) -> CapabilityQuery | None:
        """The structured capability query with single-tag shorthand folded in."""
        if not self.capability:
            return self.capabilities
        base = self.capabilities or CapabilityQuery()
        required = list(base.required)
        for tag in _normalize_tags([self.capability]):
            if tag not in required:
                required.append(tag)
        return base.model_copy(update={"required": required})


# ========================================
# HEALTH
# ========================================


class HealthQuery(_Request):
    domain: str | None = None
    domains: list[str] | None = Field(default=None, max_length=100)

    @field_validator("domain")
    @classmethod
    def _normalize_domain(cls, value: str | None) -> str | None:
        return normalize_domain(value) if value else value

    @field_validator("domains")
    @classmethod
    def _normalize_domains(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        return [normalize_domain(d) for d in value if d.strip()]

    @model_validator(mode="after")
    def _require_one(self) -> "HealthQuery":
        if bool(self.domain) == bool(self.domains):
            raise ValueError("provide exactly one of 'domain' or 'domains'")
        return self


class EmptyRequest(_Request):
    """Operations that take no arguments (sweeps)."""


# ========================================
# BOUNDARY PARSING
# ========================================


def parse_request(
    model: type[ModelT],
    payload: dict[str, Any] | BaseModel | None,
    error_cls: type[LookupServiceError] = InvalidRequest,
) -> ModelT:
    """
    Validate a raw payload into a request model.

    Raises:
        error_cls: With the first offending field and its message
    """
    if isinstance(payload, model):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    try:
        return model.model_validate(payload or {})
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = first.get("msg", "invalid request")
        raise error_cls(
            f"{location}: {message}" if location else message,
            field=location or None,
        ) from e
