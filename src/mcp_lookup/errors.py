"""
Structured errors for MCP Lookup

Every failure that crosses a public operation is one of these.
Callers branch on the category (validation / conflict / not found)
and report ``kind`` + ``message`` + ``field`` to the user.
"""

from typing import Any


class LookupServiceError(Exception):
    """Base class for all structured MCP Lookup errors."""

    kind = "error"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        data: dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.field is not None:
            data["field"] = self.field
        return data


# ========================================
# VALIDATION (never retried, never create state)
# ========================================


class ValidationError(LookupServiceError):
    kind = "validation_error"


class InvalidDomain(ValidationError):
    kind = "invalid_domain"


class InsecureEndpoint(ValidationError):
    kind = "insecure_endpoint"


class InvalidQuery(ValidationError):
    kind = "invalid_query"


class InvalidRequest(ValidationError):
    kind = "invalid_request"


# ========================================
# CONFLICT (caller must resolve)
# ========================================


class ConflictError(LookupServiceError):
    kind = "conflict"


class DomainAlreadyRegistered(ConflictError):
    kind = "domain_already_registered"


# ========================================
# NOT FOUND (register first)
# ========================================


class NotFoundError(LookupServiceError):
    kind = "not_found"


class ChallengeNotFound(NotFoundError):
    kind = "challenge_not_found"


class DomainNotFound(NotFoundError):
    kind = "domain_not_found"
