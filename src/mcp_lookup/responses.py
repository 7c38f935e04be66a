"""
Standardized response builders for MCP tool handlers.

Provides consistent response formats across all tools with
helpful hints for AI agents.
"""

from dataclasses import dataclass
from typing import Any

from .errors import ConflictError, LookupServiceError, NotFoundError, ValidationError


@dataclass
class ToolResponse:
    """
    Standard response structure for MCP tool handlers.

    Attributes:
        success: Whether the operation succeeded
        result: The result data (if successful)
        error: Error kind (if failed)
        message: Human-readable status message
        field: Offending request field (validation errors)
        _ai_hint: Instructions for the AI agent on how to present/handle the response
    """

    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None
    message: str | None = None
    field: str | None = None
    _ai_hint: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON response."""
        data: dict[str, Any] = {"success": self.success}

        if self.result is not None:
            data["result"] = self.result
        if self.error is not None:
            data["error"] = self.error
        if self.message is not None:
            data["message"] = self.message
        if self.field is not None:
            data["field"] = self.field
        if self._ai_hint is not None:
            data["_ai_hint"] = self._ai_hint

        return data


def success(result: dict[str, Any], hint: str | None = None) -> dict[str, Any]:
    return ToolResponse(success=True, result=result, _ai_hint=hint).to_dict()


# ========================================
# PRE-CONFIGURED ERROR RESPONSES
# ========================================


def service_error(error: LookupServiceError) -> dict[str, Any]:
    """Structured error raised by a lookup operation."""
    if isinstance(error, ValidationError):
        hint = (
            f"The request was rejected: {error.message}. "
            "Fix the highlighted field and try again; nothing was stored."
        )
    elif isinstance(error, ConflictError):
        hint = (
            "This domain is already verified. Set reverify=true only if the owner "
            "wants to re-run DNS verification (for example after changing endpoint)."
        )
    elif isinstance(error, NotFoundError):
        hint = (
            "Nothing is registered under that identifier. The domain owner must "
            "register with register_server first."
        )
    else:
        hint = "The operation failed. The user may want to try again."

    return ToolResponse(
        success=False,
        error=error.kind,
        message=error.message,
        field=error.field,
        _ai_hint=hint,
    ).to_dict()


def internal_error() -> dict[str, Any]:
    """Unexpected failure inside the service."""
    return ToolResponse(
        success=False,
        error="internal_error",
        message="An unexpected error occurred.",
        _ai_hint="An error occurred inside MCP Lookup. The user may want to try again.",
    ).to_dict()


def rate_limited(retry_after: int | None = None) -> dict[str, Any]:
    """Rate limit exceeded error."""
    response = ToolResponse(
        success=False,
        error="rate_limited",
        message="Too many requests. Please try again later.",
        _ai_hint="The user has made too many requests. Ask them to wait a moment before trying again.",
    ).to_dict()
    if retry_after is not None:
        response["retry_after"] = retry_after
    return response
