"""
Error taxonomy for the authorization and moderation engine.

Decision functions return Allowed / Forbidden / NotFound values for expected
outcomes. These exceptions are raised for malformed input and by the service
layer when it turns a negative decision into a hard stop.
"""

from typing import Any, Dict, Optional


class AuthzError(Exception):
    """Base class for engine errors."""

    code = "authz_error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class InvalidInputError(AuthzError, ValueError):
    """Malformed duration, unknown trigger type, bad rule payload, bad limiter parameters."""

    code = "invalid_input"


class NotFoundError(AuthzError):
    """Referenced server, member, rule or timeout is absent."""

    code = "not_found"

    def __init__(self, entity: str, message: Optional[str] = None):
        self.entity = entity
        super().__init__(message or f"{entity} not found")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["entity"] = self.entity
        return data


class ForbiddenError(AuthzError):
    """Authenticated actor lacks the required capability or hierarchy standing."""

    code = "forbidden"

    def __init__(self, reason: str, message: str, missing_permission: Optional[str] = None):
        self.reason = reason
        self.missing_permission = missing_permission
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["reason"] = self.reason
        if self.missing_permission:
            data["missing_permission"] = self.missing_permission
        return data


class RateLimitedError(AuthzError):
    """Transient, retryable refusal with a computable retry time."""

    code = "rate_limited"

    def __init__(self, message: str, retry_after: int, reset_at: float):
        self.retry_after = retry_after
        self.reset_at = reset_at
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["retry_after"] = self.retry_after
        return data
