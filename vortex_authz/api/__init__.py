"""
FastAPI integration: authorization guards and rate-limit dependencies.
"""

from .guards import (
    raise_for_decision,
    require_action,
    install_error_handlers,
    error_response,
    status_for_error,
)

from .limits import (
    RateLimitDependency,
    get_user_id_from_request,
    rate_limit_headers,
    create_rate_limit_response,
)

__all__ = [
    "raise_for_decision",
    "require_action",
    "install_error_handlers",
    "error_response",
    "status_for_error",
    "RateLimitDependency",
    "get_user_id_from_request",
    "rate_limit_headers",
    "create_rate_limit_response",
]
