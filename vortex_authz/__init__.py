"""
vortex_authz: authorization and moderation engine for chat servers.

Permission resolution, role hierarchy, moderation action gating, member
timeouts and bans, sliding-window rate limiting and automod rules.
"""

__version__ = "0.1.0"

from .errors import (
    AuthzError,
    InvalidInputError,
    NotFoundError,
    ForbiddenError,
    RateLimitedError,
)

from .authorizer import (
    ActionKind,
    Allowed,
    Forbidden,
    NotFound,
    AuthorizationContext,
    ServerRef,
    ModerationActionAuthorizer,
)

from .timeouts import TimeoutLedger, TimeoutRecord, InMemoryTimeoutStore
from .bans import BanList, BanRecord
from .limits import RateLimiter, RateLimitPolicy, RateLimitResult
from .service import ModerationService, MessageCheck

__all__ = [
    "AuthzError",
    "InvalidInputError",
    "NotFoundError",
    "ForbiddenError",
    "RateLimitedError",
    "ActionKind",
    "Allowed",
    "Forbidden",
    "NotFound",
    "AuthorizationContext",
    "ServerRef",
    "ModerationActionAuthorizer",
    "TimeoutLedger",
    "TimeoutRecord",
    "InMemoryTimeoutStore",
    "BanList",
    "BanRecord",
    "RateLimiter",
    "RateLimitPolicy",
    "RateLimitResult",
    "ModerationService",
    "MessageCheck",
]
