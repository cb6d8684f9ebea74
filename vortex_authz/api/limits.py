#!/usr/bin/env python3
"""
vortex_authz/api/limits.py - FastAPI dependency for sliding-window rate limits.

Applies a RateLimitPolicy per caller and returns 429 responses with
Retry-After and X-RateLimit-* headers when the window is full.

Usage:
    from fastapi import Depends, FastAPI
    from vortex_authz.api.limits import RateLimitDependency

    limit_messages = RateLimitDependency(limiter, policies["message_post"])

    @app.post("/channels/{channel_id}/messages", dependencies=[Depends(limit_messages)])
    def post_message(...): ...
"""

import hashlib
import logging
from typing import Callable, Dict, Optional

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse

from vortex_authz.limits import RateLimiter, RateLimitPolicy, RateLimitResult, create_429_response

logger = logging.getLogger(__name__)


def get_user_id_from_request(request: Request) -> str:
    """
    Extract a caller identifier from the request.

    Tries, in order: authenticated user on request.state.user, a hash of the
    API key or Authorization header, a session cookie, then client IP.
    """
    user = getattr(request.state, "user", None)
    if user:
        if hasattr(user, "id"):
            return f"user:{user.id}"
        elif isinstance(user, dict) and "id" in user:
            return f"user:{user['id']}"

    api_key = request.headers.get("X-API-Key") or request.headers.get("Authorization")
    if api_key:
        key_hash = hashlib.sha256(api_key.encode()).hexdigest()[:16]
        return f"apikey:{key_hash}"

    session_id = request.cookies.get("session_id") or request.cookies.get("sessionid")
    if session_id:
        return f"session:{session_id}"

    client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


def rate_limit_headers(result: RateLimitResult, now: Optional[float] = None) -> Dict[str, str]:
    """X-RateLimit-* headers, plus Retry-After on a refused check."""
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(int(result.reset_at)),
    }
    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after(now))
    return headers


def create_rate_limit_response(result: RateLimitResult, now: Optional[float] = None) -> JSONResponse:
    """
    Create a 429 JSONResponse for a refused check.

    Args:
        result: Refused RateLimitResult

    Returns:
        JSONResponse with status 429 and rate-limit headers
    """
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=create_429_response(result, now),
        headers=rate_limit_headers(result, now),
    )


class RateLimitDependency:
    """
    Callable FastAPI dependency enforcing one policy per caller.

    The check result is stored on request.state.rate_limit for handlers that
    want to echo the headers on success.

    Args:
        limiter: Shared RateLimiter instance
        policy: Policy to apply
        key_func: Maps a request to the policy subject
        enabled: When False every request passes unchecked
    """

    def __init__(
        self,
        limiter: RateLimiter,
        policy: RateLimitPolicy,
        key_func: Callable[[Request], str] = get_user_id_from_request,
        enabled: bool = True,
    ):
        self.limiter = limiter
        self.policy = policy
        self.key_func = key_func
        self.enabled = enabled

    async def __call__(self, request: Request) -> Optional[RateLimitResult]:
        if not self.enabled:
            return None

        subject = self.key_func(request)
        result = self.limiter.check_policy(self.policy, subject)
        request.state.rate_limit = result

        if not result.allowed:
            now = self.limiter.now()
            logger.warning(
                f"Rate limited: policy={self.policy.name} subject={subject} "
                f"path={request.url.path} retry_after={result.retry_after(now)}s"
            )
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=create_429_response(result, now),
                headers=rate_limit_headers(result, now),
            )

        return result
