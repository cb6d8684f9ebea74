"""
API endpoint guards for moderation authorization.

Translates authorizer decisions and engine errors into FastAPI HTTP errors:
NotFound -> 404, Forbidden -> 403, invalid input -> 400, rate limited -> 429.
"""

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from vortex_authz.authorizer import (
    ActionKind,
    Allowed,
    AuthorizationContext,
    AuthorizationResult,
    Forbidden,
    ModerationActionAuthorizer,
    NotFound,
)
from vortex_authz.errors import (
    AuthzError,
    ForbiddenError,
    InvalidInputError,
    NotFoundError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

ContextProvider = Callable[[Request], AuthorizationContext]


# ============================================================================
# Decision Translation
# ============================================================================

def decision_detail(decision: AuthorizationResult) -> Dict[str, Any]:
    """Structured HTTP detail for a negative decision."""
    if isinstance(decision, (NotFound, Forbidden)):
        return decision.to_error().to_dict()
    return {}


def raise_for_decision(decision: AuthorizationResult) -> Allowed:
    """
    Return an Allowed decision unchanged, or raise the matching HTTPException.

    Raises:
        HTTPException: 404 for NotFound, 403 for Forbidden
    """
    if isinstance(decision, NotFound):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=decision_detail(decision))
    if isinstance(decision, Forbidden):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=decision_detail(decision))
    return decision


def status_for_error(error: AuthzError) -> int:
    if isinstance(error, InvalidInputError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, ForbiddenError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(error, RateLimitedError):
        return status.HTTP_429_TOO_MANY_REQUESTS
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_response(error: AuthzError) -> JSONResponse:
    """Build the JSON response for an engine error."""
    headers = None
    if isinstance(error, RateLimitedError):
        headers = {"Retry-After": str(error.retry_after)}
    return JSONResponse(
        status_code=status_for_error(error),
        content=error.to_dict(),
        headers=headers,
    )


def install_error_handlers(app: FastAPI) -> None:
    """Register a handler turning AuthzError subclasses into JSON responses."""

    @app.exception_handler(AuthzError)
    async def _handle_authz_error(request: Request, exc: AuthzError):
        logger.info(f"{request.method} {request.url.path} -> {exc.code}: {exc.message}")
        return error_response(exc)


# ============================================================================
# Guard Dependency
# ============================================================================

def require_action(
    action: ActionKind,
    context_provider: ContextProvider,
    authorizer: Optional[ModerationActionAuthorizer] = None,
) -> Callable[[Request], Allowed]:
    """
    Build a FastAPI dependency that authorizes an action for the request.

    Args:
        action: Action kind to gate
        context_provider: Builds the AuthorizationContext from the request
            (owner lookup, actor and target roles, actor timeout)
        authorizer: Shared authorizer (a fresh one by default)

    Returns:
        Dependency returning the Allowed decision

    Examples:
        >>> @app.put("/servers/{server_id}/members/{user_id}/timeout")
        >>> def timeout_member(
        >>>     decision: Allowed = Depends(require_action(ActionKind.TIMEOUT_APPLY, load_context)),
        >>> ):
        >>>     ...
    """
    authorizer = authorizer if authorizer is not None else ModerationActionAuthorizer()

    def dependency(request: Request) -> Allowed:
        context = context_provider(request)
        decision = authorizer.authorize(action, context)

        if not decision.allowed:
            logger.warning(
                f"Access denied: action={action.value} actor={context.actor_id} "
                f"target={context.target_id} route={request.url.path}"
            )
        return raise_for_decision(decision)

    return dependency
