"""FastAPI dependencies — factory functions that produce dependencies bound to a TPPAuth instance."""

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from tppauth.core.schemas import AuthorizationType, CallbackParams
from tppauth.core.session import Authorization, AuthorizationSession
from tppauth.errors import (
    ApiError,
    AuthenticationError,
    AuthorizationNotFound,
    NotAuthenticated,
    SignatureVerificationFailed,
    TokenEndpointError,
    TPPAuthError,
    classify_failure,
)
from tppauth.tppauth import TPPAuth


def error_detail(e: TPPAuthError) -> dict:
    """Build HTTPException detail dict from a TPPAuthError."""
    detail = {"error": e.code, "message": e.message, "kind": classify_failure(e).value}
    if e.extra:
        detail.update({k: v for k, v in e.extra.items() if v is not None})
    return detail


def error_status(e: TPPAuthError) -> int:
    """HTTP status to answer with when ``e`` ends a request."""
    if isinstance(e, (AuthenticationError, NotAuthenticated)):
        return 401
    if isinstance(e, AuthorizationNotFound):
        return 404
    if isinstance(e, (TokenEndpointError, ApiError, SignatureVerificationFailed)):
        return 502
    return 400


def callback_params(request: Request) -> CallbackParams:
    """Dependency: the OAuth callback parameters of the request's query string."""
    return CallbackParams.from_query(request.query_params)


def create_authorization_dep(
    auth: TPPAuth,
    get_session: Callable,
    authorization_type: AuthorizationType,
):
    """Factory: dependency returning the newest usable authorization of a kind.

    Tokens are refreshed and interfaces bound first, so the returned
    authorization's ``interface`` is ready for API calls.
    """

    async def require_authorization(
        session: AuthorizationSession = Depends(get_session),
    ) -> Authorization:
        await auth.bind_interfaces(session)
        for authorization in session.of_type(authorization_type):
            if authorization.is_usable():
                return authorization

        expired = any(a.tokens is not None for a in session.of_type(authorization_type))
        e = NotAuthenticated("token_expired" if expired else "not_authorized")
        raise HTTPException(status_code=401, detail=error_detail(e))

    return require_authorization
