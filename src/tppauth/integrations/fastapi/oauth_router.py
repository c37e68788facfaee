"""FastAPI OAuth router — authorize, callback and logout endpoints per authorization kind."""

from collections.abc import Callable
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse, RedirectResponse

from tppauth.core.schemas import AuthorizationType, CallbackParams
from tppauth.core.session import AuthorizationSession
from tppauth.errors import TPPAuthError
from tppauth.integrations.fastapi.deps import callback_params, error_detail, error_status
from tppauth.tppauth import TPPAuth

# The hybrid flow may answer in the URL fragment, which never reaches the
# server. This page re-issues the request with the fragment as query string.
FRAGMENT_RELAY_HTML = (
    "<!DOCTYPE html><html><body><script>"
    "if (window.location.hash.length > 1) {"
    "window.location.replace(window.location.pathname + '?' + window.location.hash.substring(1));"
    "}"
    "</script></body></html>"
)


def create_oauth_router(
    auth: TPPAuth,
    get_session: Callable,
    *,
    success_redirects: dict[AuthorizationType, str] | None = None,
) -> APIRouter:
    """Create a FastAPI router with OAuth endpoints for each authorization kind.

    ``get_session`` is a dependency returning the user's
    :class:`AuthorizationSession`; persisting it between requests is up to
    the application.

    Registers:
        GET    /oauth/{authorization_type}/authorize
        GET    /oauth/{authorization_type}/callback
        DELETE /oauth/authorizations/{authorization_id}
    """
    router = APIRouter(tags=["oauth"])
    redirects = success_redirects or {}

    @router.get("/oauth/{authorization_type}/authorize")
    async def oauth_authorize(
        authorization_type: AuthorizationType,
        authorization_id: str,
        session: Annotated[AuthorizationSession, Depends(get_session)],
        exemption: bool = False,
    ):
        """Start a flow for an authorization ID created beforehand with the API."""
        try:
            url = await auth.start_authorization(
                session, authorization_id, authorization_type, exemption=exemption,
            )
        except ValueError as e:
            raise HTTPException(
                status_code=400,
                detail={"error": "invalid_request", "message": str(e)},
            )
        return RedirectResponse(url=url, status_code=302)

    @router.get("/oauth/{authorization_type}/callback", name="oauth_callback")
    async def oauth_callback(
        authorization_type: AuthorizationType,
        session: Annotated[AuthorizationSession, Depends(get_session)],
        params: Annotated[CallbackParams, Depends(callback_params)],
    ):
        """OAuth callback — verifies state and ID token, exchanges the code and stores tokens."""
        try:
            authorization = await auth.handle_callback(session, params)
        except TPPAuthError as e:
            raise HTTPException(status_code=error_status(e), detail=error_detail(e))

        if authorization is None:
            return HTMLResponse(content=FRAGMENT_RELAY_HTML)

        target = redirects.get(authorization.authorization_type)
        if target:
            return RedirectResponse(url=target, status_code=302)
        return {
            "authorization_id": authorization.authorization_id,
            "authorization_type": authorization.authorization_type.value,
            "scope": authorization.tokens.scope if authorization.tokens else "",
        }

    @router.delete("/oauth/authorizations/{authorization_id}", status_code=204)
    async def remove_authorization(
        authorization_id: str,
        session: Annotated[AuthorizationSession, Depends(get_session)],
    ):
        if not await auth.remove_authorization(session, authorization_id):
            raise HTTPException(
                status_code=404,
                detail={"error": "authorization_not_found", "message": f"No authorization {authorization_id!r}"},
            )

    return router
