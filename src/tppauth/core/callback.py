"""OAuth callback validation — the checks shared by every authorization kind.

Framework-agnostic. Called by :class:`~tppauth.tppauth.TPPAuth` before the
code is exchanged for tokens.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tppauth.core.id_token import IdTokenVerifier
from tppauth.core.schemas import CallbackParams, IdTokenClaims
from tppauth.core.session import Authorization, AuthorizationSession
from tppauth.errors import FlowCancelled, OAuthCallbackError, StateMismatch

logger = logging.getLogger("tppauth.callback")


@dataclass(frozen=True, slots=True)
class VerifiedCallback:
    """A callback whose state and (if present) ID token checked out."""

    authorization: Authorization
    code: str
    oauth_state: str
    claims: IdTokenClaims | None = None


async def verify_callback(
    session: AuthorizationSession,
    params: CallbackParams,
    verifier: IdTokenVerifier,
) -> VerifiedCallback | None:
    """Validate the callback against the current authorization.

    Nothing in the session is modified; the caller commits state only after
    the token exchange has also succeeded.

    Returns:
        None when the callback has no parameters at all (the response was
        returned in the URL fragment and must be relayed by the browser),
        otherwise the verified callback.

    Raises:
        OAuthCallbackError: The identity provider returned ``error``.
        StateMismatch: No current authorization or its state differs.
        AuthenticationError: The ID token failed verification.
        FlowCancelled: State matched but there was no code.
    """
    if params.error is not None:
        logger.info("OAuth callback returned error %s", params.error)
        raise OAuthCallbackError(params.error, params.error_description)

    if params.is_empty:
        return None

    current = session.current()
    if current is None or not current.oauth_state or params.state != current.oauth_state:
        logger.warning("OAuth state did not match the current authorization")
        raise StateMismatch()

    claims: IdTokenClaims | None = None
    if params.id_token:
        claims = await verifier.verify(
            params.id_token,
            nonce=current.nonce,
            code=params.code,
            state=current.oauth_state,
        )
    else:
        logger.info("There was no id_token in the query")

    if params.code is None:
        raise FlowCancelled()

    return VerifiedCallback(
        authorization=current,
        code=params.code,
        oauth_state=current.oauth_state,
        claims=claims,
    )
