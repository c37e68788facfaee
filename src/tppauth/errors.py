"""Error taxonomy for tppauth.

Every failure raised by the core carries a human-readable ``message`` and a
machine-readable ``code``. The view layer uses :func:`classify_failure` to
decide which recovery guidance to show (re-authenticate, token expired,
authorization revoked).
"""

from __future__ import annotations

import enum
import json
from typing import Any


class TPPAuthError(Exception):
    """Base error with an error code."""

    def __init__(self, message: str, code: str, **extra: Any):
        self.message = message
        self.code = code
        self.extra = extra
        super().__init__(message)


# ---------------------------------------------------------------------------
# Signing
# ---------------------------------------------------------------------------


class KeyLoadError(TPPAuthError):
    """The relying party's private key could not be loaded. Fatal at startup."""

    def __init__(self, message: str):
        super().__init__(message, code="key_load_failed")


class SigningError(TPPAuthError):
    """Claims could not be signed (malformed claims, key/algorithm mismatch)."""

    def __init__(self, message: str):
        super().__init__(message, code="signing_failed")


# ---------------------------------------------------------------------------
# Key resolution
# ---------------------------------------------------------------------------


class KeyNotFound(TPPAuthError):
    """The requested kid is not in the remote key set, even after a fresh fetch."""

    def __init__(self, jwks_uri: str, kid: str):
        self.jwks_uri = jwks_uri
        self.kid = kid
        super().__init__(f"Key {kid!r} not found in {jwks_uri}", code="key_not_found")


class FetchError(TPPAuthError):
    """The JWKS endpoint was unreachable or returned something other than a key set."""

    def __init__(self, jwks_uri: str, reason: str):
        self.jwks_uri = jwks_uri
        super().__init__(f"Failed to fetch JWKS from {jwks_uri}: {reason}", code="jwks_fetch_failed")


# ---------------------------------------------------------------------------
# ID token verification
# ---------------------------------------------------------------------------


class AuthenticationReason(str, enum.Enum):
    BAD_SIGNATURE = "BadSignature"
    ISSUER_MISMATCH = "IssuerMismatch"
    AUDIENCE_MISMATCH = "AudienceMismatch"
    EXPIRED = "Expired"
    NONCE_MISMATCH = "NonceMismatch"
    HASH_MISMATCH = "HashMismatch"


class AuthenticationError(TPPAuthError):
    """ID token verification failed. Never retried: the flow must restart."""

    def __init__(self, message: str, reason: AuthenticationReason):
        self.reason = reason
        super().__init__(message, code="authentication_failed", reason=reason.value)


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


class TokenEndpointError(TPPAuthError):
    """A token grant failed. ``http_status`` is None for transport failures."""

    def __init__(self, message: str, *, http_status: int | None, body: str = ""):
        self.http_status = http_status
        self.body = body
        super().__init__(message, code="token_endpoint_error", http_status=http_status)

    @property
    def oauth_error(self) -> str | None:
        """The OAuth ``error`` field of the response body, if it was JSON."""
        try:
            data = json.loads(self.body)
        except (TypeError, ValueError):
            return None
        if isinstance(data, dict) and isinstance(data.get("error"), str):
            return data["error"]
        return None


# ---------------------------------------------------------------------------
# Callback / session
# ---------------------------------------------------------------------------

KNOWN_OAUTH_ERRORS = frozenset({"access_denied", "server_error"})


class OAuthCallbackError(TPPAuthError):
    """The identity provider redirected back with ``error``/``error_description``."""

    def __init__(self, error: str, description: str | None = None):
        self.error = error
        self.description = description
        super().__init__(description or error, code=error)

    @property
    def known(self) -> bool:
        return self.error in KNOWN_OAUTH_ERRORS


class StateMismatch(TPPAuthError):
    """Callback ``state`` does not match the current authorization."""

    def __init__(self, message: str = "OAuth states do not match"):
        super().__init__(message, code="state_mismatch")


class FlowCancelled(TPPAuthError):
    """Callback carried a valid state but no authorization code."""

    def __init__(self, message: str = "Authentication flow cancelled"):
        super().__init__(message, code="flow_cancelled")


class AuthorizationNotFound(TPPAuthError):
    def __init__(self, authorization_id: str):
        self.authorization_id = authorization_id
        super().__init__(f"No authorization {authorization_id!r} in session", code="authorization_not_found")


class NotAuthenticated(TPPAuthError):
    """A domain call was attempted on an authorization without usable tokens."""

    def __init__(self, reason: str = "not_authorized"):
        self.reason = reason
        super().__init__("User not authenticated", code="not_authenticated", reason=reason)


# ---------------------------------------------------------------------------
# Domain calls
# ---------------------------------------------------------------------------


class SignatureVerificationFailed(TPPAuthError):
    """A signed API response could not be verified; its data must not be used."""

    def __init__(self, message: str = "Response signature validation failed."):
        super().__init__(message, code="signature_verification_failed")


class ApiError(TPPAuthError):
    """An account/payment API call returned a non-2xx status or could not be sent.

    ``http_status`` is None when no response was received.
    """

    def __init__(self, http_status: int | None, body: Any):
        self.http_status = http_status
        self.body = body
        super().__init__(_describe_api_error(body), code="api_error", http_status=http_status)


def _describe_api_error(body: Any) -> str:
    if isinstance(body, dict):
        violations = body.get("violations")
        if isinstance(violations, list) and violations and isinstance(violations[0], dict):
            return str(violations[0].get("message", "Unexpected error occurred"))
        if body.get("message"):
            return str(body["message"])
    return "Unexpected error occurred"


# ---------------------------------------------------------------------------
# Classification for the view layer
# ---------------------------------------------------------------------------


class FailureKind(str, enum.Enum):
    AUTHENTICATION_ERROR = "authentication_error"
    TOKEN_EXPIRED = "token_expired"
    AUTHORIZATION_REVOKED = "authorization_revoked"
    UPSTREAM_ERROR = "upstream_error"


def classify_failure(exc: BaseException) -> FailureKind:
    """Map an error to the recovery guidance the user should see."""
    if isinstance(exc, AuthenticationError):
        if exc.reason is AuthenticationReason.EXPIRED:
            return FailureKind.TOKEN_EXPIRED
        return FailureKind.AUTHENTICATION_ERROR
    if isinstance(exc, NotAuthenticated):
        if exc.reason == "token_expired":
            return FailureKind.TOKEN_EXPIRED
        return FailureKind.AUTHENTICATION_ERROR
    if isinstance(exc, TokenEndpointError):
        if exc.oauth_error == "invalid_grant":
            return FailureKind.AUTHORIZATION_REVOKED
        return FailureKind.UPSTREAM_ERROR
    if isinstance(exc, AuthorizationNotFound):
        return FailureKind.AUTHORIZATION_REVOKED
    if isinstance(exc, ApiError) and exc.http_status == 401:
        return FailureKind.TOKEN_EXPIRED
    if isinstance(exc, (StateMismatch, FlowCancelled, OAuthCallbackError, SignatureVerificationFailed)):
        return FailureKind.AUTHENTICATION_ERROR
    return FailureKind.UPSTREAM_ERROR
