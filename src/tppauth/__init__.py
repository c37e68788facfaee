"""tppauth — Open Banking (PSD2) relying-party authorization for Python."""

__version__ = "0.1.0"

from tppauth.config import AuthConfig, MTLSConfig
from tppauth.core.interface import ApiResponse, AuthorizedInterface, UnauthenticatedInterface
from tppauth.core.keys import SigningKey, generate_signing_key, load_signing_key
from tppauth.core.schemas import AuthorizationType, CallbackParams, IdTokenClaims, Tokens
from tppauth.core.session import Authorization, AuthorizationSession, AuthorizationStatus
from tppauth.errors import (
    ApiError,
    AuthenticationError,
    AuthenticationReason,
    AuthorizationNotFound,
    FailureKind,
    FetchError,
    FlowCancelled,
    KeyLoadError,
    KeyNotFound,
    NotAuthenticated,
    OAuthCallbackError,
    SignatureVerificationFailed,
    SigningError,
    StateMismatch,
    TokenEndpointError,
    TPPAuthError,
    classify_failure,
)
from tppauth.events import (
    AuthorizationCompleted,
    AuthorizationRemoved,
    AuthorizationStarted,
    CallbackRejected,
    TokenRefreshFailed,
    TokensRefreshed,
)
from tppauth.tppauth import TPPAuth

__all__ = [
    "ApiError",
    "ApiResponse",
    "AuthConfig",
    "AuthenticationError",
    "AuthenticationReason",
    "Authorization",
    "AuthorizationCompleted",
    "AuthorizationNotFound",
    "AuthorizationRemoved",
    "AuthorizationSession",
    "AuthorizationStarted",
    "AuthorizationStatus",
    "AuthorizationType",
    "AuthorizedInterface",
    "CallbackParams",
    "CallbackRejected",
    "FailureKind",
    "FetchError",
    "FlowCancelled",
    "IdTokenClaims",
    "KeyLoadError",
    "KeyNotFound",
    "MTLSConfig",
    "NotAuthenticated",
    "OAuthCallbackError",
    "SignatureVerificationFailed",
    "SigningError",
    "SigningKey",
    "StateMismatch",
    "TPPAuth",
    "TPPAuthError",
    "TokenEndpointError",
    "TokenRefreshFailed",
    "Tokens",
    "TokensRefreshed",
    "UnauthenticatedInterface",
    "classify_failure",
    "generate_signing_key",
    "load_signing_key",
]
