"""FastAPI integration for tppauth."""

from tppauth.integrations.fastapi.deps import callback_params, create_authorization_dep, error_detail
from tppauth.integrations.fastapi.jwks_router import create_jwks_router
from tppauth.integrations.fastapi.oauth_router import create_oauth_router

__all__ = [
    "callback_params",
    "create_authorization_dep",
    "create_jwks_router",
    "create_oauth_router",
    "error_detail",
]
