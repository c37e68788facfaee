"""FastAPI JWKS router — serves the relying party's public key at /.well-known/jwks.json."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from tppauth.tppauth import TPPAuth


def create_jwks_router(auth: TPPAuth) -> APIRouter:
    """Create a FastAPI router serving the JWKS endpoint.

    The identity provider and the payment API fetch this key set to verify
    request objects and detached request signatures. Mount at the root (no
    prefix) so the endpoint is at /.well-known/jwks.json.
    """
    router = APIRouter(tags=["jwks"])

    @router.get("/.well-known/jwks.json")
    async def jwks_endpoint():
        return JSONResponse(
            content=auth.get_jwks(),
            headers={
                "Cache-Control": "public, max-age=3600",
            },
        )

    return router
