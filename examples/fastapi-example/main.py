"""Example relying-party app using tppauth.

This is a minimal third-party provider that:
  - Creates account authorizations with a client credentials token
  - Redirects the user to the bank for strong customer authentication
  - Handles the OAuth callback and keeps tokens in a per-browser session
  - Calls the account and payment APIs with signed requests
  - Serves its public signing key at /.well-known/jwks.json

Run:  uvicorn main:app --reload --port 8080
"""

import os
import secrets
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from tppauth import (
    AuthConfig,
    Authorization,
    AuthorizationSession,
    AuthorizationType,
    MTLSConfig,
    TPPAuth,
    TPPAuthError,
    generate_signing_key,
    load_signing_key,
)
from tppauth.integrations.fastapi import (
    create_authorization_dep,
    create_jwks_router,
    create_oauth_router,
    error_detail,
)

SESSION_COOKIE = "tpp_session"
BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:8080")

mtls = None
if os.environ.get("MTLS_CERT_FILE"):
    mtls = MTLSConfig(
        cert_file=os.environ["MTLS_CERT_FILE"],
        key_file=os.environ["MTLS_KEY_FILE"],
        key_password=os.environ.get("MTLS_KEY_PASSWORD"),
    )

config = AuthConfig(
    client_id=os.environ.get("CLIENT_ID", "sandbox-client"),
    client_secret=os.environ.get("CLIENT_SECRET", ""),
    authorize_url=os.environ.get("AUTHORIZE_URL", "https://auth.bank.example/oauth/authorize"),
    token_url=os.environ.get("TOKEN_URL", "https://mtls.bank.example/oauth/token"),
    jwks_url=os.environ.get("JWKS_URL", "https://auth.bank.example/.well-known/jwks.json"),
    payments_jwks_url=os.environ.get("PAYMENTS_JWKS_URL"),
    ais_api_url=os.environ.get("PSD2_AIS_API_URL"),
    pis_api_url=os.environ.get("PSD2_PIS_API_URL"),
    accounts_redirect_uri=f"{BASE_URL}/oauth/accounts/callback",
    payments_redirect_uri=f"{BASE_URL}/oauth/payments/callback",
    cof_redirect_uri=f"{BASE_URL}/oauth/fundsconfirmations/callback",
    api_key=os.environ.get("API_KEY"),
    signing_algorithm=os.environ.get("SIGNING_ALGORITHM", "ES256"),
    mtls=mtls,
)

# Production keys come from a PEM file; sandbox runs get a throwaway key.
key_file = os.environ.get("SIGNING_KEY_FILE")
if key_file:
    with open(key_file, "rb") as f:
        signing_key = load_signing_key(
            f.read(),
            passphrase=os.environ.get("SIGNING_KEY_PASSPHRASE"),
            kid=os.environ.get("SIGNING_KEY_ID"),
        )
else:
    signing_key = generate_signing_key(config.signing_algorithm)

auth = TPPAuth(config, signing_key)

app = FastAPI(title="tppauth Example TPP")


# ---------------------------------------------------------------------------
# Sessions: in memory for the demo. Persist AuthorizationSession.to_dict()
# in a real session store.
# ---------------------------------------------------------------------------

sessions: dict[str, AuthorizationSession] = {}


@app.middleware("http")
async def session_cookie(request: Request, call_next):
    session_id = request.cookies.get(SESSION_COOKIE)
    if session_id not in sessions:
        session_id = secrets.token_urlsafe(24)
        sessions[session_id] = AuthorizationSession()
    request.state.session_id = session_id
    response = await call_next(request)
    response.set_cookie(SESSION_COOKIE, session_id, httponly=True, samesite="lax")
    return response


def get_session(request: Request) -> AuthorizationSession:
    return sessions[request.state.session_id]


# ---------------------------------------------------------------------------
# Event hooks for audit logs or analytics.
# Hooks fire AFTER the session is updated. Errors are logged, never propagate.
# ---------------------------------------------------------------------------


@auth.on("authorization_started")
async def on_authorization_started(event):
    print(f"[hook] Authorization started: {event.authorization_id} ({event.authorization_type})")


@auth.on("authorization_completed")
async def on_authorization_completed(event):
    print(f"[hook] Authorization completed: {event.authorization_id} scope={event.scope}")


@auth.on("callback_rejected")
async def on_callback_rejected(event):
    print(f"[hook] Callback rejected: {event.authorization_id} reason: {event.code}")


@auth.on("token_refresh_failed")
async def on_token_refresh_failed(event):
    print(f"[hook] Token refresh failed: {event.authorization_id}")


# ---------------------------------------------------------------------------
# Mount routers
# ---------------------------------------------------------------------------

# OAuth router: /oauth/{type}/authorize, /oauth/{type}/callback,
#               /oauth/authorizations/{authorization_id}
app.include_router(create_oauth_router(
    auth,
    get_session,
    success_redirects={
        AuthorizationType.ACCOUNTS: "/accounts",
        AuthorizationType.PAYMENTS: "/payments",
    },
))

# JWKS endpoint at root. The bank verifies our request objects with it.
app.include_router(create_jwks_router(auth))

require_accounts = create_authorization_dep(auth, get_session, AuthorizationType.ACCOUNTS)
require_payments = create_authorization_dep(auth, get_session, AuthorizationType.PAYMENTS)


# ---------------------------------------------------------------------------
# App routes
# ---------------------------------------------------------------------------


@app.get("/")
async def root(session: Annotated[AuthorizationSession, Depends(get_session)]):
    return {
        "message": "tppauth example TPP",
        "authorizations": [
            {
                "authorization_id": a.authorization_id,
                "authorization_type": a.authorization_type.value,
                "status": a.status().value,
            }
            for a in session
        ],
    }


class AccountAuthorizationRequest(BaseModel):
    authorization_days: int | None = 90
    transaction_from: str | None = None
    transaction_to: str | None = None


@app.post("/accounts/authorize")
async def authorize_accounts(data: AccountAuthorizationRequest):
    """Create an authorization ID, then send the user to the bank."""
    try:
        authorization_id = await auth.create_authorization_id(
            authorization_days=data.authorization_days,
            transaction_from=data.transaction_from,
            transaction_to=data.transaction_to,
        )
    except TPPAuthError as e:
        raise HTTPException(status_code=502, detail=error_detail(e))
    return RedirectResponse(
        url=f"/oauth/accounts/authorize?authorization_id={authorization_id}",
        status_code=303,
    )


@app.get("/accounts")
async def accounts(authorization: Annotated[Authorization, Depends(require_accounts)]):
    """Protected route — requires an active accounts authorization."""
    try:
        response = await authorization.require_interface().get("/accounts")
    except TPPAuthError as e:
        raise HTTPException(status_code=502, detail=error_detail(e))
    return response.data


@app.get("/payments")
async def payments(authorization: Annotated[Authorization, Depends(require_payments)]):
    """Protected route — requires an active payments authorization."""
    return {"authorization_id": authorization.authorization_id}


@app.get("/payments/{payment_id}")
async def payment_status(
    payment_id: str,
    authorization: Annotated[Authorization, Depends(require_payments)],
):
    """Payment status — the bank's response signature is verified."""
    try:
        response = await authorization.require_interface().get(
            f"/payments/{payment_id}", verify_signature=True,
        )
    except TPPAuthError as e:
        raise HTTPException(status_code=502, detail=error_detail(e))
    return response.data


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8080, reload=True)
