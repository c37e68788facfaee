"""Test fixtures for tppauth tests.

All tests are network-free — they generate keys, create ID tokens manually,
and mock the JWKS, token and API endpoints using httpx MockTransport.
"""

import json
import uuid
from datetime import UTC, datetime, timedelta

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

from tppauth.config import AuthConfig
from tppauth.core.id_token import left_half_hash
from tppauth.core.keys import KeySigner, generate_signing_key
from tppauth.core.schemas import Tokens

pytestmark = pytest.mark.asyncio

ISSUER = "https://auth.bank.example"
AUTHORIZE_URL = f"{ISSUER}/oauth/authorize"
JWKS_URL = f"{ISSUER}/.well-known/jwks.json"
TOKEN_URL = "https://mtls.bank.example/oauth/token"
PAYMENTS_JWKS_URL = "https://psd2.bank.example/.well-known/jwks.json"
AIS_API_URL = "https://psd2.bank.example/v1/ais"
PIS_API_URL = "https://psd2.bank.example/v1/pis"
CLIENT_ID = "tpp-client-id"
IDP_KID = "idp-key-1"
BANK_KID = "bank-sig-1"


@pytest.fixture
def idp_private_key():
    """RSA key of the identity provider that signs ID tokens."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def idp_jwk(idp_private_key):
    jwk = json.loads(RSAAlgorithm.to_jwk(idp_private_key.public_key()))
    jwk.update({"kid": IDP_KID, "use": "sig", "alg": "RS256"})
    return jwk


@pytest.fixture
def bank_signer():
    """Signer standing in for the payment API that signs its responses."""
    return KeySigner(generate_signing_key("ES256", kid=BANK_KID), "ES256")


@pytest.fixture
def jwks_response(idp_jwk, bank_signer):
    """A JWKS response body with the ID token key and the response signing key."""
    return {"keys": [idp_jwk, bank_signer.public_jwk()]}


@pytest.fixture
def rp_signing_key():
    """The relying party's own key."""
    return generate_signing_key("ES256", kid=f"tpp-key-{uuid.uuid4().hex[:8]}")


@pytest.fixture
def config():
    return AuthConfig(
        client_id=CLIENT_ID,
        client_secret="tpp-client-secret",
        authorize_url=AUTHORIZE_URL,
        token_url=TOKEN_URL,
        jwks_url=JWKS_URL,
        accounts_redirect_uri="https://tpp.example/accounts/oauth/callback",
        payments_redirect_uri="https://tpp.example/payments/oauth/callback",
        cof_redirect_uri="https://tpp.example/cof/oauth/callback",
        payments_jwks_url=PAYMENTS_JWKS_URL,
        ais_api_url=AIS_API_URL,
        pis_api_url=PIS_API_URL,
        api_key="test-api-key",
    )


def create_id_token(
    private_key,
    *,
    kid: str = IDP_KID,
    issuer: str = ISSUER,
    audience: str = CLIENT_ID,
    nonce: str | None = None,
    code: str | None = None,
    state: str | None = None,
    access_token: str | None = None,
    refresh_token: str | None = None,
    expires_in: int = 300,
    authorization_id: str = "auth-123",
    algorithm: str = "RS256",
) -> str:
    """Create an ID token as the identity provider would, with optional hash bindings."""
    now = datetime.now(UTC)
    payload = {
        "sub": "user-1",
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + timedelta(seconds=expires_in),
        "acr": "urn:openbanking:psd2:sca",
        "authorizationId": authorization_id,
    }
    if nonce is not None:
        payload["nonce"] = nonce
    if code is not None:
        payload["c_hash"] = left_half_hash(code)
    if state is not None:
        payload["s_hash"] = left_half_hash(state)
    if access_token is not None:
        payload["at_hash"] = left_half_hash(access_token)
    if refresh_token is not None:
        payload["rt_hash"] = left_half_hash(refresh_token)
    headers = {"kid": kid} if kid else None
    return jwt.encode(payload, private_key, algorithm=algorithm, headers=headers)


def make_tokens(
    *,
    access_token: str = "access-1",
    refresh_token: str = "refresh-1",
    expires_in: int = 3600,
    received_at: datetime | None = None,
) -> Tokens:
    return Tokens.from_response(
        {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": "Bearer",
            "scope": "accounts",
            "expires_in": expires_in,
        },
        received_at=received_at,
    )


def expired_tokens() -> Tokens:
    return make_tokens(received_at=datetime.now(UTC) - timedelta(hours=2))


def json_transport(routes: dict):
    """MockTransport answering by URL (without query). Records every request.

    Route values are ``(status, body)`` pairs, or lists of them consumed one
    per call (the last one repeats). A dict body is sent as JSON, anything
    else as raw content.
    """
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        url = str(request.url.copy_with(query=None))
        route = routes.get(url)
        if route is None:
            return httpx.Response(404, json={"message": f"no route for {url}"})
        if isinstance(route, list):
            route = route.pop(0) if len(route) > 1 else route[0]
        status, body = route
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, content=body)

    return httpx.MockTransport(handler), calls
