"""Tests for the domain interfaces bound to authorizations."""

import json

import httpx
import jwt
import pytest

from conftest import AIS_API_URL, PAYMENTS_JWKS_URL, PIS_API_URL, make_tokens
from tppauth.core.interface import AuthorizedInterface, UnauthenticatedInterface
from tppauth.core.jwks import KeyResolver
from tppauth.core.keys import KeySigner, serialize_body
from tppauth.core.response_signature import ResponseSignatureVerifier, attach_payload
from tppauth.errors import (
    ApiError,
    FailureKind,
    NotAuthenticated,
    SignatureVerificationFailed,
    classify_failure,
)

pytestmark = pytest.mark.asyncio

PAYMENT = {"instructedAmount": {"amount": "10.00", "currency": "EUR"}}


def _api_transport(jwks_response, respond):
    """JWKS requests get the key set; everything else goes to ``respond``."""
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == PAYMENTS_JWKS_URL:
            return httpx.Response(200, json=jwks_response)
        calls.append(request)
        return respond(request)

    return httpx.MockTransport(handler), calls


def _interface(transport, base_url=PIS_API_URL, *, signer=None, verify=True):
    verifier = None
    if verify:
        verifier = ResponseSignatureVerifier(KeyResolver(_transport=transport), jwks_uri=PAYMENTS_JWKS_URL)
    return AuthorizedInterface(
        base_url,
        make_tokens(access_token="user-token"),
        signer=signer,
        response_verifier=verifier,
        api_key="test-api-key",
        client_kwargs={"transport": transport},
    )


class TestUnauthenticatedInterface:
    async def test_every_call_fails(self):
        interface = UnauthenticatedInterface("token_expired")
        for call in (interface.get("/a"), interface.post("/a", {}), interface.put("/a")):
            with pytest.raises(NotAuthenticated) as exc_info:
                await call
            assert exc_info.value.reason == "token_expired"
            assert classify_failure(exc_info.value) is FailureKind.TOKEN_EXPIRED


class TestAuthorizedInterface:
    async def test_get_headers(self, jwks_response):
        transport, calls = _api_transport(
            jwks_response, lambda r: httpx.Response(200, json={"accounts": []}),
        )
        interface = _interface(transport, AIS_API_URL, verify=False)

        response = await interface.get("/accounts")

        assert response.status_code == 200
        assert response.data == {"accounts": []}
        assert response.signature_verified is False
        request = calls[0]
        assert str(request.url) == f"{AIS_API_URL}/accounts"
        assert request.headers["authorization"] == "Bearer user-token"
        assert request.headers["x-api-key"] == "test-api-key"
        for name in ("x-session-id", "x-idempotency-key", "x-request-id", "x-fapi-interaction-id"):
            assert request.headers[name]

    async def test_post_signs_body(self, jwks_response, bank_signer, rp_signing_key):
        def respond(request: httpx.Request) -> httpx.Response:
            body = b'{"paymentId":"p-1"}'
            return httpx.Response(
                201, content=body, headers={"x-jws-signature": bank_signer.sign_detached(body)},
            )

        transport, calls = _api_transport(jwks_response, respond)
        signer = KeySigner(rp_signing_key, "ES256")
        interface = _interface(transport, signer=signer)

        response = await interface.post("/payments", PAYMENT)

        assert response.status_code == 201
        assert response.data == {"paymentId": "p-1"}
        assert response.signature_verified is True

        request = calls[0]
        assert request.content == serialize_body(PAYMENT)
        token = attach_payload(request.headers["x-jws-signature"], request.content)
        signed = jwt.api_jws.decode(token, rp_signing_key.private_key.public_key(), algorithms=["ES256"])
        assert json.loads(signed) == PAYMENT

    async def test_unsigned_response_rejected(self, jwks_response):
        transport, _ = _api_transport(
            jwks_response, lambda r: httpx.Response(201, json={"paymentId": "p-1"}),
        )
        with pytest.raises(SignatureVerificationFailed):
            await _interface(transport).post("/payments", PAYMENT)

    async def test_tampered_response_rejected(self, jwks_response, bank_signer):
        def respond(request: httpx.Request) -> httpx.Response:
            signature = bank_signer.sign_detached(b'{"paymentId":"p-1"}')
            return httpx.Response(201, content=b'{"paymentId":"p-2"}', headers={"x-jws-signature": signature})

        transport, _ = _api_transport(jwks_response, respond)
        with pytest.raises(SignatureVerificationFailed):
            await _interface(transport).post("/payments", PAYMENT)

    async def test_verification_requested_without_verifier(self, jwks_response):
        transport, _ = _api_transport(jwks_response, lambda r: httpx.Response(200, json={}))
        with pytest.raises(SignatureVerificationFailed):
            await _interface(transport, verify=False).get("/payments/p-1", verify_signature=True)

    async def test_api_error_violation_message(self, jwks_response):
        transport, _ = _api_transport(
            jwks_response,
            lambda r: httpx.Response(400, json={"violations": [{"message": "Invalid IBAN"}]}),
        )
        with pytest.raises(ApiError) as exc_info:
            await _interface(transport).post("/payments", PAYMENT)
        assert exc_info.value.http_status == 400
        assert exc_info.value.message == "Invalid IBAN"

    async def test_api_error_unauthorized(self, jwks_response):
        transport, _ = _api_transport(
            jwks_response, lambda r: httpx.Response(401, json={"message": "Token expired"}),
        )
        with pytest.raises(ApiError) as exc_info:
            await _interface(transport, AIS_API_URL, verify=False).get("/accounts")
        assert exc_info.value.message == "Token expired"
        assert classify_failure(exc_info.value) is FailureKind.TOKEN_EXPIRED

    async def test_put_without_body(self, jwks_response):
        transport, calls = _api_transport(jwks_response, lambda r: httpx.Response(204))
        response = await _interface(transport, verify=False).put("/payments/p-1/cancel")
        assert response.status_code == 204
        assert response.data is None
        assert "x-jws-signature" not in calls[0].headers

    async def test_transport_failure_is_api_error(self, jwks_response):
        def respond(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        transport, _ = _api_transport(jwks_response, respond)
        with pytest.raises(ApiError) as exc_info:
            await _interface(transport, AIS_API_URL, verify=False).get("/accounts")

        assert exc_info.value.http_status is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)
        assert classify_failure(exc_info.value) is FailureKind.UPSTREAM_ERROR
