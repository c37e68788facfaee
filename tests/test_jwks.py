"""Tests for the JWKS resolver — caching, kid-miss refetch, and error handling."""

import logging

import httpx
import pytest

from conftest import BANK_KID, IDP_KID, JWKS_URL, PAYMENTS_JWKS_URL
from tppauth.core.jwks import KeyResolver
from tppauth.errors import FetchError, KeyNotFound

pytestmark = pytest.mark.asyncio


def _make_mock_transport(jwks_response: dict, *, status_code: int = 200):
    """Create an httpx MockTransport that returns the given JWKS response."""
    call_count = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        call_count["n"] += 1
        return httpx.Response(status_code, json=jwks_response)

    return httpx.MockTransport(handler), call_count


class TestKeyResolver:
    async def test_fetch_and_cache_keys(self, jwks_response):
        transport, call_count = _make_mock_transport(jwks_response)
        resolver = KeyResolver(_transport=transport)

        key = await resolver.resolve_key(JWKS_URL, IDP_KID)
        assert key.key_id == IDP_KID
        assert call_count["n"] == 1

    async def test_cache_prevents_refetch(self, jwks_response):
        transport, call_count = _make_mock_transport(jwks_response)
        resolver = KeyResolver(cache_ttl=3600, _transport=transport)

        await resolver.resolve_key(JWKS_URL, IDP_KID)
        await resolver.resolve_key(JWKS_URL, BANK_KID)
        await resolver.resolve_key(JWKS_URL, IDP_KID)
        assert call_count["n"] == 1

    async def test_cache_is_per_uri(self, jwks_response):
        transport, call_count = _make_mock_transport(jwks_response)
        resolver = KeyResolver(_transport=transport)

        await resolver.resolve_key(JWKS_URL, IDP_KID)
        await resolver.resolve_key(PAYMENTS_JWKS_URL, BANK_KID)
        assert call_count["n"] == 2

    async def test_stale_cache_refetches(self, jwks_response):
        transport, call_count = _make_mock_transport(jwks_response)
        resolver = KeyResolver(cache_ttl=0, _transport=transport)

        await resolver.resolve_key(JWKS_URL, IDP_KID)
        await resolver.resolve_key(JWKS_URL, IDP_KID)
        assert call_count["n"] == 2

    async def test_unknown_kid_fetches_once_then_fails(self, jwks_response):
        transport, call_count = _make_mock_transport(jwks_response)
        resolver = KeyResolver(_transport=transport)

        await resolver.resolve_key(JWKS_URL, IDP_KID)
        with pytest.raises(KeyNotFound) as exc_info:
            await resolver.resolve_key(JWKS_URL, "rotated-key")
        assert call_count["n"] == 2
        assert exc_info.value.kid == "rotated-key"

    async def test_rotated_key_found_after_refetch(self, jwks_response, idp_jwk):
        responses = [{"keys": []}, jwks_response]

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=responses.pop(0))

        resolver = KeyResolver(_transport=httpx.MockTransport(handler))
        with pytest.raises(KeyNotFound):
            await resolver.resolve_key(JWKS_URL, IDP_KID)

        key = await resolver.resolve_key(JWKS_URL, IDP_KID)
        assert key.key_id == IDP_KID

    async def test_invalidate(self, jwks_response):
        transport, call_count = _make_mock_transport(jwks_response)
        resolver = KeyResolver(_transport=transport)

        await resolver.resolve_key(JWKS_URL, IDP_KID)
        resolver.invalidate(JWKS_URL)
        await resolver.resolve_key(JWKS_URL, IDP_KID)
        resolver.invalidate()
        await resolver.resolve_key(JWKS_URL, IDP_KID)
        assert call_count["n"] == 3

    async def test_fetch_failure_logged(self, caplog):
        def error_handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        resolver = KeyResolver(_transport=httpx.MockTransport(error_handler))

        with caplog.at_level(logging.ERROR, logger="tppauth.jwks"):
            with pytest.raises(FetchError):
                await resolver.resolve_key(JWKS_URL, IDP_KID)
        assert "Failed to fetch JWKS" in caplog.text

    async def test_http_error_status(self):
        transport, _ = _make_mock_transport({"message": "down"}, status_code=503)
        resolver = KeyResolver(_transport=transport)

        with pytest.raises(FetchError):
            await resolver.resolve_key(JWKS_URL, IDP_KID)

    async def test_invalid_json(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"<html>")

        resolver = KeyResolver(_transport=httpx.MockTransport(handler))
        with pytest.raises(FetchError, match="not valid JSON"):
            await resolver.resolve_key(JWKS_URL, IDP_KID)

    async def test_not_a_key_set(self):
        transport, _ = _make_mock_transport({"issuer": "x"})
        resolver = KeyResolver(_transport=transport)

        with pytest.raises(FetchError, match="not a JWK set"):
            await resolver.resolve_key(JWKS_URL, IDP_KID)

    async def test_malformed_jwk_skipped(self, jwks_response):
        jwks_with_bad_key = {"keys": [{"kty": "invalid", "kid": "bad-key"}, *jwks_response["keys"]]}
        transport, _ = _make_mock_transport(jwks_with_bad_key)
        resolver = KeyResolver(_transport=transport)

        assert (await resolver.resolve_key(JWKS_URL, IDP_KID)).key_id == IDP_KID
        with pytest.raises(KeyNotFound):
            await resolver.resolve_key(JWKS_URL, "bad-key")
