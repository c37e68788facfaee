"""Domain interfaces bound to an authorization.

An authorization with usable tokens gets an :class:`AuthorizedInterface`, an
HTTP client for the account/payment API that adds the Open Banking request
headers, signs request bodies and verifies signed responses. Any other
authorization gets an :class:`UnauthenticatedInterface` that raises
:class:`~tppauth.errors.NotAuthenticated` on every call.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from tppauth.core.keys import KeySigner, serialize_body
from tppauth.core.response_signature import SIGNATURE_HEADER, ResponseSignatureVerifier
from tppauth.core.schemas import Tokens
from tppauth.errors import ApiError, NotAuthenticated, SignatureVerificationFailed

logger = logging.getLogger("tppauth.interface")


@dataclass(frozen=True, slots=True)
class ApiResponse:
    """A successful API response."""

    status_code: int
    data: Any
    signature_verified: bool


class DomainInterface(Protocol):
    async def get(self, path: str, *, verify_signature: bool = False) -> ApiResponse: ...

    async def post(self, path: str, body: dict[str, Any], *, verify_signature: bool = True) -> ApiResponse: ...

    async def put(self, path: str, body: dict[str, Any] | None = None, *, verify_signature: bool = False) -> ApiResponse: ...


class UnauthenticatedInterface:
    """Stand-in for authorizations without usable tokens."""

    def __init__(self, reason: str = "not_authorized") -> None:
        self.reason = reason

    async def get(self, path: str, *, verify_signature: bool = False) -> ApiResponse:
        raise NotAuthenticated(self.reason)

    async def post(self, path: str, body: dict[str, Any], *, verify_signature: bool = True) -> ApiResponse:
        raise NotAuthenticated(self.reason)

    async def put(self, path: str, body: dict[str, Any] | None = None, *, verify_signature: bool = False) -> ApiResponse:
        raise NotAuthenticated(self.reason)


class AuthorizedInterface:
    """API client acting on behalf of one authorization.

    Args:
        base_url: API base URL for the authorization's kind.
        tokens: The authorization's (fresh) tokens.
        signer: Signs request bodies into ``x-jws-signature``.
        response_verifier: Verifies signed responses; None disables verification.
        api_key: Sent as ``x-api-key`` when set.
        client_kwargs: Extra ``httpx.AsyncClient`` arguments (mTLS, timeout).
    """

    def __init__(
        self,
        base_url: str,
        tokens: Tokens,
        *,
        signer: KeySigner | None = None,
        response_verifier: ResponseSignatureVerifier | None = None,
        api_key: str | None = None,
        client_kwargs: dict[str, Any] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._tokens = tokens
        self._signer = signer
        self._response_verifier = response_verifier
        self._api_key = api_key
        self._client_kwargs = client_kwargs or {}

    def common_headers(self, session_id: str | None = None) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._tokens.access_token}",
            "Accept": "application/json",
            "x-session-id": session_id or str(uuid.uuid4()),
            "x-idempotency-key": str(uuid.uuid4()),
            "x-request-id": str(uuid.uuid4()),
            "x-fapi-interaction-id": str(uuid.uuid4()),
        }
        if self._api_key:
            headers["x-api-key"] = self._api_key
        return headers

    async def get(self, path: str, *, verify_signature: bool = False) -> ApiResponse:
        return await self._send("GET", path, None, verify_signature)

    async def post(self, path: str, body: dict[str, Any], *, verify_signature: bool = True) -> ApiResponse:
        return await self._send("POST", path, body, verify_signature)

    async def put(self, path: str, body: dict[str, Any] | None = None, *, verify_signature: bool = False) -> ApiResponse:
        return await self._send("PUT", path, body, verify_signature)

    async def _send(
        self, method: str, path: str, body: dict[str, Any] | None, verify_signature: bool,
    ) -> ApiResponse:
        headers = self.common_headers()
        content: bytes | None = None
        if body is not None:
            content = serialize_body(body)
            headers["Content-Type"] = "application/json"
            if self._signer is not None:
                headers[SIGNATURE_HEADER] = self._signer.sign_detached(content)

        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            async with httpx.AsyncClient(**self._client_kwargs) as client:
                response = await client.request(method, url, content=content, headers=headers)
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, url, e)
            raise ApiError(None, {"message": f"Could not reach {url}"}) from e

        raw = response.content
        if not response.is_success:
            logger.error("%s %s failed with HTTP %d", method, url, response.status_code)
            raise ApiError(response.status_code, _parse_json(raw))

        verified = False
        if verify_signature:
            if self._response_verifier is None:
                raise SignatureVerificationFailed("No response signature verifier configured")
            verified = await self._response_verifier.verify(response.headers.get(SIGNATURE_HEADER), raw)
            if not verified:
                logger.error("Response signature verification failed for %s %s", method, url)
                raise SignatureVerificationFailed()
        return ApiResponse(status_code=response.status_code, data=_parse_json(raw), signature_verified=verified)


def _parse_json(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return raw.decode("utf-8", errors="replace")
