"""Token endpoint client — client_credentials, authorization_code and refresh_token grants.

Every call is a single form-encoded POST over the mutually authenticated TLS
channel. Failures raise :class:`~tppauth.errors.TokenEndpointError`; retrying
is the caller's decision.
"""

from __future__ import annotations

import logging
import ssl
import uuid
from pathlib import Path
from typing import Any

import httpx

from tppauth.config import AuthConfig, MTLSConfig
from tppauth.core.schemas import Tokens
from tppauth.errors import TokenEndpointError

logger = logging.getLogger("tppauth.token_client")


def create_ssl_context(config: MTLSConfig) -> ssl.SSLContext:
    """Client-side SSL context presenting the configured certificate."""
    cert_path = Path(config.cert_file)
    key_path = Path(config.key_file)
    if not cert_path.exists():
        raise FileNotFoundError(f"Certificate file not found: {cert_path}")
    if not key_path.exists():
        raise FileNotFoundError(f"Key file not found: {key_path}")

    ctx = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    ctx.load_cert_chain(
        certfile=str(cert_path),
        keyfile=str(key_path),
        password=config.key_password,
    )
    if config.ca_certs:
        ca_path = Path(config.ca_certs)
        if not ca_path.exists():
            raise FileNotFoundError(f"CA certs file not found: {ca_path}")
        ctx.load_verify_locations(cafile=str(ca_path))
    return ctx


def request_id_headers() -> dict[str, str]:
    """A fresh request/session/idempotency id triple."""
    return {
        "x-request-id": str(uuid.uuid4()),
        "x-session-id": str(uuid.uuid4()),
        "x-idempotency-key": str(uuid.uuid4()),
    }


class TokenClient:
    """Stateless client for the bank's OAuth token endpoint.

    Args:
        config: Endpoint, client credentials, API key, mTLS and timeout settings.
    """

    def __init__(
        self,
        config: AuthConfig,
        *,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = _transport
        self._ssl_context: ssl.SSLContext | None = None

    def client_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for an ``httpx.AsyncClient`` on the mTLS channel."""
        kwargs: dict[str, Any] = {"timeout": self._config.token_timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        elif self._config.mtls is not None:
            if self._ssl_context is None:
                self._ssl_context = create_ssl_context(self._config.mtls)
            kwargs["verify"] = self._ssl_context
        return kwargs

    def _headers(self) -> dict[str, str]:
        headers = {
            **request_id_headers(),
            "Accept": "application/json",
        }
        if self._config.api_key:
            headers["x-api-key"] = self._config.api_key
        return headers

    async def _request_tokens(self, form: dict[str, str]) -> dict[str, Any]:
        grant_type = form["grant_type"]
        data = {
            **form,
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
        }
        logger.info("Request %s tokens from %s", grant_type, self._config.token_url)
        try:
            async with httpx.AsyncClient(**self.client_kwargs()) as client:
                response = await client.post(
                    self._config.token_url, data=data, headers=self._headers(),
                )
        except httpx.HTTPError as e:
            logger.error("Token request to %s failed: %s", self._config.token_url, e)
            raise TokenEndpointError(
                f"Token endpoint unreachable: {e}", http_status=None,
            ) from e

        if not response.is_success:
            logger.error("Failed to fetch tokens (%s): HTTP %d", grant_type, response.status_code)
            raise TokenEndpointError(
                f"Token endpoint returned HTTP {response.status_code}",
                http_status=response.status_code,
                body=response.text,
            )

        try:
            tokens = response.json()
        except ValueError as e:
            raise TokenEndpointError(
                "Token endpoint returned invalid JSON",
                http_status=response.status_code,
                body=response.text,
            ) from e
        if not isinstance(tokens, dict) or tokens.get("error") is not None:
            raise TokenEndpointError(
                f"Token endpoint returned an error: {tokens.get('error') if isinstance(tokens, dict) else tokens}",
                http_status=response.status_code,
                body=response.text,
            )
        return tokens

    def _to_tokens(self, data: dict[str, Any], fallback_refresh_token: str = "") -> Tokens:
        return Tokens.from_response(
            data,
            buffer_seconds=self._config.token_expiry_buffer_seconds,
            fallback_refresh_token=fallback_refresh_token,
        )

    async def client_credentials(self, scope: str = "accounts") -> Tokens:
        """Client-level access token, e.g. for creating an authorization ID."""
        data = await self._request_tokens({"grant_type": "client_credentials", "scope": scope})
        return self._to_tokens(data)

    async def authorization_code(self, code: str, redirect_uri: str) -> Tokens:
        """Exchange the authorization code from the callback for user tokens."""
        data = await self._request_tokens({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        })
        tokens = self._to_tokens(data)
        logger.info("New tokens received. Expiration at %s", tokens.expiration_date.isoformat())
        return tokens

    async def refresh_token(self, tokens: Tokens) -> Tokens:
        """Refresh ``tokens``.

        Returns the old tokens unchanged if the response has no access token,
        and keeps the old refresh token if the response does not rotate it.
        """
        data = await self._request_tokens({
            "grant_type": "refresh_token",
            "refresh_token": tokens.refresh_token,
        })
        if not data.get("access_token"):
            logger.warning("Refresh response carried no access_token, keeping old tokens")
            return tokens
        new_tokens = self._to_tokens(data, fallback_refresh_token=tokens.refresh_token)
        logger.info("Tokens refreshed. Expiration at %s", new_tokens.expiration_date.isoformat())
        return new_tokens
