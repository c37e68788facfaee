"""tppauth configuration — dataclasses for endpoints, credentials, mutual TLS and timings."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import assert_never
from urllib.parse import urlsplit

from tppauth.core.schemas import DEFAULT_EXPIRY_BUFFER_SECONDS, AuthorizationType

SUPPORTED_ALGORITHMS = ("ES256", "RS256", "PS256")


@dataclass(frozen=True, slots=True)
class MTLSConfig:
    """Client certificate used for the mutually authenticated TLS channel."""

    cert_file: str | Path
    key_file: str | Path
    key_password: str | None = None
    ca_certs: str | Path | None = None


@dataclass(frozen=True, slots=True)
class AuthConfig:
    """Everything the relying party needs to talk to one bank environment.

    Built once by the surrounding application and passed explicitly to the
    signer, key resolver and token client.

    Example:
        AuthConfig(
            client_id="...",
            client_secret="...",
            authorize_url="https://auth.bank.example/oauth/authorize",
            token_url="https://mtls.bank.example/oauth/token",
            jwks_url="https://auth.bank.example/.well-known/jwks.json",
            accounts_redirect_uri="https://tpp.example/accounts/oauth/callback",
        )
    """

    client_id: str
    client_secret: str
    authorize_url: str
    token_url: str
    jwks_url: str
    accounts_redirect_uri: str | None = None
    payments_redirect_uri: str | None = None
    cof_redirect_uri: str | None = None
    payments_jwks_url: str | None = None
    ais_api_url: str | None = None
    pis_api_url: str | None = None
    cof_api_url: str | None = None
    request_object_audience: str | None = None
    api_key: str | None = None
    signing_algorithm: str = "ES256"
    mtls: MTLSConfig | None = None
    token_timeout: float = 10.0
    jwks_timeout: float = 5.0
    jwks_cache_ttl: float = 3600.0
    token_expiry_buffer_seconds: int = DEFAULT_EXPIRY_BUFFER_SECONDS
    clock_skew_seconds: int = 120

    def __post_init__(self) -> None:
        if self.signing_algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"Unsupported signing algorithm {self.signing_algorithm!r}. "
                f"Valid algorithms: {', '.join(SUPPORTED_ALGORITHMS)}"
            )
        for field_name in ("client_id", "authorize_url", "token_url", "jwks_url"):
            if not getattr(self, field_name):
                raise ValueError(f"AuthConfig.{field_name} must not be empty")
        if self.token_timeout <= 0 or self.jwks_timeout <= 0:
            raise ValueError("Timeouts must be positive")

    @property
    def expected_issuer(self) -> str:
        """ID token issuer: the origin (scheme://host[:port]) of the authorize endpoint."""
        parts = urlsplit(self.authorize_url)
        return f"{parts.scheme}://{parts.netloc}"

    @property
    def audience(self) -> str:
        """``aud`` of signed request objects."""
        return self.request_object_audience or self.expected_issuer

    def redirect_uri_for(self, authorization_type: AuthorizationType) -> str:
        match authorization_type:
            case AuthorizationType.ACCOUNTS:
                uri = self.accounts_redirect_uri
            case AuthorizationType.PAYMENTS:
                uri = self.payments_redirect_uri
            case AuthorizationType.CONFIRMATION_OF_FUNDS:
                uri = self.cof_redirect_uri
            case _:
                assert_never(authorization_type)
        if not uri:
            raise ValueError(f"No redirect URI configured for {authorization_type.value}")
        return uri

    def api_url_for(self, authorization_type: AuthorizationType) -> str | None:
        match authorization_type:
            case AuthorizationType.ACCOUNTS:
                return self.ais_api_url
            case AuthorizationType.PAYMENTS:
                return self.pis_api_url
            case AuthorizationType.CONFIRMATION_OF_FUNDS:
                return self.cof_api_url
            case _:
                assert_never(authorization_type)
