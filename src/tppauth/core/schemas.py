"""Plain data types shared across the core — tokens, flow secrets, callback parameters."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

DEFAULT_EXPIRY_BUFFER_SECONDS = 120


class AuthorizationType(str, enum.Enum):
    """Closed set of authorization kinds a session can hold."""

    ACCOUNTS = "accounts"
    PAYMENTS = "payments"
    CONFIRMATION_OF_FUNDS = "fundsconfirmations"


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class Tokens:
    """OAuth tokens for one authorization.

    ``expiration_date`` is computed at receipt time as
    ``received_at + expires_in - buffer`` so the tokens are refreshed a little
    before the provider actually expires them.
    """

    access_token: str
    refresh_token: str
    token_type: str
    scope: str
    expires_in: int
    expiration_date: datetime
    id_token: str | None = None

    @classmethod
    def from_response(
        cls,
        data: Mapping[str, Any],
        *,
        received_at: datetime | None = None,
        buffer_seconds: int = DEFAULT_EXPIRY_BUFFER_SECONDS,
        fallback_refresh_token: str = "",
    ) -> Tokens:
        """Build tokens from a token endpoint JSON response."""
        received_at = received_at or utc_now()
        expires_in = int(data.get("expires_in") or 0)
        return cls(
            access_token=data.get("access_token") or "",
            refresh_token=data.get("refresh_token") or fallback_refresh_token,
            token_type=data.get("token_type") or "Bearer",
            scope=data.get("scope") or "",
            expires_in=expires_in,
            expiration_date=received_at + timedelta(seconds=expires_in - buffer_seconds),
            id_token=data.get("id_token"),
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) > self.expiration_date

    def without_id_token(self) -> Tokens:
        """Copy without the ID token, which is not kept once verified."""
        return Tokens(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            token_type=self.token_type,
            scope=self.scope,
            expires_in=self.expires_in,
            expiration_date=self.expiration_date,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "scope": self.scope,
            "expires_in": self.expires_in,
            "expiration_date": self.expiration_date.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Tokens:
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
            expires_in=int(data.get("expires_in", 0)),
            expiration_date=datetime.fromisoformat(data["expiration_date"]),
        )


@dataclass(frozen=True, slots=True)
class FlowSecrets:
    """The state/nonce pair generated together when a flow begins."""

    oauth_state: str
    nonce: str


@dataclass(frozen=True, slots=True)
class IdTokenClaims:
    """Verified ID token claims."""

    sub: str | None
    iss: str
    aud: str | list[str]
    exp: int
    iat: int | None
    nonce: str | None = None
    acr: str | None = None
    authorization_id: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass(frozen=True, slots=True)
class CallbackParams:
    """Query parameters of the OAuth redirect back from the identity provider.

    A payment exemption (``response_type=token``) answers with the token
    fields instead of ``code``.
    """

    code: str | None = None
    id_token: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None
    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    scope: str | None = None

    @classmethod
    def from_query(cls, query: Mapping[str, str]) -> CallbackParams:
        expires_in = query.get("expires_in")
        return cls(
            code=query.get("code") or None,
            id_token=query.get("id_token") or None,
            state=query.get("state") or None,
            error=query.get("error") or None,
            error_description=query.get("error_description") or None,
            access_token=query.get("access_token") or None,
            token_type=query.get("token_type") or None,
            expires_in=int(expires_in) if expires_in and expires_in.isdigit() else None,
            scope=query.get("scope") or None,
        )

    @property
    def is_empty(self) -> bool:
        """True when the response came back in the URL fragment instead of the query."""
        return (
            self.code is None and self.state is None
            and self.error is None and self.access_token is None
        )

    @property
    def is_token_response(self) -> bool:
        """Tokens returned directly, as a payment exemption does."""
        return self.access_token is not None and self.code is None and self.error is None

    def token_response(self) -> dict[str, Any]:
        """The token fields in token endpoint shape, for :meth:`Tokens.from_response`."""
        data = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": self.scope,
        }
        return {k: v for k, v in data.items() if v is not None}
