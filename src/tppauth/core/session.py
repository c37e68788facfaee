"""Per-user authorization state — the authorizations held in one web session.

A session is an ordered list of authorizations, most recent first. Flows are
sequential: the callback is always matched against the current (index 0)
authorization. Starting a second flow before the first one's callback arrives
makes the first one unreachable by callback. That is a known limitation of
this design.

State machine per authorization::

    NEW -> PENDING_CALLBACK -> ACTIVE <-> EXPIRED (refresh) -> ACTIVE
    any state -> removed
"""

from __future__ import annotations

import asyncio
import enum
import logging
import secrets
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from tppauth.core.interface import DomainInterface, UnauthenticatedInterface
from tppauth.core.schemas import AuthorizationType, FlowSecrets, Tokens, utc_now
from tppauth.core.token_client import TokenClient
from tppauth.errors import AuthorizationNotFound, StateMismatch, TokenEndpointError

logger = logging.getLogger("tppauth.session")

_SECRET_BYTES = 12


class AuthorizationStatus(str, enum.Enum):
    NEW = "new"
    PENDING_CALLBACK = "pending_callback"
    ACTIVE = "active"
    EXPIRED = "expired"


@dataclass(slots=True)
class Authorization:
    """One authorization (accounts, payments or confirmation of funds) in a session."""

    authorization_id: str
    authorization_type: AuthorizationType
    oauth_state: str | None = None
    nonce: str | None = None
    tokens: Tokens | None = None
    interface: DomainInterface | None = field(default=None, repr=False, compare=False)

    def status(self, now: datetime | None = None) -> AuthorizationStatus:
        if self.tokens is not None and self.tokens.access_token:
            if self.tokens.is_expired(now):
                return AuthorizationStatus.EXPIRED
            return AuthorizationStatus.ACTIVE
        if self.oauth_state and self.nonce:
            return AuthorizationStatus.PENDING_CALLBACK
        return AuthorizationStatus.NEW

    def is_usable(self, now: datetime | None = None) -> bool:
        return self.status(now) is AuthorizationStatus.ACTIVE

    def require_interface(self) -> DomainInterface:
        """The bound interface, or a stand-in that fails with NotAuthenticated."""
        return self.interface or UnauthenticatedInterface()

    def to_dict(self) -> dict[str, Any]:
        return {
            "authorization_id": self.authorization_id,
            "authorization_type": self.authorization_type.value,
            "oauth_state": self.oauth_state,
            "nonce": self.nonce,
            "tokens": self.tokens.to_dict() if self.tokens is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Authorization:
        tokens = data.get("tokens")
        return cls(
            authorization_id=data["authorization_id"],
            authorization_type=AuthorizationType(data["authorization_type"]),
            oauth_state=data.get("oauth_state"),
            nonce=data.get("nonce"),
            tokens=Tokens.from_dict(tokens) if tokens else None,
        )


class AuthorizationSession:
    """The ordered authorizations of one user session (the token store)."""

    def __init__(self, authorizations: list[Authorization] | None = None) -> None:
        self._authorizations: list[Authorization] = list(authorizations or [])

    def __len__(self) -> int:
        return len(self._authorizations)

    def __iter__(self) -> Iterator[Authorization]:
        return iter(list(self._authorizations))

    # ------ Flow ------

    def begin_flow(
        self, authorization_id: str, authorization_type: AuthorizationType,
    ) -> FlowSecrets:
        """Prepend a new pending authorization with a fresh state/nonce pair."""
        if not authorization_id:
            raise ValueError("Missing authorizationId")
        flow = FlowSecrets(
            oauth_state=secrets.token_hex(_SECRET_BYTES),
            nonce=secrets.token_hex(_SECRET_BYTES),
        )
        self._authorizations.insert(0, Authorization(
            authorization_id=authorization_id,
            authorization_type=authorization_type,
            oauth_state=flow.oauth_state,
            nonce=flow.nonce,
        ))
        logger.info("Store authorizationId %s to session", authorization_id)
        return flow

    def complete_flow(self, oauth_state: str | None, tokens: Tokens) -> Authorization:
        """Store tokens on the current authorization if ``oauth_state`` matches it.

        Clears the state and nonce so the callback cannot be replayed.

        Raises:
            StateMismatch: If there is no current authorization or its state differs.
        """
        current = self.current()
        if current is None or not current.oauth_state or oauth_state != current.oauth_state:
            raise StateMismatch()
        current.tokens = tokens.without_id_token()
        current.oauth_state = None
        current.nonce = None
        logger.info("Tokens stored for authorization %s", current.authorization_id)
        return current

    def complete_exemption(
        self, oauth_state: str | None, tokens: Tokens, authorization_id: str | None = None,
    ) -> Authorization:
        """Store tokens returned directly by a payment exemption (``response_type=token``).

        The authorization (``authorization_id``, or the current one) must be a
        payment authorization still waiting for its callback, and
        ``oauth_state`` must match the state it was started with.

        Raises:
            AuthorizationNotFound: Unknown ``authorization_id``.
            StateMismatch: Wrong or missing state, or the authorization is not
                a pending payment authorization.
        """
        authorization = self.get(authorization_id) if authorization_id else self.current()
        if (
            authorization is None
            or authorization.authorization_type is not AuthorizationType.PAYMENTS
            or authorization.status() is not AuthorizationStatus.PENDING_CALLBACK
            or not oauth_state
            or oauth_state != authorization.oauth_state
        ):
            raise StateMismatch()
        authorization.tokens = tokens.without_id_token()
        authorization.oauth_state = None
        authorization.nonce = None
        logger.info("Exemption tokens stored for authorization %s", authorization.authorization_id)
        return authorization

    # ------ Token lifecycle ------

    async def ensure_fresh_tokens(
        self,
        authorization: Authorization,
        token_client: TokenClient,
        *,
        now: datetime | None = None,
    ) -> Tokens | None:
        """Refresh the authorization's tokens if they have expired.

        On refresh failure the stale tokens are returned unchanged; the next
        API call will fail upstream and the user has to re-authorize.
        """
        tokens = authorization.tokens
        if tokens is None:
            return None
        if not tokens.is_expired(now or utc_now()):
            return tokens

        logger.info(
            "Tokens of %s expired at %s", authorization.authorization_id,
            tokens.expiration_date.isoformat(),
        )
        try:
            refreshed = await token_client.refresh_token(tokens)
        except TokenEndpointError as e:
            logger.warning(
                "Token refresh failed for %s (HTTP %s), keeping stale tokens",
                authorization.authorization_id, e.http_status,
            )
            return tokens
        if refreshed is tokens:
            return tokens
        authorization.tokens = refreshed.without_id_token()
        return authorization.tokens

    async def ensure_all_fresh(self, token_client: TokenClient) -> list[Tokens | None]:
        """Refresh every authorization concurrently."""
        return await asyncio.gather(*(
            self.ensure_fresh_tokens(a, token_client) for a in list(self._authorizations)
        ))

    # ------ Lookup ------

    def current(self) -> Authorization | None:
        """The most recent authorization, or None. Never creates one."""
        return self._authorizations[0] if self._authorizations else None

    def get(self, authorization_id: str) -> Authorization:
        for authorization in self._authorizations:
            if authorization.authorization_id == authorization_id:
                return authorization
        raise AuthorizationNotFound(authorization_id)

    def list_active(self, now: datetime | None = None) -> list[Authorization]:
        now = now or utc_now()
        return [a for a in self._authorizations if a.is_usable(now)]

    def latest_tokens(self, now: datetime | None = None) -> Tokens | None:
        """Unexpired tokens with the latest expiration date, across all authorizations."""
        active = self.list_active(now)
        if not active:
            return None
        return max(active, key=lambda a: a.tokens.expiration_date).tokens

    def of_type(self, authorization_type: AuthorizationType) -> list[Authorization]:
        return [a for a in self._authorizations if a.authorization_type is authorization_type]

    # ------ Removal ------

    def remove_authorization(self, authorization_id: str) -> bool:
        """Remove an authorization (logout/revoke). Returns False if it was not present."""
        before = len(self._authorizations)
        self._authorizations = [
            a for a in self._authorizations if a.authorization_id != authorization_id
        ]
        return len(self._authorizations) != before

    def remove_incomplete(self) -> list[Authorization]:
        """Drop authorizations whose callback never completed. Returns the removed ones."""
        removed = [a for a in self._authorizations if a.tokens is None]
        self._authorizations = [a for a in self._authorizations if a.tokens is not None]
        return removed

    def clear(self) -> None:
        self._authorizations = []

    # ------ Serialization ------

    def to_dict(self) -> dict[str, Any]:
        return {"authorizations": [a.to_dict() for a in self._authorizations]}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> AuthorizationSession:
        if not data:
            return cls()
        return cls([Authorization.from_dict(a) for a in data.get("authorizations", [])])
