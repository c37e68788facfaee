"""TPPAuth — instance-based relying-party configuration and entry point."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from tppauth.config import AuthConfig
from tppauth.core.callback import verify_callback
from tppauth.core.id_token import IdTokenVerifier
from tppauth.core.interface import AuthorizedInterface, UnauthenticatedInterface
from tppauth.core.jwks import KeyResolver
from tppauth.core.keys import KeySigner, SigningKey
from tppauth.core.request_object import RequestObjectBuilder, scope_for
from tppauth.core.response_signature import ResponseSignatureVerifier
from tppauth.core.schemas import AuthorizationType, CallbackParams, Tokens
from tppauth.core.session import Authorization, AuthorizationSession
from tppauth.core.token_client import TokenClient
from tppauth.errors import ApiError, TPPAuthError
from tppauth.events import (
    AuthorizationCompleted,
    AuthorizationRemoved,
    AuthorizationStarted,
    CallbackRejected,
    HookRegistry,
    TokenRefreshFailed,
    TokensRefreshed,
)

logger = logging.getLogger("tppauth")


class TPPAuth:
    """Main tppauth instance — holds the signer, key resolver, verifiers and token client.

    Sessions are not owned here: the web layer loads an
    :class:`AuthorizationSession` per request (``AuthorizationSession.from_dict``)
    and passes it in.

    Args:
        config: Endpoints, client credentials, algorithm and timings.
        signing_key: The relying party's private key, loaded once at startup.
        key_resolver: Shared JWKS resolver (default: one built from ``config``).
    """

    def __init__(
        self,
        config: AuthConfig,
        signing_key: SigningKey,
        *,
        key_resolver: KeyResolver | None = None,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._signer = KeySigner(signing_key, config.signing_algorithm)
        self._resolver = key_resolver or KeyResolver(
            cache_ttl=config.jwks_cache_ttl,
            http_timeout=config.jwks_timeout,
            _transport=_transport,
        )
        self._token_client = TokenClient(config, _transport=_transport)
        self._request_builder = RequestObjectBuilder(
            self._signer, client_id=config.client_id, audience=config.audience,
        )
        self._id_token_verifier = IdTokenVerifier(
            self._resolver,
            jwks_uri=config.jwks_url,
            issuer=config.expected_issuer,
            audience=config.client_id,
            leeway=config.clock_skew_seconds,
        )
        self._response_verifier: ResponseSignatureVerifier | None = None
        if config.payments_jwks_url:
            self._response_verifier = ResponseSignatureVerifier(
                self._resolver, jwks_uri=config.payments_jwks_url,
            )
        self._hooks = HookRegistry()

    @property
    def config(self) -> AuthConfig:
        """Read-only access to the config."""
        return self._config

    @property
    def signer(self) -> KeySigner:
        return self._signer

    @property
    def key_resolver(self) -> KeyResolver:
        return self._resolver

    @property
    def token_client(self) -> TokenClient:
        return self._token_client

    @property
    def request_builder(self) -> RequestObjectBuilder:
        return self._request_builder

    @property
    def id_token_verifier(self) -> IdTokenVerifier:
        return self._id_token_verifier

    @property
    def hooks(self) -> HookRegistry:
        """Access the hook registry."""
        return self._hooks

    # ------ Event hooks ------

    def on(self, event_name: str):
        """Decorator to register an event hook.

        Usage:
            @auth.on("authorization_completed")
            async def handle(event):
                print(event.authorization_id)
        """
        def decorator(fn):
            self._hooks.register(event_name, fn)
            return fn
        return decorator

    def add_hook(self, event_name: str, callback) -> None:
        """Register an event hook callback programmatically."""
        self._hooks.register(event_name, callback)

    # ------ Authorization flow ------

    async def start_authorization(
        self,
        session: AuthorizationSession,
        authorization_id: str,
        authorization_type: AuthorizationType,
        *,
        exemption: bool = False,
    ) -> str:
        """Begin a flow for ``authorization_id`` and return the redirect URL.

        ``exemption`` requests a payment exemption (customer-present
        authentication, ``response_type=token``) instead of the hybrid flow.
        """
        if exemption and authorization_type is not AuthorizationType.PAYMENTS:
            raise ValueError("Exemptions only apply to payment authorizations")
        redirect_uri = self._config.redirect_uri_for(authorization_type)
        flow = session.begin_flow(authorization_id, authorization_type)
        url = self._request_builder.build_redirect_url(
            self._config.authorize_url,
            authorization_id,
            flow.oauth_state,
            flow.nonce,
            scope_for(authorization_type),
            redirect_uri,
            exemption=exemption,
        )
        await self._hooks.emit("authorization_started", AuthorizationStarted(
            authorization_id=authorization_id,
            authorization_type=authorization_type.value,
            exemption=exemption,
        ))
        return url

    async def handle_callback(
        self, session: AuthorizationSession, params: CallbackParams,
    ) -> Authorization | None:
        """Verify the callback, exchange the code, verify the token response and store tokens.

        Session state changes only after every step has succeeded.

        Returns:
            The completed authorization, or None if the callback carried no
            parameters (fragment response to be relayed by the browser).
        """
        current = session.current()
        try:
            if params.is_token_response:
                completed = session.complete_exemption(params.state, self._tokens(params.token_response()))
            else:
                verified = await verify_callback(session, params, self._id_token_verifier)
                if verified is None:
                    return None
                authorization = verified.authorization
                redirect_uri = self._config.redirect_uri_for(authorization.authorization_type)
                tokens = await self._token_client.authorization_code(verified.code, redirect_uri)
                if tokens.id_token:
                    await self._id_token_verifier.verify(
                        tokens.id_token,
                        access_token=tokens.access_token,
                        refresh_token=tokens.refresh_token,
                    )
                completed = session.complete_flow(verified.oauth_state, tokens)
        except TPPAuthError as e:
            await self._hooks.emit("callback_rejected", CallbackRejected(
                authorization_id=current.authorization_id if current else None,
                code=e.code,
                reason=e.message,
            ))
            raise

        await self._hooks.emit("authorization_completed", AuthorizationCompleted(
            authorization_id=completed.authorization_id,
            authorization_type=completed.authorization_type.value,
            scope=completed.tokens.scope if completed.tokens else "",
        ))
        return completed

    async def complete_exemption(
        self,
        session: AuthorizationSession,
        authorization_id: str,
        token_response: dict[str, Any],
        oauth_state: str | None,
    ) -> Authorization:
        """Store tokens a payment exemption returned directly to the browser.

        ``oauth_state`` is the ``state`` that came back with the tokens; it
        must match the pending payment authorization ``authorization_id``.

        Raises:
            StateMismatch: Wrong state, or the authorization is not a pending
                payment authorization.
        """
        try:
            authorization = session.complete_exemption(
                oauth_state, self._tokens(token_response), authorization_id,
            )
        except TPPAuthError as e:
            await self._hooks.emit("callback_rejected", CallbackRejected(
                authorization_id=authorization_id, code=e.code, reason=e.message,
            ))
            raise
        await self._hooks.emit("authorization_completed", AuthorizationCompleted(
            authorization_id=authorization.authorization_id,
            authorization_type=authorization.authorization_type.value,
            scope=authorization.tokens.scope if authorization.tokens else "",
        ))
        return authorization

    def _tokens(self, token_response: dict[str, Any]) -> Tokens:
        return Tokens.from_response(
            token_response, buffer_seconds=self._config.token_expiry_buffer_seconds,
        )

    async def client_credentials(self, scope: str = "accounts") -> Tokens:
        """Client-level token, used to create authorization IDs before a flow starts."""
        return await self._token_client.client_credentials(scope)

    async def create_authorization_id(
        self,
        *,
        authorization_days: int | None = None,
        transaction_from: str | None = None,
        transaction_to: str | None = None,
    ) -> str:
        """Create an account authorization resource using a client credentials token.

        Returns:
            The ``authorizationId`` to pass to :meth:`start_authorization`.

        Raises:
            ValueError: ``ais_api_url`` is not configured.
            ApiError: The API rejected the request or returned no ID.
        """
        base_url = self._config.ais_api_url
        if not base_url:
            raise ValueError("ais_api_url is not configured")

        tokens = await self._token_client.client_credentials("accounts")
        body: dict[str, Any] = {}
        if authorization_days:
            expires = datetime.now(UTC) + timedelta(days=authorization_days)
            body["expires"] = expires.isoformat().replace("+00:00", "Z")
        if transaction_from:
            body["transactionFrom"] = transaction_from
        if transaction_to:
            body["transactionTo"] = transaction_to

        interface = AuthorizedInterface(
            base_url,
            tokens,
            api_key=self._config.api_key,
            client_kwargs=self._token_client.client_kwargs(),
        )
        response = await interface.post("/authorizations", body, verify_signature=False)
        data = response.data
        authorization_id = data.get("authorizationId") if isinstance(data, dict) else None
        if not authorization_id:
            raise ApiError(response.status_code, data)
        logger.info("Created authorization %s", authorization_id)
        return authorization_id

    # ------ Token lifecycle ------

    async def ensure_fresh_tokens(
        self, session: AuthorizationSession, authorization: Authorization,
    ) -> Tokens | None:
        before = authorization.tokens
        was_expired = before is not None and before.is_expired()
        tokens = await session.ensure_fresh_tokens(authorization, self._token_client)
        if not was_expired or tokens is None:
            return tokens
        # Same object back means the refresh failed and stale tokens were kept
        if tokens is before:
            await self._hooks.emit("token_refresh_failed", TokenRefreshFailed(
                authorization_id=authorization.authorization_id,
            ))
        else:
            await self._hooks.emit("tokens_refreshed", TokensRefreshed(
                authorization_id=authorization.authorization_id,
            ))
        return tokens

    async def bind_interfaces(self, session: AuthorizationSession) -> None:
        """Refresh every authorization concurrently and bind its domain interface."""
        await asyncio.gather(*(self._bind(session, a) for a in session))

    async def _bind(self, session: AuthorizationSession, authorization: Authorization) -> None:
        tokens = await self.ensure_fresh_tokens(session, authorization)
        if tokens is None:
            authorization.interface = UnauthenticatedInterface("not_authorized")
            return
        if not authorization.is_usable():
            authorization.interface = UnauthenticatedInterface("token_expired")
            return
        base_url = self._config.api_url_for(authorization.authorization_type)
        if base_url is None:
            authorization.interface = UnauthenticatedInterface("api_not_configured")
            return
        authorization.interface = AuthorizedInterface(
            base_url,
            tokens,
            signer=self._signer,
            response_verifier=self._response_verifier,
            api_key=self._config.api_key,
            client_kwargs=self._token_client.client_kwargs(),
        )

    async def remove_authorization(
        self, session: AuthorizationSession, authorization_id: str,
    ) -> bool:
        removed = session.remove_authorization(authorization_id)
        if removed:
            await self._hooks.emit("authorization_removed", AuthorizationRemoved(
                authorization_id=authorization_id,
            ))
        return removed

    # ------ Signatures ------

    def sign_detached(self, body: bytes | str | dict[str, Any]) -> str:
        """``x-jws-signature`` value for an outbound request body."""
        return self._signer.sign_detached(body)

    async def verify_response_signature(self, detached: str | None, raw_body: bytes | str) -> bool:
        """Check a response's ``x-jws-signature``. False if verification is not configured."""
        if self._response_verifier is None:
            logger.warning("payments_jwks_url not configured, cannot verify response signature")
            return False
        return await self._response_verifier.verify(detached, raw_body)

    def get_jwks(self) -> dict[str, Any]:
        """The relying party's public key set."""
        return {"keys": [self._signer.public_jwk()]}
