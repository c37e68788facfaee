"""Signed authorization request objects (JAR) and the redirect URL that carries them.

The claims inside the signed ``request`` object are repeated as plain query
parameters. The authorization server trusts the signed copy; the plain copy is
required by OAuth for the request to be well-formed.
"""

from __future__ import annotations

import logging
import urllib.parse
from datetime import UTC, datetime
from typing import Any, assert_never

from tppauth.core.keys import KeySigner
from tppauth.core.schemas import AuthorizationType

logger = logging.getLogger("tppauth.request_object")

ACR_SCA = "urn:openbanking:psd2:sca"
ACR_CA = "urn:openbanking:psd2:ca"

HYBRID_RESPONSE_TYPE = "code id_token"
EXEMPTION_RESPONSE_TYPE = "token"

REQUEST_OBJECT_TTL_SECONDS = 15 * 60
MAX_AGE_SECONDS = 24 * 60 * 60


def scope_for(authorization_type: AuthorizationType) -> str:
    """OIDC scope requested for each authorization kind."""
    match authorization_type:
        case AuthorizationType.ACCOUNTS:
            return "openid accounts"
        case AuthorizationType.PAYMENTS:
            return "openid payments"
        case AuthorizationType.CONFIRMATION_OF_FUNDS:
            return "openid fundsconfirmations"
        case _:
            assert_never(authorization_type)


class RequestObjectBuilder:
    """Builds and signs the claims request object for an authorization redirect.

    Args:
        signer: Signs the request object.
        client_id: The relying party's client ID (also the request object ``iss``).
        audience: ``aud`` of the request object (the authorization server).
    """

    def __init__(self, signer: KeySigner, *, client_id: str, audience: str) -> None:
        self._signer = signer
        self._client_id = client_id
        self._audience = audience

    def build_authorization_request(
        self,
        authorization_id: str,
        state: str,
        nonce: str,
        scope: str,
        redirect_uri: str,
        *,
        acr_values: tuple[str, ...] = (ACR_SCA, ACR_CA),
        response_type: str = HYBRID_RESPONSE_TYPE,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Unsigned claims for a hybrid-flow authorization of ``authorization_id``."""
        iat = int((now or datetime.now(UTC)).timestamp())
        authorization_id_claim = {
            "authorizationId": {"value": authorization_id, "essential": True},
        }
        return {
            "aud": self._audience,
            "iss": self._client_id,
            "response_type": response_type,
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "scope": scope,
            "state": state,
            "nonce": nonce,
            "max_age": MAX_AGE_SECONDS,
            "exp": iat + REQUEST_OBJECT_TTL_SECONDS,
            "iat": iat,
            "claims": {
                "userinfo": dict(authorization_id_claim),
                "id_token": {
                    **authorization_id_claim,
                    "acr": {"essential": True, "values": list(acr_values)},
                },
            },
        }

    def build_exemption_request(
        self,
        authorization_id: str,
        state: str,
        nonce: str,
        scope: str,
        redirect_uri: str,
        *,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Claims for a payment exemption: customer-present authentication only, no ID token."""
        return self.build_authorization_request(
            authorization_id,
            state,
            nonce,
            scope,
            redirect_uri,
            acr_values=(ACR_CA,),
            response_type=EXEMPTION_RESPONSE_TYPE,
            now=now,
        )

    def sign(self, claims: dict[str, Any]) -> str:
        return self._signer.sign(claims)

    def build_redirect_url(
        self,
        authorize_endpoint: str,
        authorization_id: str,
        state: str,
        nonce: str,
        scope: str,
        redirect_uri: str,
        *,
        exemption: bool = False,
    ) -> str:
        """Sign a request object and embed it in the authorize endpoint URL."""
        build = self.build_exemption_request if exemption else self.build_authorization_request
        claims = build(authorization_id, state, nonce, scope, redirect_uri)
        params = {
            "request": self.sign(claims),
            "response_type": claims["response_type"],
            "client_id": self._client_id,
            "scope": scope,
            "state": state,
            "nonce": nonce,
            "redirect_uri": redirect_uri,
        }
        separator = "&" if urllib.parse.urlsplit(authorize_endpoint).query else "?"
        url = f"{authorize_endpoint}{separator}{urllib.parse.urlencode(params, quote_via=urllib.parse.quote)}"
        logger.debug("Built authorization redirect for %s", authorization_id)
        return url
