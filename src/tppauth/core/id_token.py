"""ID token verification for the OIDC hybrid flow.

One verification call goes through:

1. header parsing — ``kid`` and ``alg``, algorithm allow-list;
2. key resolution through :class:`~tppauth.core.jwks.KeyResolver`;
3. signature, ``iss``, ``aud``, ``exp`` (with clock-skew leeway) and ``nonce``;
4. hash binding — ``c_hash``/``s_hash`` against the authorization code and
   state at the redirect, ``at_hash``/``rt_hash`` against the access and
   refresh tokens at the token exchange.

Every failure raises :class:`~tppauth.errors.AuthenticationError`.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

import jwt
from jwt.utils import base64url_encode

from tppauth.config import SUPPORTED_ALGORITHMS
from tppauth.core.jwks import KeyResolver, accepts_algorithm
from tppauth.core.schemas import IdTokenClaims
from tppauth.errors import AuthenticationError, AuthenticationReason, FetchError, KeyNotFound

logger = logging.getLogger("tppauth.id_token")

Reason = AuthenticationReason


def left_half_hash(value: str) -> str:
    """base64url of the left-most half of SHA-256 over the value (OIDC Core 3.3.2.11)."""
    digest = hashlib.sha256(value.encode("utf-8")).digest()
    return base64url_encode(digest[: len(digest) // 2]).decode("ascii")


def _check_hash(claim_name: str, expected: str, value: str | None) -> None:
    actual = left_half_hash(value or "")
    if not hmac.compare_digest(actual, str(expected)):
        raise AuthenticationError(f"{claim_name} does not match", Reason.HASH_MISMATCH)


class IdTokenVerifier:
    """Verifies ID tokens issued by the bank's identity provider.

    Args:
        key_resolver: Resolves the signing key by kid.
        jwks_uri: The identity provider's JWKS endpoint.
        issuer: Expected ``iss`` claim.
        audience: Expected ``aud`` claim (the relying party's client ID).
        leeway: Clock-skew tolerance in seconds for ``exp``/``iat`` (default 120).
    """

    def __init__(
        self,
        key_resolver: KeyResolver,
        *,
        jwks_uri: str,
        issuer: str,
        audience: str,
        leeway: int = 120,
    ) -> None:
        self._resolver = key_resolver
        self._jwks_uri = jwks_uri
        self._issuer = issuer
        self._audience = audience
        self._leeway = leeway

    async def verify(
        self,
        id_token: str,
        *,
        nonce: str | None = None,
        code: str | None = None,
        state: str | None = None,
        access_token: str | None = None,
        refresh_token: str | None = None,
    ) -> IdTokenClaims:
        """Verify ``id_token`` and return its claims.

        Raises:
            AuthenticationError: With the failing step as ``reason``.
        """
        logger.info("Going to verify id_token")
        try:
            header = jwt.get_unverified_header(id_token)
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Malformed id_token", Reason.BAD_SIGNATURE) from e

        alg = header.get("alg")
        if alg not in SUPPORTED_ALGORITHMS:
            raise AuthenticationError(f"Unsupported algorithm {alg!r}", Reason.BAD_SIGNATURE)
        kid = header.get("kid")
        if not kid:
            raise AuthenticationError("id_token missing kid header", Reason.BAD_SIGNATURE)

        try:
            jwk = await self._resolver.resolve_key(self._jwks_uri, kid)
        except (KeyNotFound, FetchError) as e:
            raise AuthenticationError(
                f"Could not get the signing key from {self._jwks_uri}", Reason.BAD_SIGNATURE,
            ) from e

        if not accepts_algorithm(jwk, alg):
            raise AuthenticationError(
                f"Algorithm {alg} does not match signing key {kid}", Reason.BAD_SIGNATURE,
            )

        try:
            payload = jwt.decode(
                id_token,
                jwk.key,
                algorithms=[alg],
                audience=self._audience,
                issuer=self._issuer,
                leeway=self._leeway,
                options={"require": ["iss", "aud", "exp"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("id_token has expired", Reason.EXPIRED) from e
        except jwt.InvalidIssuerError as e:
            raise AuthenticationError("Invalid issuer", Reason.ISSUER_MISMATCH) from e
        except jwt.InvalidAudienceError as e:
            raise AuthenticationError("Invalid audience", Reason.AUDIENCE_MISMATCH) from e
        except jwt.MissingRequiredClaimError as e:
            reason = {
                "iss": Reason.ISSUER_MISMATCH,
                "aud": Reason.AUDIENCE_MISMATCH,
                "exp": Reason.EXPIRED,
            }.get(e.claim, Reason.BAD_SIGNATURE)
            raise AuthenticationError(f"id_token missing {e.claim}", reason) from e
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            raise AuthenticationError(f"Invalid id_token: {e}", Reason.BAD_SIGNATURE) from e

        if nonce is not None and payload.get("nonce") != nonce:
            raise AuthenticationError("Nonce does not match.", Reason.NONCE_MISMATCH)

        self._check_bindings(payload, code=code, state=state,
                             access_token=access_token, refresh_token=refresh_token)

        logger.info("Token verified")
        return IdTokenClaims(
            sub=payload.get("sub"),
            iss=payload["iss"],
            aud=payload["aud"],
            exp=payload["exp"],
            iat=payload.get("iat"),
            nonce=payload.get("nonce"),
            acr=payload.get("acr"),
            authorization_id=payload.get("authorizationId"),
            raw=payload,
        )

    @staticmethod
    def _check_bindings(
        payload: dict,
        *,
        code: str | None,
        state: str | None,
        access_token: str | None,
        refresh_token: str | None,
    ) -> None:
        # A pair is only bound when both claims are present. A lone claim is
        # still checked against whatever value the caller has, so a mismatched
        # hash is always fatal.
        if payload.get("c_hash") and payload.get("s_hash"):
            _check_hash("c_hash", payload["c_hash"], code)
            _check_hash("s_hash", payload["s_hash"], state)
        else:
            if payload.get("c_hash") and code is not None:
                _check_hash("c_hash", payload["c_hash"], code)
            if payload.get("s_hash") and state is not None:
                _check_hash("s_hash", payload["s_hash"], state)

        if payload.get("at_hash") and payload.get("rt_hash"):
            _check_hash("at_hash", payload["at_hash"], access_token)
            _check_hash("rt_hash", payload["rt_hash"], refresh_token)
        else:
            if payload.get("at_hash") and access_token is not None:
                _check_hash("at_hash", payload["at_hash"], access_token)
            if payload.get("rt_hash") and refresh_token is not None:
                _check_hash("rt_hash", payload["rt_hash"], refresh_token)
