"""Verification of detached JWS signatures on account/payment API responses.

Unlike ID token verification this never raises: ``verify`` returns False for
any failure (bad signature, wrong body, unknown key, unreachable JWKS). A False
result means the integrity of the response is unconfirmed and the caller must
reject the data.
"""

from __future__ import annotations

import logging

import jwt
from jwt.utils import base64url_encode

from tppauth.config import SUPPORTED_ALGORITHMS
from tppauth.core.jwks import KeyResolver, accepts_algorithm
from tppauth.errors import FetchError, KeyNotFound

logger = logging.getLogger("tppauth.response_signature")

SIGNATURE_HEADER = "x-jws-signature"


def attach_payload(detached: str, raw_body: bytes | str) -> str:
    """Rebuild a compact JWS from ``header..signature`` and the transmitted body."""
    body = raw_body.encode("utf-8") if isinstance(raw_body, str) else raw_body
    header, payload, signature = detached.split(".")
    if payload:
        raise ValueError("Signature is not detached")
    return f"{header}.{base64url_encode(body).decode('ascii')}.{signature}"


class ResponseSignatureVerifier:
    """Checks ``x-jws-signature`` headers against raw response bodies.

    Args:
        key_resolver: Resolves the signer's key by kid.
        jwks_uri: JWKS endpoint of the API that signs its responses.
    """

    def __init__(self, key_resolver: KeyResolver, *, jwks_uri: str) -> None:
        self._resolver = key_resolver
        self._jwks_uri = jwks_uri

    async def verify(self, detached: str | None, raw_body: bytes | str) -> bool:
        """Return True only if ``detached`` is a valid signature over exactly ``raw_body``."""
        if not detached:
            logger.warning("Response carried no %s header", SIGNATURE_HEADER)
            return False
        try:
            token = attach_payload(detached, raw_body)
            header = jwt.get_unverified_header(token)
        except (ValueError, jwt.PyJWTError):
            logger.warning("Malformed detached signature")
            return False

        alg = header.get("alg")
        kid = header.get("kid")
        if alg not in SUPPORTED_ALGORITHMS or not kid:
            logger.warning("Rejected response signature with alg=%s kid=%s", alg, kid)
            return False

        try:
            jwk = await self._resolver.resolve_key(self._jwks_uri, kid)
        except (KeyNotFound, FetchError) as e:
            logger.warning("Could not resolve response signing key: %s", e.message)
            return False

        if not accepts_algorithm(jwk, alg):
            logger.warning("Response signature alg=%s does not match key %s", alg, kid)
            return False

        try:
            jwt.api_jws.decode(token, jwk.key, algorithms=[alg])
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            logger.warning("Response signature verification failed: %s", e)
            return False
        return True
