"""Relying-party signing key — loading, generation, compact and detached JWS."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import jwt
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jwt.algorithms import get_default_algorithms

from tppauth.config import SUPPORTED_ALGORITHMS
from tppauth.errors import KeyLoadError, SigningError

PrivateKey = ec.EllipticCurvePrivateKey | rsa.RSAPrivateKey


@dataclass(frozen=True, slots=True)
class SigningKey:
    """A loaded private key and the key ID it is published under."""

    private_key: PrivateKey = field(repr=False)
    kid: str | None = None


def load_signing_key(
    pem: str | bytes, *, passphrase: str | None = None, kid: str | None = None,
) -> SigningKey:
    """Load a PEM-encoded EC or RSA private key.

    Raises:
        KeyLoadError: If the PEM cannot be parsed, the passphrase is wrong, or
            the key is neither EC nor RSA.
    """
    data = pem.encode("utf-8") if isinstance(pem, str) else pem
    password = passphrase.encode("utf-8") if passphrase else None
    try:
        private_key = serialization.load_pem_private_key(data, password=password)
    except (ValueError, TypeError) as e:
        raise KeyLoadError(f"Could not load signing key: {e}") from e
    if not isinstance(private_key, (ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey)):
        raise KeyLoadError(f"Unsupported key type {type(private_key).__name__}")
    return SigningKey(private_key=private_key, kid=kid)


def generate_kid() -> str:
    """Generate a unique key ID.

    Format: key-YYYY-MM-uuid_short
    """
    now = datetime.now(UTC)
    short_id = uuid.uuid4().hex[:8]
    return f"key-{now.year}-{now.month:02d}-{short_id}"


def generate_signing_key(algorithm: str = "ES256", *, kid: str | None = None) -> SigningKey:
    """Generate a fresh key suitable for ``algorithm`` (P-256 for ES256, RSA 2048 otherwise)."""
    if algorithm == "ES256":
        private_key: PrivateKey = ec.generate_private_key(ec.SECP256R1())
    elif algorithm in ("RS256", "PS256"):
        private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    else:
        raise ValueError(f"Unsupported algorithm {algorithm!r}")
    return SigningKey(private_key=private_key, kid=kid or generate_kid())


def serialize_body(payload: bytes | str | dict[str, Any]) -> bytes:
    """The exact bytes that are signed, and therefore the bytes that must be sent."""
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


class KeySigner:
    """Signs claim sets and request bodies with the relying party's private key.

    Algorithm and key are fixed at construction.

    Args:
        signing_key: The loaded private key.
        algorithm: ES256 (sandbox profiles), RS256 (production) or PS256.
    """

    def __init__(self, signing_key: SigningKey, algorithm: str = "ES256") -> None:
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"Unsupported algorithm {algorithm!r}")
        expects_ec = algorithm == "ES256"
        if expects_ec != isinstance(signing_key.private_key, ec.EllipticCurvePrivateKey):
            raise KeyLoadError(f"Key type does not match algorithm {algorithm}")
        self._key = signing_key
        self._algorithm = algorithm

    @property
    def algorithm(self) -> str:
        return self._algorithm

    @property
    def kid(self) -> str | None:
        return self._key.kid

    def _headers(self) -> dict[str, str]:
        headers = {"typ": "JWT"}
        if self._key.kid:
            headers["kid"] = self._key.kid
        return headers

    def sign(self, claims: dict[str, Any]) -> str:
        """Sign a claim set as a compact JWS.

        Raises:
            SigningError: If the claims cannot be serialized or signed.
        """
        try:
            return jwt.encode(
                claims,
                self._key.private_key,
                algorithm=self._algorithm,
                headers=self._headers(),
            )
        except (TypeError, ValueError, jwt.PyJWTError) as e:
            raise SigningError(f"Could not sign claims: {e}") from e

    def sign_detached(self, payload: bytes | str | dict[str, Any]) -> str:
        """Sign a body and return ``header..signature`` with the payload segment removed.

        The verifier rebuilds the payload from the transmitted body, so the
        body sent must be exactly :func:`serialize_body` of ``payload``.
        """
        body = serialize_body(payload)
        try:
            compact = jwt.api_jws.encode(
                body,
                self._key.private_key,
                algorithm=self._algorithm,
                headers=self._headers(),
            )
        except (TypeError, ValueError, jwt.PyJWTError) as e:
            raise SigningError(f"Could not sign body: {e}") from e
        header, _, signature = compact.split(".")
        return f"{header}..{signature}"

    def public_jwk(self) -> dict[str, Any]:
        """The public half of the signing key as a JWK, for publishing in a key set."""
        algorithm = get_default_algorithms()[self._algorithm]
        jwk = json.loads(algorithm.to_jwk(self._key.private_key.public_key()))
        jwk.update({"use": "sig", "alg": self._algorithm})
        if self._key.kid:
            jwk["kid"] = self._key.kid
        return jwk
