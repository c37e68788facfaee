"""JWKS resolver and cache — fetches public keys from the bank's key set endpoints.

Features:
- One cache entry per JWKS URI, TTL-based (default 1 hour)
- Unknown kid triggers exactly one fresh fetch per call (key rotation)
- No negative caching and no lock: concurrent fetches for the same URI are
  harmless, the last one to finish wins
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

import httpx
from jwt import PyJWK

from tppauth.errors import FetchError, KeyNotFound

logger = logging.getLogger("tppauth.jwks")

# Signature algorithms each key type may verify. EC keys are further bound to
# the curve PyJWK infers from ``crv``.
KEY_ALGORITHMS = {"RSA": ("RS256", "PS256"), "EC": ("ES256",)}


def accepts_algorithm(jwk: PyJWK, alg: str | None) -> bool:
    """Whether a signature made with ``alg`` can be checked against ``jwk``."""
    if alg not in KEY_ALGORITHMS.get(jwk.key_type, ()):
        return False
    return jwk.key_type != "EC" or jwk.algorithm_name == alg


@dataclass
class CachedJWKS:
    """In-memory copy of one remote key set."""

    keys: dict[str, PyJWK] = field(default_factory=dict)
    fetched_at: float = 0.0


class KeyResolver:
    """Resolves verification keys by (JWKS URI, kid).

    Args:
        cache_ttl: How long a fetched key set is trusted, in seconds (default 3600).
        http_timeout: HTTP request timeout in seconds (default 5).
    """

    def __init__(
        self,
        *,
        cache_ttl: float = 3600.0,
        http_timeout: float = 5.0,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cache_ttl = cache_ttl
        self._http_timeout = http_timeout
        self._transport = _transport
        self._cache: dict[str, CachedJWKS] = {}

    async def resolve_key(self, jwks_uri: str, kid: str) -> PyJWK:
        """Get the public key ``kid`` from the key set at ``jwks_uri``.

        Raises:
            KeyNotFound: If the kid is absent even after a fresh fetch.
            FetchError: If the endpoint is unreachable or returns invalid JSON.
        """
        cached = self._cache.get(jwks_uri)
        if cached is not None and not self._is_stale(cached):
            key = cached.keys.get(kid)
            if key is not None:
                return key
            logger.info("kid %s not in cached JWKS for %s, refetching", kid, jwks_uri)

        cached = await self._fetch(jwks_uri)
        key = cached.keys.get(kid)
        if key is None:
            raise KeyNotFound(jwks_uri, kid)
        return key

    def invalidate(self, jwks_uri: str | None = None) -> None:
        """Drop one cached key set, or all of them."""
        if jwks_uri is None:
            self._cache.clear()
        else:
            self._cache.pop(jwks_uri, None)

    def _is_stale(self, cached: CachedJWKS) -> bool:
        return (time.monotonic() - cached.fetched_at) > self._cache_ttl

    async def _fetch(self, jwks_uri: str) -> CachedJWKS:
        """Fetch the key set and replace the cache entry."""
        kwargs: dict = {"timeout": self._http_timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        try:
            async with httpx.AsyncClient(**kwargs) as client:
                response = await client.get(jwks_uri)
                response.raise_for_status()
                jwks_data = response.json()
        except httpx.HTTPError as e:
            logger.exception("Failed to fetch JWKS from %s", jwks_uri)
            raise FetchError(jwks_uri, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise FetchError(jwks_uri, "response is not valid JSON") from e

        if not isinstance(jwks_data, dict) or not isinstance(jwks_data.get("keys"), list):
            raise FetchError(jwks_uri, "response is not a JWK set")

        new_keys: dict[str, PyJWK] = {}
        for key_data in jwks_data["keys"]:
            kid = key_data.get("kid") if isinstance(key_data, dict) else None
            if not kid:
                continue
            try:
                new_keys[kid] = PyJWK(key_data)
            except Exception:
                logger.warning("Failed to parse JWK with kid=%s", kid)

        cached = CachedJWKS(keys=new_keys, fetched_at=time.monotonic())
        self._cache[jwks_uri] = cached
        logger.debug("JWKS %s refreshed: %d keys loaded", jwks_uri, len(new_keys))
        return cached
