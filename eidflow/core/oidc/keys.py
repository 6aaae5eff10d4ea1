"""Signing key set cache.

The issuer's JSON Web Key Set is fetched once when the session starts and
kept for the life of the process. There is no refresh and no eviction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from jwt import PyJWKSet
from jwt.exceptions import PyJWKSetError

from eidflow.core.errors import KeySetFetchError
from eidflow.core.logging import LoggingClient
from eidflow.core.oidc.discovery import require_https_origin

logger = logging.getLogger(__name__)

JWKS_PATH = ".well-known/jwks.json"

# JWK members that only occur in private keys
_PRIVATE_MEMBERS = frozenset({"d", "p", "q", "dp", "dq", "qi", "k"})


@dataclass(frozen=True)
class KeyRecord:
    """A public signature-verification key from the issuer."""

    key_id: str
    public_key: Any
    algorithm: str


def parse_key_set(document: dict[str, Any]) -> list[KeyRecord]:
    """Parse a JWKS document into key records.

    Keys without a ``kid``, keys not meant for signatures, and anything
    carrying private key material are skipped.

    Raises:
        KeySetFetchError: If the document holds no usable key.
    """
    raw_keys = document.get("keys")
    if not isinstance(raw_keys, list):
        raise KeySetFetchError("Key set document has no 'keys' array")

    public_keys = []
    for raw in raw_keys:
        if not isinstance(raw, dict):
            continue
        if _PRIVATE_MEMBERS & raw.keys():
            logger.warning(f"Skipping key {raw.get('kid')!r}: contains private key material")
            continue
        if not raw.get("kid") or raw.get("use", "sig") != "sig":
            continue
        public_keys.append(raw)

    try:
        key_set = PyJWKSet(public_keys)
    except PyJWKSetError as e:
        raise KeySetFetchError(f"No usable signing keys in key set: {e}") from e

    return [KeyRecord(key_id=jwk.key_id, public_key=jwk.key, algorithm=jwk.algorithm_name) for jwk in key_set.keys]


class KeySetCache:
    """Holds the issuer's public signing keys for the session."""

    def __init__(self, http_client: LoggingClient) -> None:
        self.http_client = http_client
        self._keys: list[KeyRecord] | None = None

    @property
    def keys(self) -> list[KeyRecord] | None:
        """Loaded keys, or None until :meth:`fetch_all` succeeds."""
        return self._keys

    @property
    def is_loaded(self) -> bool:
        return self._keys is not None

    def find(self, key_id: str | None) -> KeyRecord | None:
        """Look up a key by its identifier."""
        if key_id is None or self._keys is None:
            return None
        return next((key for key in self._keys if key.key_id == key_id), None)

    def fetch_all(self, issuer: str, jwks_uri: str | None = None) -> list[KeyRecord]:
        """Fetch the key set and replace the cached keys.

        Args:
            issuer: Issuer origin; the key set is read from its well-known path.
            jwks_uri: Explicit key set location, overriding the well-known path.

        Returns:
            The loaded key records, in document order.

        Raises:
            KeySetFetchError: On network failure or an unusable document.
        """
        url = jwks_uri or f"{require_https_origin(issuer)}/{JWKS_PATH}"
        logger.debug(f"Fetching signing keys from {url}")

        try:
            response = self.http_client.get(url, headers={"Accept": "application/json"})
            response.raise_for_status()
            document = response.json()
        except httpx.HTTPStatusError as e:
            raise KeySetFetchError(f"HTTP {e.response.status_code} fetching key set from {url}") from e
        except httpx.HTTPError as e:
            raise KeySetFetchError(f"Request error fetching key set: {e}") from e
        except ValueError as e:
            raise KeySetFetchError(f"Invalid JSON in key set: {e}") from e

        if not isinstance(document, dict):
            raise KeySetFetchError("Key set is not a JSON object")

        self._keys = parse_key_set(document)
        logger.info(f"Loaded {len(self._keys)} signing key(s) for {issuer}")
        return self._keys
