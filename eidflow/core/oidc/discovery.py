"""Provider metadata discovery.

Fetches the issuer's OpenID configuration document and extracts the
endpoint locations the login flow needs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import httpx

from eidflow.core.errors import MetadataFetchError
from eidflow.core.logging import LoggingClient

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = ".well-known/openid-configuration"


@dataclass(frozen=True)
class ProviderMetadata:
    """Endpoint locations published by the issuer."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    end_session_endpoint: str | None = None
    jwks_uri: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> ProviderMetadata:
        """Build metadata from a discovery document.

        Raises:
            MetadataFetchError: If a required endpoint is missing.
        """
        missing = [name for name in ("authorization_endpoint", "token_endpoint") if not document.get(name)]
        if missing:
            raise MetadataFetchError(f"Discovery document is missing {', '.join(missing)}")
        return cls(
            issuer=document.get("issuer", ""),
            authorization_endpoint=document["authorization_endpoint"],
            token_endpoint=document["token_endpoint"],
            end_session_endpoint=document.get("end_session_endpoint"),
            jwks_uri=document.get("jwks_uri"),
            raw=document,
        )


def require_https_origin(issuer: str) -> str:
    """Return the issuer without a trailing slash, refusing anything but https."""
    parsed = urlparse(issuer)
    if parsed.scheme != "https" or not parsed.hostname:
        raise MetadataFetchError(f"Issuer must be an https origin, got {issuer!r}")
    return issuer.rstrip("/")


class ProviderMetadataResolver:
    """Resolves provider metadata for an issuer over HTTP."""

    def __init__(self, http_client: LoggingClient) -> None:
        self.http_client = http_client

    def resolve(self, issuer: str) -> ProviderMetadata:
        """Fetch and parse ``{issuer}/.well-known/openid-configuration``.

        Args:
            issuer: Issuer origin, e.g. ``https://example.criipto.id``.

        Returns:
            ProviderMetadata with the endpoint locations.

        Raises:
            MetadataFetchError: On a non-https issuer, network failure, HTTP error
                status or malformed document.
        """
        discovery_url = f"{require_https_origin(issuer)}/{WELL_KNOWN_PATH}"
        logger.debug(f"Fetching provider metadata from {discovery_url}")

        try:
            response = self.http_client.get(discovery_url, headers={"Accept": "application/json"})
            response.raise_for_status()
            document = response.json()
        except httpx.TimeoutException as e:
            raise MetadataFetchError(f"Timeout fetching provider metadata from {discovery_url}") from e
        except httpx.HTTPStatusError as e:
            raise MetadataFetchError(
                f"HTTP {e.response.status_code} fetching provider metadata: {e.response.text[:200]}"
            ) from e
        except httpx.RequestError as e:
            raise MetadataFetchError(f"Request error fetching provider metadata: {e}") from e
        except ValueError as e:
            raise MetadataFetchError(f"Invalid JSON in provider metadata: {e}") from e

        if not isinstance(document, dict):
            raise MetadataFetchError("Provider metadata is not a JSON object")

        metadata = ProviderMetadata.from_document(document)
        logger.info(f"Fetched provider metadata for {issuer}")
        return metadata
