"""OIDC login flow for a public client."""

from eidflow.core.oidc.client import (
    AppSwitchHints,
    IdentityScheme,
    OIDCClient,
    RequestDescriptor,
    RequestKind,
    TokenResponse,
    build_authorization_request,
    build_end_session_request,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from eidflow.core.oidc.discovery import ProviderMetadata, ProviderMetadataResolver
from eidflow.core.oidc.flows import FlowStatus, LoginFlow, PendingRequest
from eidflow.core.oidc.keys import KeyRecord, KeySetCache, parse_key_set
from eidflow.core.oidc.utils import describe_scheme, format_token_claims
from eidflow.core.oidc.validation import (
    TokenVerifier,
    VerificationFailure,
    VerifiedClaims,
)

__all__ = [
    # Client
    "AppSwitchHints",
    "IdentityScheme",
    "OIDCClient",
    "RequestDescriptor",
    "RequestKind",
    "TokenResponse",
    "build_authorization_request",
    "build_end_session_request",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_state",
    # Discovery and keys
    "KeyRecord",
    "KeySetCache",
    "ProviderMetadata",
    "ProviderMetadataResolver",
    "parse_key_set",
    # Flow
    "FlowStatus",
    "LoginFlow",
    "PendingRequest",
    # Utils
    "describe_scheme",
    "format_token_claims",
    # Validation
    "TokenVerifier",
    "VerificationFailure",
    "VerifiedClaims",
]
