"""eidflow - OIDC Authorization Code + PKCE login for e-ID brokers."""

__version__ = "0.1.0"
