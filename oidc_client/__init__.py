"""
OpenID Connect Authorization Code Flow (with optional PKCE) for FastAPI services.
"""
from oidc_client.config import ClientConfig
from oidc_client.discovery import ProviderConfig, discover, initialize
from oidc_client.errors import DiscoveryError, OIDCError, ProviderError, SecurityRejection, TransientError
from oidc_client.guard import AllRoutes, ProtectedPaths, RequiresAuth
from oidc_client.openid import OpenIDConnect, get_session
from oidc_client.session import Session, SessionCodec

__all__ = [
    "AllRoutes",
    "ClientConfig",
    "DiscoveryError",
    "OIDCError",
    "OpenIDConnect",
    "ProtectedPaths",
    "ProviderConfig",
    "ProviderError",
    "RequiresAuth",
    "SecurityRejection",
    "Session",
    "SessionCodec",
    "TransientError",
    "discover",
    "get_session",
    "initialize",
]
