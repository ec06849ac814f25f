"""
Error taxonomy for the login flow.
Initialization errors propagate to startup; everything else resolves to a response.
"""


class OIDCError(Exception):
    """Base class for all errors raised by oidc_client."""


class DiscoveryError(OIDCError):
    """Provider metadata or signing keys could not be loaded. Fatal at startup."""


class SecurityRejection(OIDCError):
    """
    Callback or token failed a security check (state, nonce, signature, iss, aud, exp).
    `reason` is for logs only; users get a generic re-authentication prompt.
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class TransientError(OIDCError):
    """Token endpoint unreachable, timed out or failed server-side. Login may be retried."""


class ProviderError(OIDCError):
    """The provider reported an error (callback ?error=... or a 4xx from /token)."""

    def __init__(self, error: str, description: str | None = None):
        super().__init__(f"{error}: {description}" if description else error)
        self.error = error
        self.description = description
