"""
OIDC client configuration. Defaults come from the environment; nothing secret in code.
ClientConfig is built once at startup and never mutated.
"""
import logging
import os
import secrets
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Identity provider (issuer); discovery document lives under /.well-known/openid-configuration
ISSUER = os.environ.get("OIDC_ISSUER", "http://127.0.0.1:9000").rstrip("/")

CLIENT_ID = os.environ.get("OIDC_CLIENT_ID", "test-client")

# Public clients leave this unset
CLIENT_SECRET = os.environ.get("OIDC_CLIENT_SECRET", "").strip() or None

# Authentication endpoint: serves both login start and the provider's callback
REDIRECT_URI = os.environ.get("OIDC_REDIRECT_URI", "http://127.0.0.1:8000/auth")

POST_LOGOUT_REDIRECT_URI = os.environ.get("OIDC_POST_LOGOUT_REDIRECT_URI", "").strip() or None

DEFAULT_SCOPE = os.environ.get("OIDC_SCOPE", "openid profile email")

# Audiences accepted in the ID token besides our own client_id (space or comma separated)
ADDITIONAL_AUDIENCES = os.environ.get("OIDC_ADDITIONAL_AUDIENCES", "")

USE_PKCE = os.environ.get("OIDC_USE_PKCE", "true").strip().lower() in ("1", "true", "yes", "on")

# HMAC secret for session and pending-login cookies. If unset, a random one is generated per process.
SESSION_SECRET = os.environ.get("OIDC_SESSION_SECRET", "").strip() or None

# Pending login lifetime (seconds): time the user has to finish at the provider
LOGIN_TTL = int(os.environ.get("OIDC_LOGIN_TTL", "600"))

# Per-phase httpx timeout and overall bound on one token exchange (seconds)
HTTP_TIMEOUT = float(os.environ.get("OIDC_HTTP_TIMEOUT", "10"))
EXCHANGE_TIMEOUT = float(os.environ.get("OIDC_EXCHANGE_TIMEOUT", "15"))

# Allowed clock skew when checking exp/iat of ID tokens (seconds)
CLOCK_SKEW = int(os.environ.get("OIDC_CLOCK_SKEW", "30"))

SESSION_COOKIE = os.environ.get("OIDC_SESSION_COOKIE", "oidc_session")
LOGIN_COOKIE = os.environ.get("OIDC_LOGIN_COOKIE", "oidc_login")

# Empty = decide from the redirect URI scheme
COOKIE_SECURE = os.environ.get("OIDC_COOKIE_SECURE", "").strip().lower()


def split_list(value: str | None) -> list[str]:
    """Split a space- or comma-separated setting into a list, dropping empties."""
    if not value:
        return []
    return [v for v in value.replace(",", " ").split() if v]


def normalize_scopes(scopes) -> tuple[str, ...]:
    """Deduplicate scopes, keeping order; `openid` is always present and first."""
    if isinstance(scopes, str):
        scopes = scopes.split()
    result = ["openid"]
    for s in scopes or ():
        s = s.strip()
        if s and s not in result:
            result.append(s)
    return tuple(result)


def cookie_secure(redirect_uri: str) -> bool:
    if COOKIE_SECURE:
        return COOKIE_SECURE in ("1", "true", "yes", "on")
    return redirect_uri.lower().startswith("https://")


def session_secret() -> str:
    """Configured session secret, or a fresh random one (sessions then die with the process)."""
    if SESSION_SECRET:
        return SESSION_SECRET
    logger.warning("OIDC_SESSION_SECRET not set; generated a random secret, sessions will not survive restart")
    return secrets.token_urlsafe(32)


@dataclass(frozen=True)
class ClientConfig:
    client_id: str
    redirect_uri: str
    client_secret: str | None = None
    scopes: tuple[str, ...] = ("openid",)
    additional_audiences: frozenset[str] = field(default_factory=frozenset)
    use_pkce: bool = True
    post_logout_redirect_uri: str | None = None

    def __post_init__(self):
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "scopes", normalize_scopes(self.scopes))
        object.__setattr__(self, "additional_audiences", frozenset(self.additional_audiences))

    @property
    def audiences(self) -> list[str]:
        """Every audience an ID token may be issued to: client_id first, then the extras."""
        return [self.client_id] + sorted(a for a in self.additional_audiences if a != self.client_id)

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)


def client_config_from_env() -> ClientConfig:
    return ClientConfig(
        client_id=CLIENT_ID,
        client_secret=CLIENT_SECRET,
        redirect_uri=REDIRECT_URI,
        scopes=normalize_scopes(DEFAULT_SCOPE),
        additional_audiences=frozenset(split_list(ADDITIONAL_AUDIENCES)),
        use_pkce=USE_PKCE,
        post_logout_redirect_uri=POST_LOGOUT_REDIRECT_URI,
    )
