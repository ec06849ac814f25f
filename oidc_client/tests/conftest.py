"""
Shared fixtures: an RSA signing key published as a JWKS, provider/client configs,
and an ID token factory. Tests never touch the network (httpx.MockTransport).
"""
import time

import jwt
import pytest
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric.rsa import generate_private_key

from oidc_client.config import ClientConfig
from oidc_client.discovery import ProviderConfig, parse_jwks

ISSUER = "https://idp.example"
CLIENT_ID = "test-client"
REDIRECT_URI = "http://testserver/auth"
POST_LOGOUT_REDIRECT_URI = "http://testserver/logged-out"
KID = "test-key"


def _int_to_b64url(value: int) -> str:
    """Encode a positive int as base64url (JWK n/e)."""
    length = (value.bit_length() + 7) // 8
    s = jwt.utils.base64url_encode(value.to_bytes(length, "big"))
    return s.decode("utf-8") if isinstance(s, bytes) else s


def public_jwk(key, kid: str = KID) -> dict:
    pub = key.public_key().public_numbers()
    return {
        "kty": "RSA",
        "kid": kid,
        "alg": "RS256",
        "use": "sig",
        "n": _int_to_b64url(pub.n),
        "e": _int_to_b64url(pub.e),
    }


@pytest.fixture(scope="session")
def rsa_key():
    return generate_private_key(65537, 2048, default_backend())


@pytest.fixture(scope="session")
def other_rsa_key():
    return generate_private_key(65537, 2048, default_backend())


@pytest.fixture(scope="session")
def jwks_dict(rsa_key):
    return {"keys": [public_jwk(rsa_key)]}


@pytest.fixture
def metadata():
    return {
        "issuer": ISSUER,
        "authorization_endpoint": f"{ISSUER}/authorize",
        "token_endpoint": f"{ISSUER}/token",
        "userinfo_endpoint": f"{ISSUER}/userinfo",
        "end_session_endpoint": f"{ISSUER}/logout",
        "jwks_uri": f"{ISSUER}/.well-known/jwks.json",
        "response_types_supported": ["code"],
        "id_token_signing_alg_values_supported": ["RS256"],
        "code_challenge_methods_supported": ["S256"],
    }


@pytest.fixture
def provider(jwks_dict):
    return ProviderConfig(
        issuer=ISSUER,
        authorization_endpoint=f"{ISSUER}/authorize",
        token_endpoint=f"{ISSUER}/token",
        jwks=parse_jwks(jwks_dict),
        end_session_endpoint=f"{ISSUER}/logout",
    )


@pytest.fixture
def client_config():
    return ClientConfig(
        client_id=CLIENT_ID,
        redirect_uri=REDIRECT_URI,
        scopes=("openid", "profile"),
        additional_audiences=frozenset({"api://shared"}),
        use_pkce=True,
        post_logout_redirect_uri=POST_LOGOUT_REDIRECT_URI,
    )


@pytest.fixture
def make_id_token(rsa_key):
    """Factory: signed ID token; pass claim=None to drop a claim, key=/kid= to change signing."""

    def _make(key=None, kid=KID, **overrides):
        now = int(time.time())
        claims = {
            "iss": ISSUER,
            "sub": "user-42",
            "aud": CLIENT_ID,
            "exp": now + 300,
            "iat": now,
            "nonce": "nonce-1",
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, key or rsa_key, algorithm="RS256", headers={"kid": kid})

    return _make
