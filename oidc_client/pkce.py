"""
PKCE (RFC 7636, S256 only) plus the random state and nonce values of a login attempt.
"""
import hashlib
import secrets
from base64 import urlsafe_b64encode

CHALLENGE_METHOD = "S256"


def generate_state() -> str:
    """Opaque anti-CSRF value (256 bits); must come back unchanged on the callback."""
    return secrets.token_urlsafe(32)


def generate_nonce() -> str:
    """Random value the provider copies into the ID token's nonce claim (256 bits)."""
    return secrets.token_urlsafe(32)


def code_challenge(code_verifier: str) -> str:
    """base64url(SHA256(verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_pkce() -> tuple[str, str]:
    """
    Generate code_verifier and code_challenge (S256).
    Returns (code_verifier, code_challenge). Verifier is 43 chars (256 bits entropy).
    """
    code_verifier = secrets.token_urlsafe(32)
    return code_verifier, code_challenge(code_verifier)
