"""
Session and its cookie codec.
A session is an HS256 JWT: integrity-protected, carries its own expiry, checked on every decode.
"""
import binascii
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass

import jwt
from jwt.utils import base64url_decode, base64url_encode

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"


def derive_key(secret: str, purpose: str) -> bytes:
    """Separate HMAC key per token kind so a pending-login token never decodes as a session."""
    return hmac.new(secret.encode("utf-8"), purpose.encode("utf-8"), hashlib.sha256).digest()


def is_canonical_jws(token: str) -> bool:
    """
    True if the token has three base64url segments that re-encode to exactly themselves.
    base64 decoding ignores the unused low bits of the last character, so without this
    check some single-character edits would still verify.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return False
    for part in parts:
        try:
            raw = base64url_decode(part)
        except (binascii.Error, ValueError):
            return False
        if base64url_encode(raw).decode("ascii") != part:
            return False
    return True


@dataclass(frozen=True)
class Session:
    subject: str
    issuer: str
    audience: tuple[str, ...]
    expires_at: int
    issued_at: int
    access_token: str
    refresh_token: str | None = None
    id_token: str | None = None

    def expired(self, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at


class SessionCodec:
    """Encode/decode sessions with a process-wide secret fixed at startup."""

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("session secret must not be empty")
        self._key = derive_key(secret, "session")

    def encode(self, session: Session) -> str:
        payload = {
            "sub": session.subject,
            "idp": session.issuer,
            "aud_idp": list(session.audience),
            "exp": session.expires_at,
            "iat": session.issued_at,
            "at": session.access_token,
        }
        if session.refresh_token:
            payload["rt"] = session.refresh_token
        if session.id_token:
            payload["idt"] = session.id_token
        token = jwt.encode(payload, self._key, algorithm=_ALGORITHM)
        if isinstance(token, bytes):
            token = token.decode("utf-8")
        return token

    def decode(self, token: str | None) -> Session | None:
        """Session, or None if the token is missing, tampered with, malformed or expired."""
        if not token or not is_canonical_jws(token):
            return None
        try:
            payload = jwt.decode(
                token,
                self._key,
                algorithms=[_ALGORITHM],
                options={"require": ["exp", "iat", "sub"], "verify_iat": False},
            )
        except jwt.InvalidTokenError as e:
            logger.debug("Session cookie rejected: %s", e)
            return None
        try:
            session = Session(
                subject=str(payload["sub"]),
                issuer=str(payload["idp"]),
                audience=tuple(str(a) for a in payload.get("aud_idp", [])),
                expires_at=int(payload["exp"]),
                issued_at=int(payload["iat"]),
                access_token=str(payload["at"]),
                refresh_token=payload.get("rt"),
                id_token=payload.get("idt"),
            )
        except (KeyError, TypeError, ValueError) as e:
            logger.debug("Session cookie has malformed claims: %s", e)
            return None
        # Checked again independently of jwt's exp handling (no leeway here)
        if session.expired():
            return None
        return session
