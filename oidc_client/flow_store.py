"""
Pending login attempts (state, nonce, PKCE verifier, return_to) between the redirect
to the provider and the callback.

Default transport is stateless: the attempt rides in a short-lived signed cookie, so any
instance can finish a login. MemoryLoginStore keeps attempts server-side instead
(single process or sticky sessions only).
"""
import hmac
import logging
import threading
import time
from dataclasses import dataclass
from urllib.parse import urlsplit

import jwt
from fastapi import Request, Response

from oidc_client.config import LOGIN_COOKIE, LOGIN_TTL
from oidc_client.pkce import generate_nonce, generate_pkce, generate_state
from oidc_client.session import derive_key, is_canonical_jws

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingLogin:
    state: str
    nonce: str
    return_to: str
    code_verifier: str | None = None
    created_at: int = 0

    def expired(self, ttl: int = LOGIN_TTL, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return (now - self.created_at) > ttl


def sanitize_return_to(value: str | None) -> str:
    """Only same-site relative paths are allowed as post-login targets; anything else becomes '/'."""
    if not value or not value.startswith("/") or value.startswith("//") or "\\" in value:
        return "/"
    parts = urlsplit(value)
    if parts.scheme or parts.netloc:
        return "/"
    return value


def begin(return_to: str | None, use_pkce: bool = True) -> PendingLogin:
    """Start a login attempt: fresh state and nonce, plus a PKCE verifier when enabled."""
    code_verifier = generate_pkce()[0] if use_pkce else None
    return PendingLogin(
        state=generate_state(),
        nonce=generate_nonce(),
        return_to=sanitize_return_to(return_to),
        code_verifier=code_verifier,
        created_at=int(time.time()),
    )


def match(pending: PendingLogin | None, returned_state: str | None) -> bool:
    """Exact, constant-time comparison of the callback's state with the pending attempt."""
    if pending is None or not pending.state or not returned_state:
        return False
    return hmac.compare_digest(pending.state.encode("utf-8"), returned_state.encode("utf-8"))


class CookieLoginStore:
    """
    PendingLogin serialized into a signed, expiring cookie (HS256 JWT).

    `load` records the state as consumed until the login would have expired, so a captured
    callback replayed with its cookie fails on this process. Other processes sharing the
    secret do not see that record; run MemoryLoginStore behind sticky sessions if that matters.
    """

    def __init__(
        self,
        secret: str,
        *,
        cookie_name: str = LOGIN_COOKIE,
        ttl: int = LOGIN_TTL,
        secure: bool = True,
        path: str = "/",
    ):
        self._key = derive_key(secret, "login")
        self.cookie_name = cookie_name
        self.ttl = ttl
        self.secure = secure
        self.path = path
        self._consumed: dict[str, float] = {}
        self._lock = threading.Lock()

    def dumps(self, pending: PendingLogin) -> str:
        payload = {
            "state": pending.state,
            "nonce": pending.nonce,
            "rt": pending.return_to,
            "iat": pending.created_at,
            "exp": pending.created_at + self.ttl,
        }
        if pending.code_verifier:
            payload["cv"] = pending.code_verifier
        token = jwt.encode(payload, self._key, algorithm="HS256")
        if isinstance(token, bytes):
            token = token.decode("utf-8")
        return token

    def loads(self, token: str | None) -> PendingLogin | None:
        if not token or not is_canonical_jws(token):
            return None
        try:
            payload = jwt.decode(
                token,
                self._key,
                algorithms=["HS256"],
                options={"require": ["exp", "iat"], "verify_iat": False},
            )
            return PendingLogin(
                state=str(payload["state"]),
                nonce=str(payload["nonce"]),
                return_to=sanitize_return_to(payload.get("rt")),
                code_verifier=payload.get("cv"),
                created_at=int(payload["iat"]),
            )
        except (jwt.InvalidTokenError, KeyError, TypeError, ValueError) as e:
            logger.debug("Pending login cookie rejected: %s", e)
            return None

    def save(self, response: Response, pending: PendingLogin) -> None:
        response.set_cookie(
            self.cookie_name,
            self.dumps(pending),
            max_age=self.ttl,
            path=self.path,
            secure=self.secure,
            httponly=True,
            samesite="lax",
        )

    def load(self, request: Request) -> PendingLogin | None:
        pending = self.loads(request.cookies.get(self.cookie_name))
        if pending is None:
            return None
        now = time.time()
        with self._lock:
            self._clean_consumed(now)
            if pending.state in self._consumed:
                logger.warning("Pending login replayed (state already consumed)")
                return None
            self._consumed[pending.state] = pending.created_at + self.ttl
        return pending

    def _clean_consumed(self, now: float) -> None:
        expired = [s for s, until in self._consumed.items() if until < now]
        for s in expired:
            del self._consumed[s]

    def clear(self, response: Response) -> None:
        response.delete_cookie(self.cookie_name, path=self.path, secure=self.secure, httponly=True, samesite="lax")


class MemoryLoginStore:
    """
    Server-side pending logins keyed by state; the cookie carries only the state.
    `load` pops the entry, so a state can complete at most one callback.
    """

    def __init__(
        self,
        *,
        cookie_name: str = LOGIN_COOKIE,
        ttl: int = LOGIN_TTL,
        secure: bool = True,
        path: str = "/",
    ):
        self.cookie_name = cookie_name
        self.ttl = ttl
        self.secure = secure
        self.path = path
        self._pending: dict[str, PendingLogin] = {}
        self._lock = threading.Lock()

    def put(self, pending: PendingLogin) -> None:
        with self._lock:
            self._clean_expired()
            self._pending[pending.state] = pending

    def take(self, state: str | None) -> PendingLogin | None:
        if not state:
            return None
        with self._lock:
            pending = self._pending.pop(state, None)
        if pending is None or pending.expired(self.ttl):
            return None
        return pending

    def __len__(self) -> int:
        return len(self._pending)

    def _clean_expired(self) -> None:
        now = time.time()
        expired = [s for s, p in self._pending.items() if p.expired(self.ttl, now)]
        for s in expired:
            del self._pending[s]

    def save(self, response: Response, pending: PendingLogin) -> None:
        self.put(pending)
        response.set_cookie(
            self.cookie_name,
            pending.state,
            max_age=self.ttl,
            path=self.path,
            secure=self.secure,
            httponly=True,
            samesite="lax",
        )

    def load(self, request: Request) -> PendingLogin | None:
        return self.take(request.cookies.get(self.cookie_name))

    def clear(self, response: Response) -> None:
        response.delete_cookie(self.cookie_name, path=self.path, secure=self.secure, httponly=True, samesite="lax")
