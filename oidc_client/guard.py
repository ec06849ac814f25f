"""
Per-request access decision.
The application says which requests need a login through a RequiresAuth capability;
the guard combines that with the session cookie.
"""
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from fastapi import Request

from oidc_client.session import Session, SessionCodec

logger = logging.getLogger(__name__)

# Methods a login redirect can safely replay afterwards
_REDIRECTABLE_METHODS = {"GET", "HEAD"}


@runtime_checkable
class RequiresAuth(Protocol):
    def requires_auth(self, request: Request) -> bool:
        """True if this request must carry a valid session. Pure: no I/O."""
        ...


class ProtectedPaths:
    """Requests under any of the given path prefixes require a login."""

    def __init__(self, prefixes):
        self.prefixes = tuple(p.rstrip("/") or "/" for p in prefixes)

    def requires_auth(self, request: Request) -> bool:
        path = request.url.path
        for prefix in self.prefixes:
            if prefix == "/" or path == prefix or path.startswith(prefix + "/"):
                return True
        return False


class AllRoutes:
    """Every request requires a login."""

    def requires_auth(self, request: Request) -> bool:
        return True


@dataclass(frozen=True)
class Allow:
    session: Session | None = None


@dataclass(frozen=True)
class StartLogin:
    return_to: str


@dataclass(frozen=True)
class RejectWithError:
    status_code: int
    reason: str


Decision = Allow | StartLogin | RejectWithError


def original_url(request: Request) -> str:
    """Path and query of the request, used as the post-login target."""
    path = request.url.path or "/"
    query = request.url.query
    return f"{path}?{query}" if query else path


def decide(
    request: Request,
    predicate: RequiresAuth,
    session_token: str | None,
    codec: SessionCodec,
) -> Decision:
    """
    Public route -> Allow. Protected route with a valid, unexpired session -> Allow(session).
    Otherwise StartLogin for GET/HEAD and 401 for anything else.
    """
    session = codec.decode(session_token) if session_token else None
    if not predicate.requires_auth(request):
        return Allow(session)
    if session is not None:
        return Allow(session)
    if session_token:
        logger.debug("Invalid or expired session on %s", request.url.path)
    if request.method.upper() not in _REDIRECTABLE_METHODS:
        return RejectWithError(status_code=401, reason="authentication required")
    return StartLogin(return_to=original_url(request))
