"""
OpenIDConnect: wires discovery, login start, callback, session cookie and logout
into one object the host FastAPI app installs (middleware + router).
"""
import html
import logging
import time
from urllib.parse import quote, urlsplit

import httpx
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse, Response

from oidc_client.authorize import build_authorize_url
from oidc_client.callback import AuthorizationResult, CallbackFlow
from oidc_client.config import (
    CLOCK_SKEW,
    EXCHANGE_TIMEOUT,
    HTTP_TIMEOUT,
    SESSION_COOKIE,
    ClientConfig,
    cookie_secure,
    session_secret,
)
from oidc_client.discovery import ProviderConfig, initialize
from oidc_client.errors import ProviderError, SecurityRejection, TransientError
from oidc_client.flow_store import CookieLoginStore, begin
from oidc_client.guard import RequiresAuth
from oidc_client.logout import build_logout_redirect
from oidc_client.middleware import OpenIDMiddleware
from oidc_client.routes import build_router
from oidc_client.session import Session, SessionCodec

logger = logging.getLogger(__name__)


def _page(title: str, message: str, status_code: int, link: str | None = None) -> HTMLResponse:
    """Minimal HTML page; `message` must already be escaped."""
    link_html = f'\n  <p><a href="{html.escape(link)}">Sign in again</a></p>' if link else ""
    return HTMLResponse(
        f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{html.escape(title)}</title></head>
<body>
  <h1>{html.escape(title)}</h1>
  <p>{message}</p>{link_html}
</body>
</html>""",
        status_code=status_code,
    )


class OpenIDConnect:
    """
    Shared, read-only after construction: safe to use from any number of concurrent requests.
    The only per-process resource is the pooled httpx.AsyncClient used for token exchanges.
    """

    def __init__(
        self,
        provider: ProviderConfig,
        client: ClientConfig,
        predicate: RequiresAuth,
        *,
        secret: str | None = None,
        login_store=None,
        http_client: httpx.AsyncClient | None = None,
        logout_path: str = "/logout",
        session_cookie: str = SESSION_COOKIE,
        exchange_timeout: float = EXCHANGE_TIMEOUT,
        leeway: int = CLOCK_SKEW,
    ):
        if not isinstance(predicate, RequiresAuth):
            raise TypeError("predicate must implement requires_auth(request) -> bool")
        self.provider = provider
        self.client = client
        self.predicate = predicate
        secret = secret or session_secret()
        self.secure = cookie_secure(client.redirect_uri)
        self.codec = SessionCodec(secret)
        self.login_store = login_store if login_store is not None else CookieLoginStore(secret, secure=self.secure)
        self.http_client = http_client if http_client is not None else httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        self.auth_path = urlsplit(client.redirect_uri).path or "/"
        self.logout_path = logout_path
        self.session_cookie = session_cookie
        self.exchange_timeout = exchange_timeout
        self.leeway = leeway

        self.router = build_router(self)

    @classmethod
    def init(
        cls,
        issuer_url: str,
        client_id: str,
        client_secret: str | None,
        redirect_url: str,
        predicate: RequiresAuth,
        post_logout_redirect_url: str | None = None,
        scopes=("openid",),
        additional_audiences=(),
        use_pkce: bool = True,
        *,
        discovery_client: httpx.Client | None = None,
        **kwargs,
    ) -> "OpenIDConnect":
        """Discover the provider (blocking) and build the instance. DiscoveryError propagates."""
        provider, client = initialize(
            issuer_url,
            client_id,
            client_secret,
            redirect_url,
            scopes,
            additional_audiences,
            use_pkce,
            post_logout_redirect_url,
            http_client=discovery_client,
        )
        return cls(provider, client, predicate, **kwargs)

    def install(self, app: FastAPI) -> None:
        app.add_middleware(OpenIDMiddleware, oidc=self)
        app.include_router(self.router, tags=["auth"])
        app.state.oidc = self

    async def aclose(self) -> None:
        await self.http_client.aclose()

    # --- session cookie ---

    def read_session(self, request: Request) -> Session | None:
        return self.codec.decode(request.cookies.get(self.session_cookie))

    def set_session(self, response: Response, session: Session) -> None:
        response.set_cookie(
            self.session_cookie,
            self.codec.encode(session),
            max_age=max(0, session.expires_at - int(time.time())),
            path="/",
            secure=self.secure,
            httponly=True,
            samesite="lax",
        )

    def clear_session(self, response: Response) -> None:
        response.delete_cookie(self.session_cookie, path="/", secure=self.secure, httponly=True, samesite="lax")

    # --- flows ---

    def login_link(self, return_to: str | None = None) -> str:
        if not return_to or return_to == "/":
            return self.auth_path
        return f"{self.auth_path}?return_to={quote(return_to, safe='')}"

    def start_login(self, return_to: str | None) -> Response:
        """New pending login; redirect to the provider with the attempt stored for the callback."""
        pending = begin(return_to, use_pkce=self.client.use_pkce)
        url = build_authorize_url(self.provider, self.client, pending)
        response = RedirectResponse(url=url, status_code=302)
        self.login_store.save(response, pending)
        return response

    async def handle_callback(self, request: Request) -> Response:
        result = AuthorizationResult.from_query(request.query_params)
        pending = self.login_store.load(request)
        flow = CallbackFlow(
            self.provider,
            self.client,
            pending,
            self.http_client,
            exchange_timeout=self.exchange_timeout,
            leeway=self.leeway,
        )
        retry = self.login_link(pending.return_to if pending else None)
        try:
            success = await flow.run(result)
        except ProviderError as e:
            logger.warning("Provider reported login error: %s", e)
            response = _page("Login error", html.escape(e.description or e.error), 400, retry)
        except SecurityRejection as e:
            # Internal reason only in logs; the user sees the same message for expired and forged
            logger.warning("Login rejected: %s", e.reason)
            response = _page("Authentication failed", "Please sign in again.", 401, retry)
        except TransientError as e:
            logger.warning("Token exchange failed: %s", e)
            response = _page(
                "Login temporarily unavailable",
                "The identity provider could not be reached. Please try again.",
                502,
                retry,
            )
        else:
            response = RedirectResponse(url=success.return_to, status_code=302)
            self.set_session(response, success.session)
        self.login_store.clear(response)
        return response

    def logout(self, request: Request) -> Response:
        redirect = build_logout_redirect(self.provider, self.client, self.read_session(request))
        response = RedirectResponse(url=redirect.url, status_code=302)
        if redirect.clear_session:
            self.clear_session(response)
        self.login_store.clear(response)
        return response


def get_session(request: Request) -> Session:
    """Dependency: the session the middleware attached to this request, else 401."""
    session = getattr(request.state, "oidc_session", None)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "login_required", "error_description": "No valid session"},
        )
    return session
