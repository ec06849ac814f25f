"""
Demo app protected by oidc_client.
/ and /public are open; /dashboard requires a login. Port 8000.
Discovery runs in create_app(): if the provider is unreachable the server does not start.
"""
import html
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.responses import HTMLResponse

from oidc_client.config import ISSUER, client_config_from_env
from oidc_client.guard import ProtectedPaths
from oidc_client.openid import OpenIDConnect, get_session
from oidc_client.session import Session

PROTECTED_PREFIXES = ("/dashboard",)


def build_app(oidc: OpenIDConnect) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await oidc.aclose()

    app = FastAPI(title="OIDC Client Demo", version="0.1.0", lifespan=lifespan)
    oidc.install(app)

    @app.get("/health")
    def health():
        """Health check endpoint."""
        return {"status": "ok", "service": "oidc_client"}

    @app.get("/", response_class=HTMLResponse)
    def home():
        return HTMLResponse(
            f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>OIDC Client</title></head>
<body>
  <h1>OpenID Connect client</h1>
  <p><a href="{oidc.auth_path}">Log in</a> | <a href="/dashboard">Dashboard</a> | <a href="{oidc.logout_path}">Log out</a></p>
</body>
</html>"""
        )

    @app.get("/public")
    def public():
        return {"message": "Public data", "access": "anonymous"}

    @app.get("/dashboard", response_class=HTMLResponse)
    def dashboard(session: Session = Depends(get_session)):
        return HTMLResponse(
            f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Dashboard</title></head>
<body>
  <h1>Dashboard</h1>
  <p>Signed in as <code>{html.escape(session.subject)}</code> ({html.escape(session.issuer)})</p>
  <p><a href="{oidc.logout_path}">Log out</a></p>
</body>
</html>"""
        )

    return app


def create_app() -> FastAPI:
    """App factory for uvicorn --factory. DiscoveryError propagates and aborts startup."""
    logging.basicConfig(level=logging.INFO)
    client = client_config_from_env()
    oidc = OpenIDConnect.init(
        issuer_url=ISSUER,
        client_id=client.client_id,
        client_secret=client.client_secret,
        redirect_url=client.redirect_uri,
        predicate=ProtectedPaths(PROTECTED_PREFIXES),
        post_logout_redirect_url=client.post_logout_redirect_uri,
        scopes=client.scopes,
        additional_audiences=client.additional_audiences,
        use_pkce=client.use_pkce,
    )
    return build_app(oidc)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "oidc_client.main:create_app",
        factory=True,
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
