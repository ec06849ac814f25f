"""
Request middleware: runs the access guard before every request.
"""
import logging

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from oidc_client.guard import RejectWithError, StartLogin, decide

logger = logging.getLogger(__name__)


class OpenIDMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, oidc):
        super().__init__(app)
        self.oidc = oidc

    async def dispatch(self, request, call_next):
        oidc = self.oidc
        if request.url.path in (oidc.auth_path, oidc.logout_path):
            return await call_next(request)

        decision = decide(request, oidc.predicate, request.cookies.get(oidc.session_cookie), oidc.codec)
        if isinstance(decision, StartLogin):
            logger.debug("Login required for %s", decision.return_to)
            return oidc.start_login(decision.return_to)
        if isinstance(decision, RejectWithError):
            return JSONResponse(
                {"error": "login_required", "error_description": decision.reason},
                status_code=decision.status_code,
            )
        request.state.oidc_session = decision.session
        return await call_next(request)
