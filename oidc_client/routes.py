"""
The two HTTP entry points: authentication endpoint (login start and provider callback on
one path) and logout.
"""
from fastapi import APIRouter, Request

from oidc_client.callback import is_callback


def build_router(oidc) -> APIRouter:
    router = APIRouter()

    @router.get(oidc.auth_path)
    async def auth_endpoint(request: Request):
        """Callback when code/state/error are present; otherwise start a login (?return_to=/path)."""
        if is_callback(request.query_params):
            return await oidc.handle_callback(request)
        return oidc.start_login(request.query_params.get("return_to"))

    @router.api_route(oidc.logout_path, methods=["GET", "POST"])
    def logout_endpoint(request: Request):
        """Clear the session cookie and redirect to the provider's end-session endpoint."""
        return oidc.logout(request)

    return router
