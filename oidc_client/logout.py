"""
RP-initiated logout: drop the local session and send the browser to the provider's
end_session_endpoint (or straight to the post-logout URI when there is none).
"""
from dataclasses import dataclass
from urllib.parse import urlencode

from oidc_client.config import ClientConfig
from oidc_client.discovery import ProviderConfig
from oidc_client.session import Session


@dataclass(frozen=True)
class LogoutRedirect:
    url: str
    clear_session: bool = True


def build_logout_redirect(
    provider: ProviderConfig,
    client: ClientConfig,
    session: Session | None,
) -> LogoutRedirect:
    if not provider.end_session_endpoint:
        return LogoutRedirect(url=client.post_logout_redirect_uri or "/")

    params = {"client_id": client.client_id}
    if session is not None and session.id_token:
        params["id_token_hint"] = session.id_token
    if client.post_logout_redirect_uri:
        params["post_logout_redirect_uri"] = client.post_logout_redirect_uri
    endpoint = provider.end_session_endpoint
    return LogoutRedirect(url=f"{endpoint}{'&' if '?' in endpoint else '?'}{urlencode(params)}")
