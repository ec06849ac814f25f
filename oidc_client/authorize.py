"""
Authorization request: the redirect URL that sends the browser to the provider.
"""
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from oidc_client.config import ClientConfig
from oidc_client.discovery import ProviderConfig
from oidc_client.flow_store import PendingLogin
from oidc_client.pkce import CHALLENGE_METHOD, code_challenge


def authorize_params(client: ClientConfig, pending: PendingLogin) -> dict[str, str]:
    params = {
        "response_type": "code",
        "client_id": client.client_id,
        "redirect_uri": client.redirect_uri,
        "scope": client.scope,
        "state": pending.state,
        "nonce": pending.nonce,
    }
    if client.use_pkce and pending.code_verifier:
        params["code_challenge"] = code_challenge(pending.code_verifier)
        params["code_challenge_method"] = CHALLENGE_METHOD
    return params


def build_authorize_url(provider: ProviderConfig, client: ClientConfig, pending: PendingLogin) -> str:
    """Provider authorization endpoint with our params; existing query params on the endpoint are kept."""
    parts = urlsplit(provider.authorization_endpoint)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(authorize_params(client, pending).items())
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))
