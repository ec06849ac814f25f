"""
Provider discovery: OpenID Connect metadata + JWKS, fetched once at startup.
ProviderConfig is immutable and shared read-only by every request.
"""
import logging
from dataclasses import dataclass

import httpx
from jwt import PyJWK, PyJWKSet

from oidc_client.config import HTTP_TIMEOUT, ClientConfig, normalize_scopes
from oidc_client.errors import DiscoveryError, SecurityRejection

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = "/.well-known/openid-configuration"

# Public signature key types; symmetric ("oct") keys never belong in a provider JWKS
_SIGNING_KEY_TYPES = {"RSA", "EC", "OKP"}


@dataclass(frozen=True)
class ProviderConfig:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks: PyJWKSet
    end_session_endpoint: str | None = None
    userinfo_endpoint: str | None = None

    def signing_key(self, kid: str | None) -> PyJWK:
        """JWK matching the token header's kid. A kid-less token is accepted only with a single key."""
        if kid:
            for key in self.jwks.keys:
                if key.key_id == kid:
                    return key
            raise SecurityRejection(f"unknown signing key id {kid!r}")
        if len(self.jwks.keys) == 1:
            return self.jwks.keys[0]
        raise SecurityRejection("token has no kid and provider publishes several keys")


def _same_issuer(a: str, b: str) -> bool:
    return a.rstrip("/") == b.rstrip("/")


def _get_json(client: httpx.Client, url: str, what: str) -> dict:
    try:
        r = client.get(url, headers={"Accept": "application/json"})
    except httpx.HTTPError as e:
        raise DiscoveryError(f"{what} unreachable at {url}: {e}") from e
    if r.status_code != 200:
        raise DiscoveryError(f"{what} at {url} returned HTTP {r.status_code}")
    try:
        data = r.json()
    except ValueError as e:
        raise DiscoveryError(f"{what} at {url} is not valid JSON") from e
    if not isinstance(data, dict):
        raise DiscoveryError(f"{what} at {url} is not a JSON object")
    return data


def parse_jwks(data: dict) -> PyJWKSet:
    """Keep the usable public signature keys of a JWKS document. Raises DiscoveryError if none remain."""
    keys = data.get("keys")
    if not isinstance(keys, list):
        raise DiscoveryError("JWKS has no 'keys' array")
    usable = []
    for k in keys:
        if not isinstance(k, dict) or k.get("kty") not in _SIGNING_KEY_TYPES or k.get("use", "sig") != "sig":
            continue
        try:
            PyJWK(k)
        except Exception as e:
            logger.warning("Skipping unusable JWK kid=%s: %s", k.get("kid"), e)
            continue
        usable.append(k)
    if not usable:
        raise DiscoveryError("JWKS has no usable signing keys")
    return PyJWKSet(usable)


def parse_metadata(issuer_url: str, metadata: dict) -> dict:
    """Validate a discovery document against the configured issuer; return the fields we use."""
    issuer = metadata.get("issuer")
    if not isinstance(issuer, str) or not _same_issuer(issuer, issuer_url):
        raise DiscoveryError(f"discovery issuer {issuer!r} does not match configured issuer {issuer_url!r}")
    fields = {"issuer": issuer}
    for name in ("authorization_endpoint", "token_endpoint", "jwks_uri"):
        value = metadata.get(name)
        if not isinstance(value, str) or not value:
            raise DiscoveryError(f"discovery document missing {name}")
        fields[name] = value
    for name in ("end_session_endpoint", "userinfo_endpoint"):
        value = metadata.get(name)
        fields[name] = value if isinstance(value, str) and value else None
    return fields


def discover(issuer_url: str, *, client: httpx.Client | None = None, timeout: float = HTTP_TIMEOUT) -> ProviderConfig:
    """
    Fetch the discovery document and JWKS (blocking; startup only).
    Raises DiscoveryError if the issuer is unreachable, the metadata is malformed,
    or no usable signing key is published.
    """
    issuer_url = issuer_url.rstrip("/")
    owns_client = client is None
    if owns_client:
        client = httpx.Client(timeout=timeout)
    try:
        metadata = _get_json(client, f"{issuer_url}{WELL_KNOWN_PATH}", "discovery document")
        fields = parse_metadata(issuer_url, metadata)
        jwks = parse_jwks(_get_json(client, fields["jwks_uri"], "JWKS"))
    finally:
        if owns_client:
            client.close()

    provider = ProviderConfig(
        issuer=fields["issuer"],
        authorization_endpoint=fields["authorization_endpoint"],
        token_endpoint=fields["token_endpoint"],
        jwks=jwks,
        end_session_endpoint=fields["end_session_endpoint"],
        userinfo_endpoint=fields["userinfo_endpoint"],
    )
    logger.info(
        "Discovered provider %s (%d signing key(s), end_session=%s)",
        provider.issuer,
        len(jwks.keys),
        "yes" if provider.end_session_endpoint else "no",
    )
    return provider


def initialize(
    issuer_url: str,
    client_id: str,
    client_secret: str | None,
    redirect_url: str,
    scopes,
    additional_audiences=(),
    use_pkce: bool = True,
    post_logout_redirect_url: str | None = None,
    *,
    http_client: httpx.Client | None = None,
) -> tuple[ProviderConfig, ClientConfig]:
    """Discover the provider and freeze the client configuration. Errors propagate to the caller."""
    if not client_id:
        raise DiscoveryError("client_id is required")
    if not redirect_url:
        raise DiscoveryError("redirect_url is required")
    provider = discover(issuer_url, client=http_client)
    client = ClientConfig(
        client_id=client_id,
        client_secret=client_secret or None,
        redirect_uri=redirect_url,
        scopes=normalize_scopes(scopes),
        additional_audiences=frozenset(additional_audiences or ()),
        use_pkce=use_pkce,
        post_logout_redirect_uri=post_logout_redirect_url or None,
    )
    return provider, client
