"""
Callback handling: authorization response -> code exchange -> ID token validation -> Session.

CallbackFlow walks AWAITING_CALLBACK -> EXCHANGE_PENDING -> VALIDATING -> SUCCEEDED,
dropping to REJECTED on the first failure. No Session exists until SUCCEEDED.
"""
import asyncio
import hmac
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from urllib.parse import quote

import httpx
import jwt

from oidc_client.config import CLOCK_SKEW, EXCHANGE_TIMEOUT, ClientConfig
from oidc_client.discovery import ProviderConfig
from oidc_client.errors import OIDCError, ProviderError, SecurityRejection, TransientError
from oidc_client.flow_store import PendingLogin, match
from oidc_client.session import Session

logger = logging.getLogger(__name__)

_RSA_ALGORITHMS = ["RS256", "RS384", "RS512", "PS256", "PS384", "PS512"]

CALLBACK_PARAMS = ("code", "state", "error")


class CallbackState(str, Enum):
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGE_PENDING = "exchange_pending"
    VALIDATING = "validating"
    SUCCEEDED = "succeeded"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AuthorizationResult:
    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_query(cls, params: Mapping[str, str]) -> "AuthorizationResult":
        return cls(
            code=params.get("code") or None,
            state=params.get("state") or None,
            error=params.get("error") or None,
            error_description=params.get("error_description") or None,
        )


def is_callback(params: Mapping[str, str]) -> bool:
    """The authentication endpoint is a callback when the provider's response params are present."""
    return any(name in params for name in CALLBACK_PARAMS)


@dataclass(frozen=True)
class LoginSuccess:
    session: Session
    return_to: str


def _allowed_algorithms(jwk: jwt.PyJWK) -> list[str]:
    # The key object is bound to its type, so only algorithms of that family can verify
    if jwk.key_type == "RSA":
        return _RSA_ALGORITHMS
    if jwk.key_type == "OKP":
        return ["EdDSA"]
    return [jwk.algorithm_name]


def validate_id_token(
    provider: ProviderConfig,
    client: ClientConfig,
    id_token: str,
    nonce: str,
    *,
    leeway: int = CLOCK_SKEW,
) -> dict:
    """
    Verify signature (provider JWKS), iss, aud (client_id or an additional audience), exp,
    and nonce. Returns the claims. Raises SecurityRejection with an internal reason.
    """
    try:
        header = jwt.get_unverified_header(id_token)
    except jwt.InvalidTokenError as e:
        raise SecurityRejection(f"malformed id_token: {e}") from e
    jwk = provider.signing_key(header.get("kid"))
    try:
        claims = jwt.decode(
            id_token,
            jwk.key,
            algorithms=_allowed_algorithms(jwk),
            audience=client.audiences,
            issuer=provider.issuer,
            leeway=leeway,
            options={"require": ["exp", "iat", "iss", "aud", "sub"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise SecurityRejection("id_token expired") from e
    except jwt.InvalidAudienceError as e:
        raise SecurityRejection("id_token audience not accepted") from e
    except jwt.InvalidIssuerError as e:
        raise SecurityRejection("id_token issuer mismatch") from e
    except jwt.InvalidSignatureError as e:
        raise SecurityRejection("id_token signature invalid") from e
    except jwt.PyJWTError as e:
        raise SecurityRejection(f"id_token rejected: {e}") from e
    # exact match; some PyJWT releases accept a substring of the expected issuer
    if claims.get("iss") != provider.issuer:
        raise SecurityRejection("id_token issuer mismatch")

    token_nonce = claims.get("nonce")
    if not isinstance(token_nonce, str) or not hmac.compare_digest(token_nonce.encode("utf-8"), nonce.encode("utf-8")):
        raise SecurityRejection("id_token nonce mismatch")
    return claims


def session_from_claims(claims: dict, tokens: dict) -> Session:
    aud = claims["aud"]
    audience = (aud,) if isinstance(aud, str) else tuple(str(a) for a in aud)
    return Session(
        subject=str(claims["sub"]),
        issuer=str(claims["iss"]),
        audience=audience,
        expires_at=int(claims["exp"]),
        issued_at=int(claims["iat"]),
        access_token=tokens["access_token"],
        refresh_token=tokens.get("refresh_token") or None,
        id_token=tokens["id_token"],
    )


class CallbackFlow:
    """One callback for one pending login. Not reusable."""

    def __init__(
        self,
        provider: ProviderConfig,
        client: ClientConfig,
        pending: PendingLogin | None,
        http_client: httpx.AsyncClient,
        *,
        exchange_timeout: float = EXCHANGE_TIMEOUT,
        leeway: int = CLOCK_SKEW,
    ):
        self.provider = provider
        self.client = client
        self.pending = pending
        self.http_client = http_client
        self.exchange_timeout = exchange_timeout
        self.leeway = leeway
        self.state = CallbackState.AWAITING_CALLBACK

    async def run(self, result: AuthorizationResult) -> LoginSuccess:
        if self.state is not CallbackState.AWAITING_CALLBACK:
            raise RuntimeError(f"callback already handled (state={self.state.value})")
        try:
            return await self._run(result)
        except (OIDCError, asyncio.CancelledError):
            self.state = CallbackState.REJECTED
            raise

    async def _run(self, result: AuthorizationResult) -> LoginSuccess:
        if result.error:
            raise ProviderError(result.error, result.error_description)
        pending = self.pending
        if pending is None:
            raise SecurityRejection("no pending login for this callback")
        if not match(pending, result.state):
            raise SecurityRejection("state mismatch")
        if not result.code:
            raise SecurityRejection("callback without authorization code")

        self.state = CallbackState.EXCHANGE_PENDING
        tokens = await self.exchange_code(result.code)

        self.state = CallbackState.VALIDATING
        claims = validate_id_token(self.provider, self.client, tokens["id_token"], pending.nonce, leeway=self.leeway)
        session = session_from_claims(claims, tokens)

        self.state = CallbackState.SUCCEEDED
        logger.info("Login succeeded for sub=%s", session.subject)
        return LoginSuccess(session=session, return_to=pending.return_to)

    async def exchange_code(self, code: str) -> dict:
        """POST the authorization_code grant to the token endpoint; bounded by exchange_timeout."""
        client = self.client
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": client.redirect_uri,
            "client_id": client.client_id,
        }
        if client.use_pkce:
            if not self.pending.code_verifier:
                raise SecurityRejection("pending login has no PKCE verifier")
            data["code_verifier"] = self.pending.code_verifier
        kwargs = {"data": data, "headers": {"Accept": "application/json"}}
        if client.client_secret:
            # RFC 6749 2.3.1: credentials are form-urlencoded before Basic encoding
            kwargs["auth"] = httpx.BasicAuth(quote(client.client_id, safe=""), quote(client.client_secret, safe=""))

        try:
            r = await asyncio.wait_for(
                self.http_client.post(self.provider.token_endpoint, **kwargs),
                timeout=self.exchange_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransientError("token endpoint timed out") from e
        except httpx.HTTPError as e:
            raise TransientError(f"token endpoint unreachable: {e}") from e

        if r.status_code >= 500:
            raise TransientError(f"token endpoint returned HTTP {r.status_code}")
        try:
            body = r.json()
        except ValueError:
            body = None
        if r.status_code != 200:
            err = body if isinstance(body, dict) else {}
            raise ProviderError(str(err.get("error") or "token_error"), err.get("error_description"))
        if not isinstance(body, dict):
            raise SecurityRejection("token response is not a JSON object")
        for name in ("id_token", "access_token"):
            if not isinstance(body.get(name), str) or not body[name]:
                raise SecurityRejection(f"token response missing {name}")
        return body
