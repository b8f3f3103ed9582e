import logging
from dataclasses import dataclass
from typing import Any, Dict, List
from urllib.parse import urlencode

import httpx
import jwt

from core.errors import UpstreamError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str


class IdentityProvider:
    """
    OpenID Connect provider client (Azure AD by default).

    Holds the provider metadata and the signing key set fetched once at
    startup; both are read-only afterwards.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        metadata: ProviderMetadata,
        key_set: jwt.PyJWKSet,
        client_id: str,
        client_secret: str,
        redirect_url: str,
        scopes: List[str],
        graph_me_url: str = "https://graph.microsoft.com/v1.0/me",
    ):
        self.http = http
        self.metadata = metadata
        self.key_set = key_set
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_url = redirect_url
        self.scopes = scopes
        self.graph_me_url = graph_me_url

    @classmethod
    async def discover(cls, http: httpx.AsyncClient, issuer: str, **kwargs) -> "IdentityProvider":
        """Fetch `/.well-known/openid-configuration` and the JWKS it points at."""
        config = await _get_json(http, issuer.rstrip("/") + "/.well-known/openid-configuration")
        try:
            metadata = ProviderMetadata(
                issuer=config["issuer"],
                authorization_endpoint=config["authorization_endpoint"],
                token_endpoint=config["token_endpoint"],
                jwks_uri=config["jwks_uri"],
            )
        except KeyError as e:
            raise UpstreamError(f"provider metadata missing {e.args[0]}") from e

        jwks = await _get_json(http, metadata.jwks_uri)
        try:
            key_set = jwt.PyJWKSet.from_dict(jwks)
        except jwt.PyJWTError as e:
            raise UpstreamError(f"unusable provider key set: {e}") from e

        logger.info("Discovered OIDC provider %s with %d signing keys", metadata.issuer, len(key_set.keys))
        return cls(http, metadata, key_set, **kwargs)

    def authorization_url(self, state: str) -> str:
        query = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_url,
            "response_mode": "query",
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{self.metadata.authorization_endpoint}?{urlencode(query)}"

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        """Trade an authorization code for the token response (id_token, access_token, ...)."""
        try:
            resp = await self.http.post(
                self.metadata.token_endpoint,
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.redirect_url,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "scope": " ".join(self.scopes),
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"token exchange failed: {e}") from e
        if resp.status_code != 200:
            logger.warning("Token exchange returned %s: %s", resp.status_code, resp.text[:200])
            raise UpstreamError(f"token exchange failed with status {resp.status_code}")
        tokens = _json_object(resp, "token response")
        if not tokens.get("id_token"):
            raise UpstreamError("token response carried no id_token")
        return tokens

    async def fetch_profile(self, access_token: str) -> Dict[str, Any]:
        """Call Microsoft Graph /me with the user's access token."""
        try:
            resp = await self.http.get(
                self.graph_me_url,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"graph request failed: {e}") from e
        if resp.status_code != 200:
            raise UpstreamError(f"graph request failed with status {resp.status_code}")
        return _json_object(resp, "graph response")


def _json_object(resp: httpx.Response, what: str) -> Dict[str, Any]:
    try:
        body = resp.json()
    except ValueError as e:
        raise UpstreamError(f"{what} is not JSON") from e
    if not isinstance(body, dict):
        raise UpstreamError(f"{what} is not a JSON object")
    return body


async def _get_json(http: httpx.AsyncClient, url: str) -> Dict[str, Any]:
    try:
        resp = await http.get(url)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        raise UpstreamError(f"GET {url} failed: {e}") from e
    return _json_object(resp, f"GET {url}")
