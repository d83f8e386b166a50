"""
BaseConnector — capability interface shared by every provider.

Each provider subclasses this.  The OAuth half (authorization URL, code
exchange, refresh) is driven by the static ``OAUTH_CONFIGS`` table; the
data half (``fetch``) is implemented by providers whose data is
aggregated.  Auth-only providers use ``OAuthOnlyConnector``.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from connectors.credentials import AppCredentials
from connectors.errors import (
    ProviderAuthError,
    ProviderUnavailable,
    ReauthRequired,
    RefreshFailed,
)
from connectors.oauth_config import OAUTH_CONFIGS, OAuthEndpoints
from connectors.redaction import safe_details
from connectors.schemas import ProviderSummary, SearchKind, SearchResult

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 10


@dataclass(frozen=True)
class TokenGrant:
    """Tokens returned by a provider token endpoint."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    def __repr__(self) -> str:
        return (
            f"TokenGrant(access_token=<redacted>, "
            f"refresh_token={'<redacted>' if self.refresh_token else None}, "
            f"expires_in={self.expires_in!r})"
        )


async def gather_sections(*aws):
    """
    Run independent API sections concurrently.

    If one section raises, the others are cancelled rather than left running.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        raise


def _error_body(resp: httpx.Response) -> Dict[str, Any]:
    """A failed response's JSON object body, or ``{}``."""
    try:
        body = resp.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


class BaseConnector(ABC):
    """Abstract base for all OAuth2 connectors."""

    #: accounting | payments | crm | storage | productivity
    category: str = "productivity"
    #: Only the provider's own ``integration_configs`` row may supply credentials.
    strict_credentials: bool = False
    #: A scoped identifier (realm, tenant, instance) must be stored at connect time.
    requires_scoped_id: bool = False
    #: Access-token lifetime; when set, tokens of unknown freshness are refreshed before fetching.
    access_token_ttl: Optional[int] = None
    #: Amounts from this provider's API arrive in minor units (cents).
    minor_units: bool = False

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug matching ``integrations.provider``."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    def oauth(self) -> OAuthEndpoints:
        return OAUTH_CONFIGS[self.provider_name]

    @property
    def scopes(self) -> List[str]:
        return list(self.oauth.scopes)

    @property
    def supports_fetch(self) -> bool:
        return type(self).fetch is not BaseConnector.fetch

    @property
    def supports_search(self) -> bool:
        return type(self).search is not BaseConnector.search

    # ── OAuth flow ──────────────────────────────────────────────────────

    def get_auth_url(self, client_id: str, redirect_uri: str, state: str) -> str:
        """Build the provider's authorization URL."""
        params = {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "state": state,
            "access_type": "offline",   # ask for a refresh token
            "prompt": "consent",
            **self.oauth.extra_params,
        }
        if self.scopes:
            params["scope"] = " ".join(self.scopes)
        return f"{self.oauth.auth_url}?{urlencode(params)}"

    async def _token_request(
        self,
        data: Dict[str, str],
        credentials: AppCredentials,
        client: httpx.AsyncClient,
        *,
        grant: str,
    ) -> httpx.Response:
        auth = None
        if self.oauth.uses_basic_auth:
            auth = httpx.BasicAuth(credentials.client_id, credentials.client_secret)
        else:
            data = {
                **data,
                "client_id": credentials.client_id,
                "client_secret": credentials.client_secret,
            }
        try:
            resp = await client.post(
                self.oauth.token_url,
                data=data,
                headers={"Accept": "application/json"},
                auth=auth,
            )
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(
                f"{self.provider_name} token endpoint unreachable ({type(exc).__name__})",
                provider=self.provider_name,
            ) from exc

        if resp.status_code == 429 or resp.status_code >= 500:
            raise ProviderUnavailable(
                f"{self.provider_name} token endpoint returned {resp.status_code}",
                provider=self.provider_name,
            )
        if not resp.is_success:
            body = _error_body(resp)
            oauth_error = body.get("error") if isinstance(body.get("error"), str) else None
            logger.warning(
                "%s %s grant rejected: status=%s details=%s",
                self.provider_name, grant, resp.status_code, safe_details(body),
            )
            raise RefreshFailed(
                f"{self.provider_name} rejected the {grant} grant ({oauth_error or resp.status_code})",
                provider=self.provider_name,
                status_code=resp.status_code,
                oauth_error=oauth_error,
            )
        return resp

    def _grant_from(self, resp: httpx.Response) -> TokenGrant:
        try:
            body = resp.json()
        except ValueError:
            body = None
        if not isinstance(body, dict) or not body.get("access_token"):
            raise RefreshFailed(
                f"{self.provider_name} token response had no access token",
                provider=self.provider_name,
                status_code=resp.status_code,
            )
        expires_in = body.get("expires_in")
        return TokenGrant(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token") or None,
            expires_in=int(expires_in) if expires_in is not None else None,
            scope=body.get("scope"),
            raw=body,
        )

    async def exchange_code(
        self,
        code: str,
        redirect_uri: str,
        credentials: AppCredentials,
        client: httpx.AsyncClient,
    ) -> TokenGrant:
        """Exchange an authorization code for tokens."""
        try:
            resp = await self._token_request(
                {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri},
                credentials,
                client,
                grant="authorization_code",
            )
        except RefreshFailed as exc:
            raise ReauthRequired(str(exc), provider=self.provider_name) from exc
        return self._grant_from(resp)

    async def refresh_access_token(
        self,
        refresh_token: str,
        credentials: AppCredentials,
        client: httpx.AsyncClient,
    ) -> TokenGrant:
        """
        Exchange a refresh token for a new access token.

        ``TokenGrant.refresh_token`` is set only when the provider rotated it.
        """
        resp = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            credentials,
            client,
            grant="refresh_token",
        )
        return self._grant_from(resp)

    async def scoped_id_from_grant(
        self,
        grant: TokenGrant,
        callback_params: Dict[str, Optional[str]],
        client: httpx.AsyncClient,
    ) -> Optional[str]:
        """Value stored in ``integrations.scopes`` at connect time."""
        return grant.scope

    def account_label(self, grant: TokenGrant) -> str:
        raw = grant.raw
        team = raw.get("team") if isinstance(raw.get("team"), dict) else {}
        return raw.get("email") or team.get("name") or self.provider_name

    # ── Data ────────────────────────────────────────────────────────────

    async def fetch(
        self,
        access_token: str,
        scoped_id: Optional[str],
        client: httpx.AsyncClient,
    ) -> ProviderSummary:
        """Fetch this provider's data in the shared summary shape."""
        raise NotImplementedError(f"{self.provider_name} has no data adapter")

    async def search(
        self,
        access_token: str,
        scoped_id: Optional[str],
        kind: SearchKind,
        query: str,
        client: httpx.AsyncClient,
    ) -> SearchResult:
        """Find up to ``SEARCH_LIMIT`` contacts or deals matching ``query``."""
        raise NotImplementedError(f"{self.provider_name} does not support search")

    def auth_headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}

    async def request_json(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        access_token: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Optional[Any]:
        """
        Call a provider API and return parsed JSON.

        401 → ``ProviderAuthError``; 429 / 5xx / transport errors →
        ``ProviderUnavailable``; any other non-2xx returns ``None`` so the
        caller can skip that section.
        """
        merged = {**self.auth_headers(access_token), **(headers or {})}
        try:
            resp = await client.request(method, url, params=params, json=json_body, headers=merged)
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(
                f"{self.provider_name} request failed ({type(exc).__name__})",
                provider=self.provider_name,
            ) from exc

        if resp.status_code == 401:
            raise ProviderAuthError(
                f"{self.provider_name} rejected the access token", provider=self.provider_name
            )
        if resp.status_code == 429 or resp.status_code >= 500:
            raise ProviderUnavailable(
                f"{self.provider_name} returned {resp.status_code}", provider=self.provider_name
            )
        if not resp.is_success:
            logger.warning(
                "%s %s %s returned %s, section skipped: %s",
                self.provider_name, method, httpx.URL(url).path, resp.status_code,
                safe_details(_error_body(resp)),
            )
            return None
        if resp.status_code == 204:
            return None
        try:
            return resp.json()
        except ValueError:
            logger.warning("%s returned non-JSON body for %s", self.provider_name, httpx.URL(url).path)
            return None

    async def get_json(self, client, url, access_token, **kwargs) -> Optional[Any]:
        return await self.request_json(client, "GET", url, access_token, **kwargs)


class OAuthOnlyConnector(BaseConnector):
    """Provider that can be connected but has no data adapter."""

    def __init__(self, provider_name: str, display_name: str, category: str = "productivity") -> None:
        self._provider_name = provider_name
        self._display_name = display_name
        self.category = category

    @property
    def provider_name(self) -> str:
        return self._provider_name

    @property
    def display_name(self) -> str:
        return self._display_name
