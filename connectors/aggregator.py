"""
Aggregator — fan out to every connected provider and merge the results.

Each connection row becomes one task: decrypt the token, refresh it first
if the connector asks for that, fetch, and on a 401 refresh once and try
once more.  Tasks run concurrently over one shared ``httpx.AsyncClient``
and each is bounded by ``provider_timeout_seconds``.  A provider that
fails is left out of ``data`` and reported in ``issues`` by error code;
the rest of the response is unaffected.

CRM search goes to one connected provider and shares the same
refresh-once-on-401 path; there a failure is the caller's error.

A missing encryption key or an undecryptable stored secret is not a
per-provider problem and propagates to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Tuple, TypeVar

import httpx

from auth.identity import Identity
from config.settings import Settings, config
from connectors.base import BaseConnector, gather_sections
from connectors.errors import (
    ConfigurationError,
    DecryptionError,
    NotConfigured,
    NotConnected,
    ProviderAuthError,
    ProviderUnavailable,
    ReauthRequired,
    ReconnectRequired,
    UnsupportedProvider,
    VaultError,
)
from connectors.normalize import iso
from connectors.providers.stripe import StripeConnector
from connectors.registry import ConnectorRegistry
from connectors.schemas import (
    AggregateResult,
    ProviderIssue,
    ProviderSummary,
    SearchKind,
    SearchResult,
)
from connectors.token_manager import TokenManager
from database.store import CredentialStore, IntegrationRecord

logger = logging.getLogger(__name__)

TIMEOUT_CODE = "PROVIDER_TIMEOUT"
UNEXPECTED_CODE = "PROVIDER_ERROR"

Outcome = Tuple[Optional[ProviderSummary], Optional[ProviderIssue]]
T = TypeVar("T")


class Aggregator:
    def __init__(
        self,
        store: CredentialStore,
        tokens: TokenManager,
        registry: ConnectorRegistry,
        settings: Settings = config,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._registry = registry
        self._settings = settings

    async def _connected_rows(self, user_id: str) -> List[IntegrationRecord]:
        rows = await self._store.list_integrations(user_id, providers=self._registry.aggregatable())
        return [r for r in rows if r.access_token]

    async def is_connected(self, user_id: str) -> bool:
        return bool(await self._connected_rows(user_id))

    # ── Fan-out ─────────────────────────────────────────────────────────

    async def aggregate(
        self,
        identity: Identity,
        client: Optional[httpx.AsyncClient] = None,
    ) -> AggregateResult:
        rows = await self._connected_rows(identity.user_id)
        elevated = identity.elevated
        logger.info(
            "Aggregating %d connection(s) for user %s (elevated=%s)",
            len(rows), identity.user_id, elevated,
        )

        if client is None:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout_seconds) as owned:
                outcomes = await self._run_all(rows, owned, elevated)
        else:
            outcomes = await self._run_all(rows, client, elevated)

        data = [summary for summary, _ in outcomes if summary is not None]
        issues = [issue for _, issue in outcomes if issue is not None]
        return AggregateResult(connected=len(data) > 0, data=data, issues=issues)

    async def _run_all(
        self,
        rows: List[IntegrationRecord],
        client: httpx.AsyncClient,
        elevated: bool,
    ) -> List[Outcome]:
        jobs = [(row.provider, self._fetch_row(row, client)) for row in rows]
        if elevated:
            platform = self._platform_job(client)
            if platform is not None:
                jobs.append(("stripe_platform", platform))
        # Cancelling the request cancels every in-flight provider call.
        return await gather_sections(*(self._guarded(name, job) for name, job in jobs))

    def _platform_job(self, client: httpx.AsyncClient):
        connector = self._registry.get("stripe")
        if not isinstance(connector, StripeConnector) or not self._settings.stripe_secret_key:
            return None
        return connector.fetch_platform(self._settings.stripe_secret_key, client)

    async def _guarded(self, provider: str, job) -> Outcome:
        try:
            summary = await asyncio.wait_for(job, timeout=self._settings.provider_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("%s omitted: timed out", provider)
            return None, ProviderIssue(provider=provider, code=TIMEOUT_CODE)
        except NotConfigured as exc:
            logger.warning("%s omitted: %s", provider, type(exc).__name__)
            return None, ProviderIssue(provider=provider, code=exc.code)
        except (ConfigurationError, DecryptionError):
            raise
        except VaultError as exc:
            logger.warning("%s omitted: %s", provider, type(exc).__name__)
            return None, ProviderIssue(provider=provider, code=exc.code)
        except Exception as exc:
            logger.error("%s omitted: unexpected %s", provider, type(exc).__name__)
            return None, ProviderIssue(provider=provider, code=UNEXPECTED_CODE)
        return summary, None

    # ── One provider ────────────────────────────────────────────────────

    async def _call_with_refresh(
        self,
        row: IntegrationRecord,
        client: httpx.AsyncClient,
        call: Callable[[str, Optional[str]], Awaitable[T]],
    ) -> Tuple[IntegrationRecord, T]:
        """
        Run ``call(access_token, scoped_id)`` for ``row``.

        A 401 triggers one refresh and one retry.  A second 401, or a
        connection missing its scoped id, flags the row for reauthorisation.
        Returns the row as it stands afterwards together with the result.
        """
        row = await self._tokens.ensure_fresh(row, client)
        try:
            try:
                result = await call(self._tokens.access_token_for(row), row.scopes)
            except ProviderAuthError:
                logger.info("%s rejected the access token; refreshing once", row.provider)
                row = await self._tokens.refresh(row, client)
                result = await call(self._tokens.access_token_for(row), row.scopes)
        except ProviderAuthError as exc:
            await self._tokens.mark_reauth_required(row)
            raise ReauthRequired(f"{row.provider} rejected a refreshed token", provider=row.provider) from exc
        except ReconnectRequired:
            await self._tokens.mark_reauth_required(row)
            raise
        return row, result

    async def _fetch_row(self, row: IntegrationRecord, client: httpx.AsyncClient) -> ProviderSummary:
        connector = self._registry.require(row.provider)

        async def call(access_token: str, scoped_id: Optional[str]) -> ProviderSummary:
            return await connector.fetch(access_token, scoped_id, client)

        row, summary = await self._call_with_refresh(row, client, call)

        if row.last_synced_at is not None:
            summary.last_sync = iso(row.last_synced_at)
        if row.connected_account and summary.connected_account in ("", summary.provider):
            summary.connected_account = row.connected_account
        return summary

    # ── CRM search ──────────────────────────────────────────────────────

    def _search_candidates(self, provider: Optional[str]) -> List[str]:
        if provider is None:
            return self._registry.searchable()
        connector: BaseConnector = self._registry.require(provider)
        if not connector.supports_search:
            raise UnsupportedProvider(f"{connector.display_name} does not support search", provider=provider)
        return [connector.provider_name]

    async def search(
        self,
        identity: Identity,
        kind: SearchKind,
        query: str,
        provider: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> SearchResult:
        """
        Search contacts or deals in one connected CRM.

        With no ``provider`` the first connected CRM in registration order
        is used.  Errors are raised to the caller rather than reported as
        issues.
        """
        if client is None:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout_seconds) as owned:
                return await self.search(identity, kind, query, provider, owned)

        candidates = self._search_candidates(provider)
        rows = await self._store.list_integrations(identity.user_id, providers=candidates)
        rows = sorted((r for r in rows if r.access_token), key=lambda r: candidates.index(r.provider))
        if not rows:
            raise NotConnected(f"{provider} is not connected" if provider else "No CRM connected", provider=provider)
        row = rows[0]
        connector = self._registry.require(row.provider)
        logger.info("CRM %s search via %s for user %s", kind, row.provider, identity.user_id)

        async def call(access_token: str, scoped_id: Optional[str]) -> SearchResult:
            return await connector.search(access_token, scoped_id, kind, query, client)

        try:
            _, result = await asyncio.wait_for(
                self._call_with_refresh(row, client, call),
                timeout=self._settings.provider_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("%s search timed out", row.provider)
            raise ProviderUnavailable(f"{connector.display_name} search timed out", provider=row.provider) from exc
        return result
