"""
Token manager — decrypt, refresh and store per-user OAuth tokens.

This is the single interface the aggregator uses to get a usable access
token for an ``integrations`` row.

Refresh policy:
  • lazy     — after a provider rejects the current token (401);
  • proactive — before a fetch, only for connectors that declare an
    access-token lifetime, when ``last_synced_at`` is unknown or older
    than that lifetime minus the refresh buffer.

Refreshes are serialised per (user, provider, org).  The second caller
through the lock re-reads the row and reuses the token the first caller
stored instead of spending the (possibly rotated) refresh token again.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import weakref
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import httpx

from config.settings import Settings, config
from connectors.base import BaseConnector
from connectors.credentials import CredentialResolver
from connectors.encryption import TokenCipher
from connectors.errors import NotConnected, ReauthRequired, RefreshFailed
from connectors.normalize import utcnow
from connectors.registry import ConnectorRegistry
from database.store import CredentialStore, IntegrationRecord

logger = logging.getLogger(__name__)

HEALTH_OK = "ok"
HEALTH_REAUTH_REQUIRED = "reauth_required"


class TokenManager:
    def __init__(
        self,
        store: CredentialStore,
        cipher: TokenCipher,
        resolver: CredentialResolver,
        registry: ConnectorRegistry,
        settings: Settings = config,
    ) -> None:
        self._store = store
        self._cipher = cipher
        self._resolver = resolver
        self._registry = registry
        self._settings = settings
        # A lock lives only while some refresh holds or awaits it.
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str, str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, record: IntegrationRecord) -> asyncio.Lock:
        key = (record.user_id, record.provider, record.org_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    # ── Reads ───────────────────────────────────────────────────────────

    def access_token_for(self, record: IntegrationRecord) -> str:
        """Plaintext access token for ``record``; raises ``NotConnected`` if none is stored."""
        token = self._cipher.decrypt(record.access_token or "")
        if not token:
            raise NotConnected(f"{record.provider} has no stored access token", provider=record.provider)
        return token

    def needs_proactive_refresh(
        self,
        connector: BaseConnector,
        record: IntegrationRecord,
        now: Optional[datetime] = None,
    ) -> bool:
        ttl = connector.access_token_ttl
        if ttl is None:
            return False
        if not record.refresh_token:
            return False
        issued = record.last_synced_at
        if issued is None:
            return True
        if issued.tzinfo is None:
            issued = issued.replace(tzinfo=timezone.utc)
        now = now or utcnow()
        usable_for = timedelta(seconds=ttl - self._settings.token_refresh_buffer_seconds)
        return issued + usable_for <= now

    async def ensure_fresh(self, record: IntegrationRecord, client: httpx.AsyncClient) -> IntegrationRecord:
        connector = self._registry.require(record.provider)
        if self.needs_proactive_refresh(connector, record):
            logger.info("Proactive %s token refresh for user %s", record.provider, record.user_id)
            return await self.refresh(record, client)
        return record

    # ── Writes ──────────────────────────────────────────────────────────

    async def refresh(self, record: IntegrationRecord, client: httpx.AsyncClient) -> IntegrationRecord:
        """
        Exchange the stored refresh token for a new access token.

        Raises ``ReauthRequired`` (and marks the row) when the refresh token
        is missing or rejected.  ``ProviderUnavailable`` propagates without
        touching the row.
        """
        async with self._lock_for(record):
            current = await self._store.get_integration_by_id(record.id) or record
            if current.access_token and current.access_token != record.access_token:
                logger.info("%s token already refreshed for user %s", record.provider, record.user_id)
                return current

            connector = self._registry.require(current.provider)
            refresh_token = self._cipher.decrypt(current.refresh_token or "")
            if not refresh_token:
                await self.mark_reauth_required(current)
                raise ReauthRequired(
                    f"{current.provider} has no refresh token; reconnect required",
                    provider=current.provider,
                )

            config_row = await self._store.get_provider_config(current.provider)
            credentials = self._resolver.resolve_app_credentials(connector, config_row)

            try:
                grant = await connector.refresh_access_token(refresh_token, credentials, client)
            except RefreshFailed as exc:
                logger.warning(
                    "Token refresh rejected for %s/%s: status=%s error=%s",
                    current.provider, current.user_id, exc.status_code, exc.oauth_error,
                )
                await self.mark_reauth_required(current)
                raise

            fields = {
                "access_token": self._cipher.encrypt(grant.access_token),
                "health": HEALTH_OK,
                "last_synced_at": utcnow(),
            }
            # Some providers rotate refresh tokens
            if grant.refresh_token:
                fields["refresh_token"] = self._cipher.encrypt(grant.refresh_token)

            await self._store.update_integration(current.id, **fields)
            logger.info("Refreshed %s token for user %s", current.provider, current.user_id)
            return dataclasses.replace(current, **fields)

    async def mark_reauth_required(self, record: IntegrationRecord) -> None:
        await self._store.update_integration(record.id, health=HEALTH_REAUTH_REQUIRED)
        logger.info("%s connection for user %s marked %s", record.provider, record.user_id, HEALTH_REAUTH_REQUIRED)
