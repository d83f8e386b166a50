"""
Authorization flow — build the provider consent URL, then complete the
callback by exchanging the code and storing the encrypted tokens.

``start`` moves a request through
``REQUESTED → CONFIGURED → STATE_ISSUED → URL_BUILT``.  Persisting the
CSRF state row is best-effort: if the write fails the URL is still
returned, with the failure reported on ``AuthorizationResult.warning``.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from auth.identity import Identity
from config.settings import Settings, config
from connectors.credentials import CredentialResolver
from connectors.encryption import TokenCipher
from connectors.errors import NotConnected, PermissionDenied, ReauthRequired, ReconnectRequired
from connectors.normalize import utcnow
from connectors.registry import ConnectorRegistry
from connectors.token_manager import HEALTH_OK
from database.store import CredentialStore, IntegrationRecord, OAuthStateRecord

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/integrations/callback"


class AuthorizationStage(str, enum.Enum):
    REQUESTED = "requested"
    CONFIGURED = "configured"
    STATE_ISSUED = "state_issued"
    URL_BUILT = "url_built"


@dataclass(frozen=True)
class AuthorizationResult:
    url: str
    provider: str
    state: str
    stage: AuthorizationStage = AuthorizationStage.URL_BUILT
    warning: Optional[str] = None


def _advance(provider: str, stage: AuthorizationStage) -> AuthorizationStage:
    logger.debug("Authorization %s: %s", provider, stage.value)
    return stage


def split_state(raw_state: str) -> tuple[str, Optional[str]]:
    """``"<uuid>:<provider>"`` → ``("<uuid>", "<provider>")``."""
    state, sep, provider = (raw_state or "").partition(":")
    return state, (provider or None) if sep else None


class AuthorizationFlow:
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

    def redirect_uri(self, origin: Optional[str] = None) -> str:
        base = origin or self._settings.site_url or self._settings.oauth_redirect_fallback
        return f"{base.rstrip('/')}{CALLBACK_PATH}"

    # ── Start ───────────────────────────────────────────────────────────

    async def start(self, provider: str, user_id: str, origin: Optional[str] = None) -> AuthorizationResult:
        stage = _advance(provider, AuthorizationStage.REQUESTED)
        connector = self._registry.require(provider)
        provider = connector.provider_name

        config_row = await self._store.get_provider_config(provider)
        credentials = self._resolver.resolve_app_credentials(connector, config_row, require_secret=False)
        stage = _advance(provider, AuthorizationStage.CONFIGURED)

        state = str(uuid.uuid4())
        warning = None
        try:
            await self._store.insert_oauth_state(
                OAuthStateRecord(
                    state=state,
                    user_id=user_id,
                    provider=provider,
                    expires_at=utcnow() + timedelta(seconds=self._settings.oauth_state_ttl_seconds),
                )
            )
        except (SQLAlchemyError, OSError) as exc:
            warning = "OAuth state could not be stored; callback will not be CSRF-checked"
            logger.warning("Failed to store OAuth state for %s: %s", provider, type(exc).__name__)
        stage = _advance(provider, AuthorizationStage.STATE_ISSUED)

        url = connector.get_auth_url(
            credentials.client_id,
            self.redirect_uri(origin),
            f"{state}:{provider}",
        )
        stage = _advance(provider, AuthorizationStage.URL_BUILT)
        logger.info("Authorization URL built for %s (user %s)", provider, user_id)
        return AuthorizationResult(url=url, provider=provider, state=state, stage=stage, warning=warning)

    # ── Callback ────────────────────────────────────────────────────────

    async def _consume_state(self, raw_state: Optional[str], caller: Identity, provider: str) -> None:
        """Check ``raw_state`` was issued to ``caller`` for ``provider``, consuming its row."""
        if not raw_state:
            return
        state, state_provider = split_state(raw_state)
        if state_provider is not None and state_provider.lower() != provider:
            raise PermissionDenied("OAuth state was issued for a different provider", provider=provider)
        row = await self._store.get_oauth_state(state)
        if row is None:
            logger.info("OAuth state not found; continuing with the authenticated caller")
            return
        await self._store.delete_oauth_state(state)
        if row.provider != provider:
            raise PermissionDenied("OAuth state was issued for a different provider", provider=provider)
        if row.expires_at < utcnow():
            raise ReauthRequired("OAuth state expired, please try connecting again", provider=row.provider)
        if row.user_id != caller.user_id:
            raise PermissionDenied("OAuth state was issued to a different user", provider=row.provider)

    async def complete(
        self,
        caller: Identity,
        provider: str,
        code: str,
        client: httpx.AsyncClient,
        *,
        state: Optional[str] = None,
        realm_id: Optional[str] = None,
        instance_url: Optional[str] = None,
        customer_id: Optional[str] = None,
        origin: Optional[str] = None,
    ) -> IntegrationRecord:
        """Exchange ``code`` for tokens and upsert the encrypted connection row."""
        connector = self._registry.require(provider)
        provider = connector.provider_name
        await self._consume_state(state, caller, provider)

        org_id = caller.organization_id
        if not org_id:
            if not caller.elevated:
                raise NotConnected("User organization not found, complete onboarding first", provider=provider)
            org_id = caller.user_id

        config_row = await self._store.get_provider_config(provider)
        credentials = self._resolver.resolve_app_credentials(connector, config_row)
        grant = await connector.exchange_code(code, self.redirect_uri(origin), credentials, client)

        scoped_id = await connector.scoped_id_from_grant(
            grant,
            {"realm_id": realm_id, "instance_url": instance_url, "customer_id": customer_id},
            client,
        )
        if connector.requires_scoped_id and not scoped_id:
            raise ReconnectRequired(
                f"{connector.display_name} did not return an account identifier", provider=provider
            )

        record = await self._store.upsert_integration(
            org_id,
            caller.user_id,
            provider,
            access_token=self._cipher.encrypt(grant.access_token),
            refresh_token=self._cipher.encrypt(grant.refresh_token or ""),
            connected_account=connector.account_label(grant),
            health=HEALTH_OK,
            scopes=scoped_id,
            last_synced_at=utcnow(),
        )
        logger.info("Stored %s connection for user %s", provider, caller.user_id)
        return record
