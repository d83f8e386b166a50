"""
Connector API routes — provider list, OAuth start/callback, aggregated
data, CRM search, disconnect and the admin token migration.

Route prefix: /api/v1/connectors
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from auth.dependencies import get_current_user_id, get_identity, get_settings, get_store
from auth.identity import Identity
from config.settings import Settings
from connectors.aggregator import Aggregator
from connectors.credentials import CredentialResolver
from connectors.errors import (
    ConfigurationError,
    DecryptionError,
    NotConnected,
    PermissionDenied,
    ProviderAuthError,
    ProviderUnavailable,
    ReauthRequired,
    UnsupportedProvider,
    VaultError,
)
from connectors.migration import TokenMigration
from connectors.oauth_flow import AuthorizationFlow
from connectors.registry import ConnectorRegistry
from connectors.schemas import (
    AggregateResult,
    CallbackRequest,
    MigrationReport,
    SearchRequest,
    SearchResult,
    StartAuthorizationRequest,
    StartAuthorizationResponse,
)
from database.store import CredentialStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["connectors"])

# ── Error mapping ──────────────────────────────────────────────────────

_STATUS_BY_ERROR = [
    (UnsupportedProvider, status.HTTP_400_BAD_REQUEST),
    (PermissionDenied, status.HTTP_403_FORBIDDEN),
    (NotConnected, status.HTTP_409_CONFLICT),
    (ReauthRequired, status.HTTP_409_CONFLICT),
    (ProviderUnavailable, status.HTTP_502_BAD_GATEWAY),
    (ProviderAuthError, status.HTTP_502_BAD_GATEWAY),
    (DecryptionError, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
]


def to_http_error(exc: VaultError) -> HTTPException:
    """Map a vault error to an HTTP error carrying its code, never provider output."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    if status_code >= 500:
        logger.error("%s failed: %s", exc.provider or "connector", type(exc).__name__)
    return HTTPException(status_code=status_code, detail={"code": exc.code, "message": str(exc)})


# ── Service lookups (built once in main.create_app) ────────────────────


def get_registry(request: Request) -> ConnectorRegistry:
    return request.app.state.registry


def get_resolver(request: Request) -> CredentialResolver:
    return request.app.state.resolver


def get_flow(request: Request) -> AuthorizationFlow:
    return request.app.state.flow


def get_aggregator(request: Request) -> Aggregator:
    return request.app.state.aggregator


def get_migration(request: Request) -> TokenMigration:
    return request.app.state.migration


# ── Routes ─────────────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(
    user_id: str = Depends(get_current_user_id),
    registry: ConnectorRegistry = Depends(get_registry),
    resolver: CredentialResolver = Depends(get_resolver),
    store: CredentialStore = Depends(get_store),
) -> List[Dict]:
    """List providers and whether each can be connected right now."""
    try:
        configs = {row.provider: row for row in await store.list_provider_configs()}
        return [
            {
                "provider": c.provider_name,
                "display_name": c.display_name,
                "category": c.category,
                "configured": resolver.is_connectable(c, configs.get(c.provider_name)),
            }
            for c in registry.connectors()
        ]
    except VaultError as exc:
        raise to_http_error(exc) from exc


@router.post("/oauth/start", response_model=StartAuthorizationResponse)
async def start_authorization(
    body: StartAuthorizationRequest,
    user_id: str = Depends(get_current_user_id),
    flow: AuthorizationFlow = Depends(get_flow),
    origin: Optional[str] = Header(default=None),
) -> StartAuthorizationResponse:
    try:
        result = await flow.start(body.provider, user_id, origin=origin)
    except VaultError as exc:
        raise to_http_error(exc) from exc
    return StartAuthorizationResponse(url=result.url, provider=result.provider, warning=result.warning)


@router.post("/oauth/callback")
async def oauth_callback(
    body: CallbackRequest,
    identity: Identity = Depends(get_identity),
    flow: AuthorizationFlow = Depends(get_flow),
    settings: Settings = Depends(get_settings),
    origin: Optional[str] = Header(default=None),
) -> Dict:
    """Complete the OAuth flow: exchange the code and store the connection."""
    try:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
            record = await flow.complete(
                identity,
                body.provider,
                body.code,
                client,
                state=body.state,
                realm_id=body.realm_id,
                instance_url=body.instance_url,
                customer_id=body.customer_id,
                origin=origin,
            )
    except VaultError as exc:
        raise to_http_error(exc) from exc
    return {
        "success": True,
        "provider": record.provider,
        "connected_account": record.connected_account,
    }


@router.get("/financial", response_model=AggregateResult)
async def financial_summary(
    identity: Identity = Depends(get_identity),
    aggregator: Aggregator = Depends(get_aggregator),
) -> AggregateResult:
    try:
        return await aggregator.aggregate(identity)
    except VaultError as exc:
        raise to_http_error(exc) from exc


@router.post("/crm/search", response_model=SearchResult)
async def crm_search(
    body: SearchRequest,
    identity: Identity = Depends(get_identity),
    aggregator: Aggregator = Depends(get_aggregator),
) -> SearchResult:
    """Search contacts or deals in the caller's connected CRM."""
    try:
        return await aggregator.search(identity, body.kind, body.query, provider=body.provider)
    except VaultError as exc:
        raise to_http_error(exc) from exc


@router.get("/connected")
async def connection_status(
    user_id: str = Depends(get_current_user_id),
    aggregator: Aggregator = Depends(get_aggregator),
) -> Dict[str, bool]:
    return {"connected": await aggregator.is_connected(user_id)}


@router.delete("/{provider}")
async def disconnect(
    provider: str,
    user_id: str = Depends(get_current_user_id),
    registry: ConnectorRegistry = Depends(get_registry),
    store: CredentialStore = Depends(get_store),
) -> Dict[str, bool]:
    """Delete the caller's stored connection(s) for ``provider``."""
    try:
        connector = registry.require(provider)
    except VaultError as exc:
        raise to_http_error(exc) from exc
    rows = await store.list_integrations(user_id, providers=[connector.provider_name])
    if not rows:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Connection not found")
    for row in rows:
        await store.delete_integration(row.id)
    logger.info("Disconnected %s for user %s", connector.provider_name, user_id)
    return {"success": True}


@router.post("/admin/migrate-tokens", response_model=MigrationReport)
async def migrate_tokens(
    identity: Identity = Depends(get_identity),
    migration: TokenMigration = Depends(get_migration),
) -> MigrationReport:
    try:
        return await migration.migrate_all(identity)
    except VaultError as exc:
        raise to_http_error(exc) from exc
