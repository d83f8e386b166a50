"""
Credential store — row-level access to ``integrations``,
``integration_configs``, ``oauth_states`` and ``profiles``.

``CredentialStore`` is the contract the vault codes against; rows cross
it as plain dataclasses so nothing outside this module touches an ORM
session.  ``SqlCredentialStore`` implements it over async SQLAlchemy.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from database.models import Integration, IntegrationConfig, OAuthState, Profile

logger = logging.getLogger(__name__)

INTEGRATION_FIELDS = frozenset(
    {
        "access_token",
        "refresh_token",
        "connected_account",
        "health",
        "scopes",
        "last_synced_at",
    }
)
CONFIG_FIELDS = frozenset({"client_id", "client_secret", "enabled", "updated_at"})


# ── Records ─────────────────────────────────────────────────────────────


@dataclass
class IntegrationRecord:
    id: str
    org_id: str
    user_id: str
    provider: str
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    connected_account: Optional[str] = None
    health: Optional[str] = None
    scopes: Optional[str] = None
    last_synced_at: Optional[datetime] = None

    def __repr__(self) -> str:
        # Tokens stay out of reprs, tracebacks and log lines.
        return (
            f"IntegrationRecord(id={self.id!r}, user_id={self.user_id!r}, "
            f"provider={self.provider!r}, health={self.health!r})"
        )


@dataclass
class ProviderConfigRecord:
    id: str
    provider: str
    client_id: str
    client_secret: str
    enabled: bool = True

    def __repr__(self) -> str:
        return f"ProviderConfigRecord(provider={self.provider!r}, enabled={self.enabled!r})"


@dataclass
class OAuthStateRecord:
    state: str
    user_id: str
    provider: str
    expires_at: datetime


@dataclass
class ProfileRecord:
    user_id: str
    role: str = "member"
    organization_id: Optional[str] = None
    email: Optional[str] = None


# ── Contract ────────────────────────────────────────────────────────────


class CredentialStore(ABC):
    """Row-level CRUD over the vault tables."""

    @abstractmethod
    async def get_integration(
        self, user_id: str, provider: str, org_id: Optional[str] = None
    ) -> Optional[IntegrationRecord]:
        ...

    @abstractmethod
    async def get_integration_by_id(self, integration_id: str) -> Optional[IntegrationRecord]:
        ...

    @abstractmethod
    async def list_integrations(
        self, user_id: str, providers: Optional[Iterable[str]] = None
    ) -> List[IntegrationRecord]:
        ...

    @abstractmethod
    async def list_all_integrations(self) -> List[IntegrationRecord]:
        ...

    @abstractmethod
    async def upsert_integration(
        self, org_id: str, user_id: str, provider: str, **fields: Any
    ) -> IntegrationRecord:
        """Insert or update the row keyed by (org, user, provider)."""

    @abstractmethod
    async def update_integration(self, integration_id: str, **fields: Any) -> None:
        ...

    @abstractmethod
    async def delete_integration(self, integration_id: str) -> bool:
        ...

    @abstractmethod
    async def get_provider_config(self, provider: str) -> Optional[ProviderConfigRecord]:
        ...

    @abstractmethod
    async def list_provider_configs(self) -> List[ProviderConfigRecord]:
        ...

    @abstractmethod
    async def update_provider_config(self, config_id: str, **fields: Any) -> None:
        ...

    @abstractmethod
    async def insert_oauth_state(self, record: OAuthStateRecord) -> None:
        ...

    @abstractmethod
    async def get_oauth_state(self, state: str) -> Optional[OAuthStateRecord]:
        ...

    @abstractmethod
    async def delete_oauth_state(self, state: str) -> None:
        ...

    @abstractmethod
    async def delete_expired_oauth_states(self, now: datetime) -> int:
        ...

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        ...


# ── SQLAlchemy implementation ───────────────────────────────────────────


def _to_uuid(value: str | uuid.UUID) -> uuid.UUID:
    return uuid.UUID(value) if isinstance(value, str) else value


def _check_fields(fields: dict, allowed: frozenset) -> None:
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Unknown columns: {sorted(unknown)}")


def _integration_record(row: Integration) -> IntegrationRecord:
    return IntegrationRecord(
        id=str(row.id),
        org_id=str(row.org_id),
        user_id=str(row.user_id),
        provider=row.provider,
        access_token=row.access_token,
        refresh_token=row.refresh_token,
        connected_account=row.connected_account,
        health=row.health,
        scopes=row.scopes,
        last_synced_at=row.last_synced_at,
    )


def _config_record(row: IntegrationConfig) -> ProviderConfigRecord:
    return ProviderConfigRecord(
        id=str(row.id),
        provider=row.provider,
        client_id=row.client_id,
        client_secret=row.client_secret,
        enabled=bool(row.enabled),
    )


class SqlCredentialStore(CredentialStore):
    """Each call runs in its own short session; single-row writes only."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_integration(self, user_id, provider, org_id=None):
        stmt = select(Integration).where(
            Integration.user_id == _to_uuid(user_id),
            Integration.provider == provider,
        )
        if org_id is not None:
            stmt = stmt.where(Integration.org_id == _to_uuid(org_id))
        async with self._session_factory() as session:
            result = await session.execute(stmt.order_by(Integration.created_at.desc()).limit(1))
            row = result.scalar_one_or_none()
            return _integration_record(row) if row else None

    async def get_integration_by_id(self, integration_id):
        async with self._session_factory() as session:
            row = await session.get(Integration, _to_uuid(integration_id))
            return _integration_record(row) if row else None

    async def list_integrations(self, user_id, providers=None):
        stmt = select(Integration).where(Integration.user_id == _to_uuid(user_id))
        if providers is not None:
            stmt = stmt.where(Integration.provider.in_(list(providers)))
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [_integration_record(r) for r in result.scalars().all()]

    async def list_all_integrations(self):
        async with self._session_factory() as session:
            result = await session.execute(select(Integration))
            return [_integration_record(r) for r in result.scalars().all()]

    async def upsert_integration(self, org_id, user_id, provider, **fields):
        _check_fields(fields, INTEGRATION_FIELDS)
        values = {
            "org_id": _to_uuid(org_id),
            "user_id": _to_uuid(user_id),
            "provider": provider,
            **fields,
        }
        stmt = (
            pg_insert(Integration)
            .values(id=uuid.uuid4(), **values)
            .on_conflict_do_update(
                index_elements=["org_id", "user_id", "provider"],
                set_=fields,
            )
            .returning(Integration)
        )
        async with self._session_factory() as session:
            try:
                result = await session.execute(stmt)
                row = result.scalar_one()
                await session.commit()
            except Exception:
                await session.rollback()
                raise
            logger.info("Stored %s integration for user %s", provider, user_id)
            return _integration_record(row)

    async def update_integration(self, integration_id, **fields):
        _check_fields(fields, INTEGRATION_FIELDS)
        if not fields:
            return
        async with self._session_factory() as session:
            await session.execute(
                update(Integration)
                .where(Integration.id == _to_uuid(integration_id))
                .values(**fields)
            )
            await session.commit()

    async def delete_integration(self, integration_id):
        async with self._session_factory() as session:
            result = await session.execute(
                delete(Integration).where(Integration.id == _to_uuid(integration_id))
            )
            await session.commit()
            return bool(result.rowcount)

    async def get_provider_config(self, provider):
        async with self._session_factory() as session:
            result = await session.execute(
                select(IntegrationConfig).where(IntegrationConfig.provider == provider)
            )
            row = result.scalar_one_or_none()
            return _config_record(row) if row else None

    async def list_provider_configs(self):
        async with self._session_factory() as session:
            result = await session.execute(select(IntegrationConfig))
            return [_config_record(r) for r in result.scalars().all()]

    async def update_provider_config(self, config_id, **fields):
        _check_fields(fields, CONFIG_FIELDS)
        if not fields:
            return
        async with self._session_factory() as session:
            await session.execute(
                update(IntegrationConfig)
                .where(IntegrationConfig.id == _to_uuid(config_id))
                .values(**fields)
            )
            await session.commit()

    async def insert_oauth_state(self, record):
        async with self._session_factory() as session:
            session.add(
                OAuthState(
                    state=record.state,
                    user_id=_to_uuid(record.user_id),
                    provider=record.provider,
                    expires_at=record.expires_at,
                )
            )
            await session.commit()

    async def get_oauth_state(self, state):
        async with self._session_factory() as session:
            result = await session.execute(select(OAuthState).where(OAuthState.state == state))
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return OAuthStateRecord(
                state=row.state,
                user_id=str(row.user_id),
                provider=row.provider,
                expires_at=row.expires_at,
            )

    async def delete_oauth_state(self, state):
        async with self._session_factory() as session:
            await session.execute(delete(OAuthState).where(OAuthState.state == state))
            await session.commit()

    async def delete_expired_oauth_states(self, now):
        async with self._session_factory() as session:
            result = await session.execute(delete(OAuthState).where(OAuthState.expires_at < now))
            await session.commit()
            return result.rowcount or 0

    async def get_profile(self, user_id):
        async with self._session_factory() as session:
            row = await session.get(Profile, _to_uuid(user_id))
            if row is None:
                return None
            return ProfileRecord(
                user_id=str(row.user_id),
                role=row.role or "member",
                organization_id=str(row.organization_id) if row.organization_id else None,
                email=row.email,
            )
