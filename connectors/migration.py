"""
Token migration — encrypt plaintext secrets left over from before
encryption at rest.

Walks every ``integrations`` row (access + refresh token) and every
``integration_configs`` row (client secret).  Safe to re-run: values that
are already encrypted, empty, or ``env:`` indirections are skipped, so a
second run reports everything as skipped.  A bad row is counted and the
walk continues.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from auth.identity import Identity
from connectors.credentials import ENV_PREFIX
from connectors.encryption import Encrypted, TokenCipher, parse_stored_value
from connectors.errors import ConfigurationError, DecryptionError, PermissionDenied
from connectors.schemas import MigrationCounts, MigrationReport
from database.store import CredentialStore

logger = logging.getLogger(__name__)


class TokenMigration:
    def __init__(self, store: CredentialStore, cipher: TokenCipher) -> None:
        self._store = store
        self._cipher = cipher

    def _encrypted_updates(self, fields: Iterable[Tuple[str, Optional[str]]]) -> Dict[str, str]:
        """
        New column values for the plaintext fields in ``fields``.

        Raises ``DecryptionError`` for a payload in an unknown format; such a
        value is neither plaintext nor something this build can read.
        """
        updates = {}
        for name, value in fields:
            if not value or value.startswith(ENV_PREFIX):
                continue
            stored = parse_stored_value(value)
            if isinstance(stored, Encrypted):
                if not stored.payload.supported:
                    raise DecryptionError(f"{name} uses an unsupported encryption format")
                continue
            updates[name] = self._cipher.encrypt(stored.value)
        return updates

    async def migrate_all(self, identity: Identity) -> MigrationReport:
        if not identity.elevated:
            raise PermissionDenied("Only platform owners can run migrations")
        if not self._cipher.has_key:
            raise ConfigurationError("Encryption key is not configured; nothing can be migrated")

        logger.info("Token migration started by user %s", identity.user_id)
        report = MigrationReport(
            integrations=await self._migrate_integrations(),
            provider_configs=await self._migrate_provider_configs(),
        )
        logger.info(
            "Token migration complete: integrations=%s provider_configs=%s",
            report.integrations.model_dump(), report.provider_configs.model_dump(),
        )
        return report

    async def _migrate_integrations(self) -> MigrationCounts:
        counts = MigrationCounts()
        for row in await self._store.list_all_integrations():
            try:
                updates = self._encrypted_updates(
                    [("access_token", row.access_token), ("refresh_token", row.refresh_token)]
                )
                if updates:
                    await self._store.update_integration(row.id, **updates)
                    counts.migrated += 1
                else:
                    counts.skipped += 1
            except (DecryptionError, SQLAlchemyError, OSError) as exc:
                logger.warning("Integration %s not migrated: %s", row.id, type(exc).__name__)
                counts.errors += 1
        return counts

    async def _migrate_provider_configs(self) -> MigrationCounts:
        counts = MigrationCounts()
        for row in await self._store.list_provider_configs():
            try:
                updates = self._encrypted_updates([("client_secret", row.client_secret)])
                if updates:
                    await self._store.update_provider_config(row.id, **updates)
                    counts.migrated += 1
                else:
                    counts.skipped += 1
            except (DecryptionError, SQLAlchemyError, OSError) as exc:
                logger.warning("Provider config %s not migrated: %s", row.provider, type(exc).__name__)
                counts.errors += 1
        return counts
