"""
Tests for the plaintext-to-encrypted token migration.
"""

import json
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from auth.identity import Identity
from connectors.encryption import TokenCipher
from connectors.errors import ConfigurationError, PermissionDenied
from connectors.migration import TokenMigration

OWNER = Identity(user_id="owner", role="owner", elevated=True)


@pytest.fixture
def migration(store, cipher):
    return TokenMigration(store, cipher)


def _seed(store, cipher):
    store.add_integration(user_id="u1", provider="hubspot", access_token="plain-at", refresh_token="plain-rt")
    store.add_integration(user_id="u2", provider="zoho", access_token=cipher.encrypt("at"), refresh_token=None)
    store.add_integration(user_id="u3", provider="stripe", access_token="plain-only", refresh_token="")
    store.add_config("hubspot", "hs-id", "hs-plain-secret")
    store.add_config("zoho", "zoho-id", "env:ZOHO_SECRET")
    store.add_config("pipedrive", "pd-id", "")


class TestMigration:
    @pytest.mark.asyncio
    async def test_first_run_encrypts_plaintext(self, migration, store, cipher):
        _seed(store, cipher)
        report = await migration.migrate_all(OWNER)

        assert report.integrations.model_dump() == {"migrated": 2, "skipped": 1, "errors": 0}
        assert report.provider_configs.model_dump() == {"migrated": 1, "skipped": 2, "errors": 0}
        hubspot = next(r for r in store.integrations.values() if r.provider == "hubspot")
        assert cipher.decrypt(hubspot.access_token) == "plain-at"
        assert cipher.decrypt(hubspot.refresh_token) == "plain-rt"
        configs = {c.provider: c for c in store.configs.values()}
        assert cipher.decrypt(configs["hubspot"].client_secret) == "hs-plain-secret"
        assert configs["zoho"].client_secret == "env:ZOHO_SECRET"

    @pytest.mark.asyncio
    async def test_second_run_skips_everything(self, migration, store, cipher):
        _seed(store, cipher)
        await migration.migrate_all(OWNER)
        snapshot = {k: (r.access_token, r.refresh_token) for k, r in store.integrations.items()}

        report = await migration.migrate_all(OWNER)

        assert report.integrations.model_dump() == {"migrated": 0, "skipped": 3, "errors": 0}
        assert report.provider_configs.model_dump() == {"migrated": 0, "skipped": 3, "errors": 0}
        assert snapshot == {k: (r.access_token, r.refresh_token) for k, r in store.integrations.items()}

    @pytest.mark.asyncio
    async def test_bad_rows_are_counted_not_fatal(self, migration, store, cipher):
        unknown = json.loads(cipher.encrypt("x"))
        unknown["alg"] = "rot13"
        store.add_integration(user_id="u1", provider="hubspot", access_token=json.dumps(unknown))
        store.add_integration(user_id="u2", provider="zoho", access_token="plain")
        store.add_integration(user_id="u3", provider="stripe", access_token="plain-too")

        real_update = store.update_integration
        calls = {"n": 0}

        async def flaky_update(integration_id, **fields):
            calls["n"] += 1
            if calls["n"] == 1:
                raise OperationalError("UPDATE", {}, Exception("lost connection"))
            await real_update(integration_id, **fields)

        store.update_integration = AsyncMock(side_effect=flaky_update)
        report = await migration.migrate_all(OWNER)

        assert report.integrations.errors == 2
        assert report.integrations.migrated == 1

    @pytest.mark.asyncio
    async def test_requires_elevated_caller(self, migration, store, cipher):
        _seed(store, cipher)
        with pytest.raises(PermissionDenied):
            await migration.migrate_all(Identity(user_id="u1", role="member"))
        hubspot = next(r for r in store.integrations.values() if r.provider == "hubspot")
        assert hubspot.access_token == "plain-at"

    @pytest.mark.asyncio
    async def test_role_name_alone_does_not_elevate(self, migration, store, cipher):
        _seed(store, cipher)
        with pytest.raises(PermissionDenied):
            await migration.migrate_all(Identity(user_id="u1", role="owner", elevated=False))

    @pytest.mark.asyncio
    async def test_requires_a_key(self, store):
        migration = TokenMigration(store, TokenCipher(None))
        with pytest.raises(ConfigurationError):
            await migration.migrate_all(OWNER)
