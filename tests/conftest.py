"""
Shared fixtures: an in-memory ``CredentialStore``, a keyed cipher, and the
services built on them (resolver, registry, token manager).
"""

import base64
import dataclasses
import os
import uuid

import pytest

from config.settings import Settings
from connectors.credentials import CredentialResolver
from connectors.encryption import TokenCipher, TokenKey
from connectors.registry import ConnectorRegistry
from connectors.token_manager import TokenManager
from database.store import (
    CONFIG_FIELDS,
    INTEGRATION_FIELDS,
    CredentialStore,
    IntegrationRecord,
    ProfileRecord,
    ProviderConfigRecord,
)

TEST_KEY = base64.b64encode(bytes(range(32))).decode()


class InMemoryCredentialStore(CredentialStore):
    def __init__(self):
        self.integrations = {}
        self.configs = {}
        self.states = {}
        self.profiles = {}

    # ── helpers for tests ──
    def add_integration(self, **fields) -> IntegrationRecord:
        fields.setdefault("id", str(uuid.uuid4()))
        fields.setdefault("org_id", "org-1")
        record = IntegrationRecord(**fields)
        self.integrations[record.id] = record
        return dataclasses.replace(record)

    def add_config(self, provider, client_id, client_secret, enabled=True) -> ProviderConfigRecord:
        record = ProviderConfigRecord(
            id=str(uuid.uuid4()), provider=provider,
            client_id=client_id, client_secret=client_secret, enabled=enabled,
        )
        self.configs[record.id] = record
        return record

    def add_profile(self, user_id, role="member", organization_id=None):
        self.profiles[user_id] = ProfileRecord(user_id=user_id, role=role, organization_id=organization_id)

    # ── contract ──
    async def get_integration(self, user_id, provider, org_id=None):
        for r in self.integrations.values():
            if r.user_id == user_id and r.provider == provider and (org_id is None or r.org_id == org_id):
                return dataclasses.replace(r)
        return None

    async def get_integration_by_id(self, integration_id):
        r = self.integrations.get(integration_id)
        return dataclasses.replace(r) if r else None

    async def list_integrations(self, user_id, providers=None):
        wanted = set(providers) if providers is not None else None
        return [
            dataclasses.replace(r) for r in self.integrations.values()
            if r.user_id == user_id and (wanted is None or r.provider in wanted)
        ]

    async def list_all_integrations(self):
        return [dataclasses.replace(r) for r in self.integrations.values()]

    async def upsert_integration(self, org_id, user_id, provider, **fields):
        assert set(fields) <= INTEGRATION_FIELDS
        for r in self.integrations.values():
            if (r.org_id, r.user_id, r.provider) == (org_id, user_id, provider):
                for name, value in fields.items():
                    setattr(r, name, value)
                return dataclasses.replace(r)
        return dataclasses.replace(
            self.add_integration(org_id=org_id, user_id=user_id, provider=provider, **fields)
        )

    async def update_integration(self, integration_id, **fields):
        assert set(fields) <= INTEGRATION_FIELDS
        record = self.integrations[integration_id]
        for name, value in fields.items():
            setattr(record, name, value)

    async def delete_integration(self, integration_id):
        return self.integrations.pop(integration_id, None) is not None

    async def get_provider_config(self, provider):
        for r in self.configs.values():
            if r.provider == provider:
                return dataclasses.replace(r)
        return None

    async def list_provider_configs(self):
        return [dataclasses.replace(r) for r in self.configs.values()]

    async def update_provider_config(self, config_id, **fields):
        assert set(fields) <= CONFIG_FIELDS
        record = self.configs[config_id]
        for name, value in fields.items():
            setattr(record, name, value)

    async def insert_oauth_state(self, record):
        self.states[record.state] = record

    async def get_oauth_state(self, state):
        return self.states.get(state)

    async def delete_oauth_state(self, state):
        self.states.pop(state, None)

    async def delete_expired_oauth_states(self, now):
        expired = [s for s, r in self.states.items() if r.expires_at < now]
        for s in expired:
            del self.states[s]
        return len(expired)

    async def get_profile(self, user_id):
        return self.profiles.get(user_id)


@pytest.fixture
def settings():
    return Settings(
        oauth_token_encryption_key=TEST_KEY,
        site_url="https://app.example.com",
        stripe_secret_key="",
        jwt_secret="test-secret",
        _env_file=None,
    )


@pytest.fixture
def cipher():
    return TokenCipher(TokenKey.from_secret(TEST_KEY))


@pytest.fixture
def store():
    return InMemoryCredentialStore()


@pytest.fixture
def registry():
    return ConnectorRegistry()


@pytest.fixture
def resolver(cipher):
    return CredentialResolver(cipher, environ={})


@pytest.fixture
def tokens(store, cipher, resolver, registry, settings):
    return TokenManager(store, cipher, resolver, registry, settings)


@pytest.fixture(autouse=True)
def _no_provider_env(monkeypatch):
    for name in list(os.environ):
        if name.endswith("_CLIENT_ID") or name.endswith("_CLIENT_SECRET"):
            monkeypatch.delenv(name, raising=False)
