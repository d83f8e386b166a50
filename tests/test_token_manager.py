"""
Tests for token refresh: rotation, re-auth marking, proactive policy
and the per-connection lock.
"""

import asyncio
import gc
from datetime import timedelta

import httpx
import pytest

from connectors.errors import NotConnected, ProviderUnavailable, ReauthRequired, RefreshFailed
from connectors.normalize import utcnow
from connectors.providers import HubSpotConnector, QuickBooksConnector


def _client(responses, calls=None):
    """Serve queued (status, body) pairs from the token endpoint."""
    queue = list(responses)

    async def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        await asyncio.sleep(0)
        status, body = queue.pop(0)
        return httpx.Response(status, json=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _row(store, cipher, provider="hubspot", refresh="rt-old", **extra):
    store.add_config(provider, "client-id", "client-secret")
    return store.add_integration(
        user_id="user-1",
        provider=provider,
        access_token=cipher.encrypt("at-old"),
        refresh_token=cipher.encrypt(refresh) if refresh else None,
        health="ok",
        **extra,
    )


class TestRefresh:
    @pytest.mark.asyncio
    async def test_rotating_refresh_token_is_replaced(self, tokens, store, cipher):
        row = _row(store, cipher)
        async with _client([(200, {"access_token": "at-new", "refresh_token": "rt-new"})]) as client:
            updated = await tokens.refresh(row, client)

        stored = store.integrations[row.id]
        assert cipher.decrypt(stored.access_token) == "at-new"
        assert cipher.decrypt(stored.refresh_token) == "rt-new"
        assert stored.health == "ok"
        assert stored.last_synced_at is not None
        assert tokens.access_token_for(updated) == "at-new"

    @pytest.mark.asyncio
    async def test_stable_refresh_token_is_kept(self, tokens, store, cipher):
        row = _row(store, cipher)
        original_refresh = store.integrations[row.id].refresh_token
        async with _client([(200, {"access_token": "at-new"})]) as client:
            await tokens.refresh(row, client)
        assert store.integrations[row.id].refresh_token == original_refresh

    @pytest.mark.asyncio
    async def test_rejected_refresh_marks_reauth(self, tokens, store, cipher):
        row = _row(store, cipher)
        async with _client([(400, {"error": "invalid_grant"})]) as client:
            with pytest.raises(RefreshFailed) as exc_info:
                await tokens.refresh(row, client)
        assert exc_info.value.oauth_error == "invalid_grant"
        assert isinstance(exc_info.value, ReauthRequired)
        assert store.integrations[row.id].health == "reauth_required"

    @pytest.mark.asyncio
    async def test_missing_refresh_token_marks_reauth(self, tokens, store, cipher):
        row = _row(store, cipher, refresh=None)
        async with _client([]) as client:
            with pytest.raises(ReauthRequired):
                await tokens.refresh(row, client)
        assert store.integrations[row.id].health == "reauth_required"

    @pytest.mark.asyncio
    async def test_provider_outage_leaves_row_alone(self, tokens, store, cipher):
        row = _row(store, cipher)
        async with _client([(503, {})]) as client:
            with pytest.raises(ProviderUnavailable):
                await tokens.refresh(row, client)
        assert store.integrations[row.id].health == "ok"

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_hit_the_provider_once(self, tokens, store, cipher):
        row = _row(store, cipher, provider="quickbooks")
        calls = []
        async with _client(
            [(200, {"access_token": "at-new", "refresh_token": "rt-2"})], calls=calls
        ) as client:
            first, second = await asyncio.gather(tokens.refresh(row, client), tokens.refresh(row, client))

        assert len(calls) == 1
        assert tokens.access_token_for(first) == "at-new"
        assert tokens.access_token_for(second) == "at-new"

    @pytest.mark.asyncio
    async def test_locks_are_released_after_refresh(self, tokens, store, cipher):
        rows = [_row(store, cipher, provider=p) for p in ("hubspot", "zoho", "pipedrive")]
        async with _client([(200, {"access_token": "at-new"})] * len(rows)) as client:
            for row in rows:
                await tokens.refresh(row, client)

        gc.collect()
        assert len(tokens._locks) == 0

    def test_access_token_for_empty_row(self, tokens, store):
        row = store.add_integration(user_id="u", provider="hubspot", access_token="")
        with pytest.raises(NotConnected):
            tokens.access_token_for(row)


class TestProactivePolicy:
    def test_lazy_provider_never_refreshes_up_front(self, tokens, store, cipher):
        row = _row(store, cipher)
        assert tokens.needs_proactive_refresh(HubSpotConnector(), row) is False

    def test_unknown_freshness(self, tokens, store, cipher):
        row = _row(store, cipher, provider="quickbooks")
        assert tokens.needs_proactive_refresh(QuickBooksConnector(), row) is True

    def test_recent_token(self, tokens, store, cipher):
        row = _row(store, cipher, provider="quickbooks", last_synced_at=utcnow() - timedelta(minutes=10))
        assert tokens.needs_proactive_refresh(QuickBooksConnector(), row) is False

    def test_token_inside_buffer(self, tokens, store, cipher):
        row = _row(store, cipher, provider="quickbooks", last_synced_at=utcnow() - timedelta(minutes=59))
        assert tokens.needs_proactive_refresh(QuickBooksConnector(), row) is True

    def test_naive_timestamp_is_utc(self, tokens, store, cipher):
        stamp = (utcnow() - timedelta(minutes=5)).replace(tzinfo=None)
        row = _row(store, cipher, provider="quickbooks", last_synced_at=stamp)
        assert tokens.needs_proactive_refresh(QuickBooksConnector(), row) is False

    @pytest.mark.asyncio
    async def test_ensure_fresh_refreshes_stale_quickbooks(self, tokens, store, cipher):
        row = _row(store, cipher, provider="quickbooks")
        async with _client([(200, {"access_token": "at-new", "refresh_token": "rt-2"})]) as client:
            fresh = await tokens.ensure_fresh(row, client)
        assert tokens.access_token_for(fresh) == "at-new"
