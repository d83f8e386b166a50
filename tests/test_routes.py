"""
HTTP-level tests for the connector routes: auth, error mapping and the
request/response shapes.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from auth.jwt import create_token
from connectors.schemas import Contact, SearchResult
from main import create_app

API = "/api/v1/connectors"


@pytest.fixture
def client(settings, store):
    app = create_app(settings, store=store)
    with TestClient(app) as test_client:
        yield test_client


def _auth(user_id="user-1"):
    return {"Authorization": f"Bearer {create_token(user_id, secret='test-secret')}"}


class TestAuth:
    def test_missing_bearer_is_rejected(self, client):
        assert client.get(f"{API}/connected").status_code in (401, 403)

    def test_bad_signature_is_rejected(self, client):
        token = create_token("user-1", secret="other-secret")
        response = client.get(f"{API}/connected", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestProviders:
    def test_lists_every_registered_provider(self, client, store):
        store.add_config("hubspot", "hs-id", "hs-secret")
        response = client.get(f"{API}/providers", headers=_auth())

        assert response.status_code == 200
        by_name = {p["provider"]: p for p in response.json()}
        assert {"quickbooks", "xero", "stripe", "hubspot", "salesforce", "zoho", "pipedrive", "google"} <= set(by_name)
        assert by_name["hubspot"]["configured"] is True
        assert by_name["xero"]["configured"] is False


class TestStartAuthorization:
    def test_returns_consent_url(self, client, store):
        store.add_config("hubspot", "hs-id", "hs-secret")
        response = client.post(
            f"{API}/oauth/start",
            json={"provider": "hubspot"},
            headers={**_auth(), "Origin": "https://tenant.example.com"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["provider"] == "hubspot"
        assert body["warning"] is None
        assert "redirect_uri=https%3A%2F%2Ftenant.example.com%2Fintegrations%2Fcallback" in body["url"]
        assert len(store.states) == 1

    def test_unknown_provider_is_400(self, client):
        response = client.post(f"{API}/oauth/start", json={"provider": "myspace"}, headers=_auth())
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "UNSUPPORTED_PROVIDER"

    def test_unconfigured_provider_is_500_with_code(self, client):
        response = client.post(f"{API}/oauth/start", json={"provider": "xero"}, headers=_auth())
        assert response.status_code == 500
        assert response.json()["detail"]["code"].startswith("OAUTH_APP_")


class TestAggregationRoutes:
    def test_financial_with_nothing_connected(self, client):
        response = client.get(f"{API}/financial", headers=_auth())
        assert response.status_code == 200
        assert response.json() == {"connected": False, "data": [], "issues": []}

    def test_connected_flag(self, client, store):
        assert client.get(f"{API}/connected", headers=_auth()).json() == {"connected": False}
        store.add_integration(user_id="user-1", provider="hubspot", access_token="x")
        assert client.get(f"{API}/connected", headers=_auth()).json() == {"connected": True}


class TestDisconnect:
    def test_missing_connection_is_404(self, client):
        assert client.delete(f"{API}/hubspot", headers=_auth()).status_code == 404

    def test_deletes_only_the_callers_rows(self, client, store):
        mine = store.add_integration(user_id="user-1", provider="hubspot", access_token="x")
        theirs = store.add_integration(user_id="user-2", provider="hubspot", access_token="y")

        response = client.delete(f"{API}/HubSpot", headers=_auth())

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert mine.id not in store.integrations
        assert theirs.id in store.integrations


class TestMigrationRoute:
    def test_member_is_forbidden(self, client, store):
        store.add_profile("user-1", role="member", organization_id="org-1")
        response = client.post(f"{API}/admin/migrate-tokens", headers=_auth())
        assert response.status_code == 403
        assert response.json()["detail"]["code"] == "FORBIDDEN"

    def test_owner_gets_counts(self, client, store):
        store.add_profile("boss", role="platform_owner", organization_id="org-1")
        store.add_integration(user_id="u1", provider="hubspot", access_token="plain")

        response = client.post(f"{API}/admin/migrate-tokens", headers=_auth("boss"))

        assert response.status_code == 200
        assert response.json()["integrations"] == {"migrated": 1, "skipped": 0, "errors": 0}


class TestAppSettings:
    """The app decides auth and privilege from the settings it was built with."""

    @pytest.fixture
    def strict_client(self, settings, store):
        strict = settings.model_copy(
            update={
                "elevated_roles": ["platform_owner"],
                "jwt_secret": "strict-secret",
                "stripe_secret_key": "sk_platform",
            }
        )
        with TestClient(create_app(strict, store=store)) as test_client:
            yield test_client

    def test_tokens_are_checked_against_the_app_secret(self, strict_client):
        ok = {"Authorization": f"Bearer {create_token('user-1', secret='strict-secret')}"}
        assert strict_client.get(f"{API}/connected", headers=ok).status_code == 200
        assert strict_client.get(f"{API}/connected", headers=_auth()).status_code == 401

    def test_role_outside_app_elevated_roles_is_not_elevated(self, strict_client, store):
        store.add_profile("user-1", role="owner", organization_id="org-1")
        headers = {"Authorization": f"Bearer {create_token('user-1', secret='strict-secret')}"}

        migrate = strict_client.post(f"{API}/admin/migrate-tokens", headers=headers)
        financial = strict_client.get(f"{API}/financial", headers=headers)

        assert migrate.status_code == 403
        # No platform Stripe view was attempted for a non-elevated caller.
        assert financial.json() == {"connected": False, "data": [], "issues": []}


class TestCrmSearchRoute:
    def test_nothing_connected_is_409(self, client):
        response = client.post(f"{API}/crm/search", json={"kind": "contact", "query": "ada"}, headers=_auth())
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "OAUTH_REQUIRED"

    def test_non_crm_provider_is_400(self, client):
        response = client.post(
            f"{API}/crm/search",
            json={"kind": "deal", "query": "renewal", "provider": "quickbooks"},
            headers=_auth(),
        )
        assert response.status_code == 400

    @pytest.mark.parametrize("body", [{"kind": "contact", "query": ""}, {"kind": "lead", "query": "ada"}])
    def test_invalid_body_is_422(self, client, body):
        assert client.post(f"{API}/crm/search", json=body, headers=_auth()).status_code == 422

    def test_returns_matches(self, client):
        found = SearchResult(
            provider="hubspot", kind="contact", contacts=[Contact(id="1", name="Ada Lovelace")]
        )
        client.app.state.aggregator.search = AsyncMock(return_value=found)

        response = client.post(f"{API}/crm/search", json={"kind": "contact", "query": "ada"}, headers=_auth())

        assert response.status_code == 200
        assert response.json()["contacts"][0]["name"] == "Ada Lovelace"
        _, kind, query = client.app.state.aggregator.search.call_args.args
        assert (kind, query) == ("contact", "ada")
