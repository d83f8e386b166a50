"""
Tests for secret redaction, bearer tokens and the connector registry.
"""

import logging

import pytest
from fastapi import HTTPException

from auth.jwt import create_token, verify_token
from connectors.errors import UnsupportedProvider
from connectors.redaction import REDACTED, SecretRedactingFilter, redact, safe_details
from connectors.registry import ConnectorRegistry


class TestRedaction:
    def test_bearer_and_basic_headers(self):
        text = redact("Authorization: Bearer eyJabc.def-123 then Basic dXNlcjpwYXNz")
        assert "eyJabc" not in text
        assert "dXNlcjpwYXNz" not in text
        assert text.count(REDACTED) == 2

    def test_token_pairs_in_bodies(self):
        text = redact('{"access_token": "at-123", "refresh_token":"rt-456", "expires_in": 3600}')
        assert "at-123" not in text and "rt-456" not in text
        assert '"expires_in": 3600' in text

    def test_query_string_secret(self):
        assert redact("client_secret=shh&grant_type=refresh_token") == (
            f"client_secret={REDACTED}&grant_type=refresh_token"
        )

    def test_safe_details_drops_secret_keys(self):
        details = {"Access_Token": "x", "code": "abc", "status": 400, "provider": "xero"}
        assert safe_details(details) == {"status": 400, "provider": "xero"}
        assert safe_details(None) == {}

    def test_filter_rewrites_record(self):
        record = logging.LogRecord(
            "vault", logging.INFO, __file__, 1, "sent %s", ("Bearer secret-token",), None
        )
        assert SecretRedactingFilter().filter(record) is True
        assert record.getMessage() == f"sent Bearer {REDACTED}"


class TestBearerTokens:
    def test_round_trip(self):
        token = create_token("user-9", secret="s3")
        assert verify_token(token, secret="s3") == "user-9"

    def test_expired(self):
        token = create_token("user-9", expires_in=-10, secret="s3")
        with pytest.raises(HTTPException) as exc_info:
            verify_token(token, secret="s3")
        assert exc_info.value.status_code == 401

    @pytest.mark.parametrize("token", ["", "no-dot", "!!!.abc"])
    def test_malformed(self, token):
        with pytest.raises(HTTPException):
            verify_token(token, secret="s3")


class TestRegistry:
    def test_lookup_is_case_insensitive(self):
        registry = ConnectorRegistry()
        assert registry.require("QuickBooks").provider_name == "quickbooks"
        assert "XERO" in registry

    def test_unknown_provider(self):
        with pytest.raises(UnsupportedProvider):
            ConnectorRegistry().require("myspace")

    def test_oauth_only_providers_are_not_aggregated(self):
        registry = ConnectorRegistry()
        aggregatable = set(registry.aggregatable())
        assert "slack" in registry
        assert "slack" not in aggregatable
        assert "hubspot" in aggregatable
