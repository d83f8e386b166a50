"""
Credential resolver — turn a stored configuration value into a usable secret.

A stored value is one of:
  • ``env:NAME``       → looked up in the process environment / secret store
  • an encrypted payload → decrypted with the process-wide cipher
  • anything else      → raw plaintext, returned as-is
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Mapping, Optional

from connectors.encryption import Encrypted, TokenCipher, parse_stored_value
from connectors.errors import NotConfigured, OAuthAppNotConfigured
from database.store import ProviderConfigRecord

if TYPE_CHECKING:
    from connectors.base import BaseConnector

logger = logging.getLogger(__name__)

ENV_PREFIX = "env:"


@dataclass(frozen=True)
class AppCredentials:
    """Resolved OAuth app registration for one provider."""

    client_id: str
    client_secret: str

    def __repr__(self) -> str:
        return f"AppCredentials(client_id={self.client_id!r}, client_secret=<redacted>)"


class CredentialResolver:
    def __init__(self, cipher: TokenCipher, environ: Optional[Mapping[str, str]] = None) -> None:
        self._cipher = cipher
        self._environ = os.environ if environ is None else environ

    def resolve(self, stored_value: Optional[str]) -> str:
        """Return the plaintext secret; ``""`` means "not configured"."""
        if not stored_value:
            return ""
        if stored_value.startswith(ENV_PREFIX):
            return self._environ.get(stored_value[len(ENV_PREFIX):], "") or ""
        stored = parse_stored_value(stored_value)
        if isinstance(stored, Encrypted):
            # Unsupported versions raise DecryptionError; never returned raw.
            return self._cipher.decrypt(stored_value)
        return stored.value

    def _fallback(self, connector: "BaseConnector") -> AppCredentials:
        prefix = connector.provider_name.upper()
        return AppCredentials(
            client_id=self._environ.get(f"{prefix}_CLIENT_ID", "") or "",
            client_secret=self._environ.get(f"{prefix}_CLIENT_SECRET", "") or "",
        )

    def resolve_app_credentials(
        self,
        connector: "BaseConnector",
        config_row: Optional[ProviderConfigRecord],
        *,
        require_secret: bool = True,
    ) -> AppCredentials:
        """
        Resolve the OAuth app registration for ``connector``.

        Strict connectors only accept their ``integration_configs`` row; a
        missing row is never papered over with process-wide credentials.
        """
        provider = connector.provider_name
        if config_row is None:
            if connector.strict_credentials:
                logger.warning("No OAuth app registration for strict provider %s", provider)
                raise OAuthAppNotConfigured(
                    f"{provider} requires its own OAuth app registration", provider=provider
                )
            creds = self._fallback(connector)
        elif not config_row.enabled:
            raise NotConfigured(f"{provider} integration is disabled", provider=provider)
        else:
            creds = AppCredentials(
                client_id=self.resolve(config_row.client_id),
                client_secret=self.resolve(config_row.client_secret),
            )

        if not creds.client_id or (require_secret and not creds.client_secret):
            logger.info("OAuth credentials for %s could not be resolved", provider)
            if connector.strict_credentials:
                raise OAuthAppNotConfigured(
                    f"{provider} OAuth app registration is incomplete", provider=provider
                )
            raise NotConfigured(f"{provider} OAuth app not configured", provider=provider)
        return creds

    def is_connectable(
        self, connector: "BaseConnector", config_row: Optional[ProviderConfigRecord]
    ) -> bool:
        """True if the provider may be offered to users as connectable."""
        try:
            self.resolve_app_credentials(connector, config_row)
        except NotConfigured:
            return False
        return True
