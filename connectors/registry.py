"""
ConnectorRegistry — maps provider slugs to connectors.

Built once at startup and handed to the services that need it.  Adding a
provider means adding a row to ``OAUTH_CONFIGS`` and a connector below;
nothing else branches on the provider name.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from connectors.base import BaseConnector, OAuthOnlyConnector
from connectors.errors import UnsupportedProvider
from connectors.oauth_config import OAUTH_CONFIGS
from connectors.providers import (
    GoogleDriveConnector,
    HubSpotConnector,
    PipedriveConnector,
    QuickBooksConnector,
    SalesforceConnector,
    StripeConnector,
    XeroConnector,
    ZohoConnector,
)

logger = logging.getLogger(__name__)


# ── All known connectors, add new ones here ─────────────────────────────


def default_connectors() -> List[BaseConnector]:
    return [
        QuickBooksConnector(),
        XeroConnector(),
        StripeConnector(),
        HubSpotConnector(),
        SalesforceConnector(),
        ZohoConnector(),
        PipedriveConnector(),
        GoogleDriveConnector(),
        OAuthOnlyConnector("microsoft", "Microsoft 365"),
        OAuthOnlyConnector("slack", "Slack"),
        OAuthOnlyConnector("dropbox", "Dropbox", category="storage"),
        OAuthOnlyConnector("zoom", "Zoom"),
    ]


class ConnectorRegistry:
    """Provider slug → connector, fixed after construction."""

    def __init__(self, connectors: Optional[Iterable[BaseConnector]] = None) -> None:
        self._connectors: Dict[str, BaseConnector] = {}
        for conn in connectors if connectors is not None else default_connectors():
            if conn.provider_name not in OAUTH_CONFIGS:
                raise ValueError(f"No OAuth endpoints configured for {conn.provider_name!r}")
            self._connectors[conn.provider_name] = conn
            logger.debug("Connector registered: %s (%s)", conn.display_name, conn.provider_name)
        logger.info("Connector registry ready: %d providers", len(self._connectors))

    def get(self, provider: str) -> Optional[BaseConnector]:
        """Get a connector by provider name."""
        return self._connectors.get((provider or "").lower())

    def require(self, provider: str) -> BaseConnector:
        connector = self.get(provider)
        if connector is None:
            raise UnsupportedProvider(f"Unsupported provider: {provider}", provider=provider)
        return connector

    def __contains__(self, provider: str) -> bool:
        return self.get(provider) is not None

    def providers(self) -> List[str]:
        return list(self._connectors)

    def aggregatable(self) -> List[str]:
        """Providers whose data the aggregator can fetch."""
        return [name for name, c in self._connectors.items() if c.supports_fetch]

    def searchable(self) -> List[str]:
        """CRM providers that answer contact / deal searches, in registration order."""
        return [name for name, c in self._connectors.items() if c.supports_search]

    def connectors(self) -> List[BaseConnector]:
        return list(self._connectors.values())
