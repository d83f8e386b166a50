"""Provider adapters: one ``BaseConnector`` subclass per external API."""

from connectors.providers.google_drive import GoogleDriveConnector
from connectors.providers.hubspot import HubSpotConnector
from connectors.providers.pipedrive import PipedriveConnector
from connectors.providers.quickbooks import QuickBooksConnector
from connectors.providers.salesforce import SalesforceConnector
from connectors.providers.stripe import StripeConnector
from connectors.providers.xero import XeroConnector
from connectors.providers.zoho import ZohoConnector

__all__ = [
    "GoogleDriveConnector",
    "HubSpotConnector",
    "PipedriveConnector",
    "QuickBooksConnector",
    "SalesforceConnector",
    "StripeConnector",
    "XeroConnector",
    "ZohoConnector",
]
