"""
Static OAuth endpoint table, keyed by provider slug.

Scopes and extra query parameters are data, not logic: adding a provider
means adding a row here (and, if it has data to aggregate, a connector).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Tuple


@dataclass(frozen=True)
class OAuthEndpoints:
    auth_url: str
    token_url: str
    scopes: Tuple[str, ...] = ()
    extra_params: Dict[str, str] = field(default_factory=dict)
    uses_basic_auth: bool = False


OAUTH_CONFIGS: Dict[str, OAuthEndpoints] = {
    "google": OAuthEndpoints(
        auth_url="https://accounts.google.com/o/oauth2/v2/auth",
        token_url="https://oauth2.googleapis.com/token",
        scopes=(
            "https://www.googleapis.com/auth/gmail.readonly",
            "https://www.googleapis.com/auth/calendar.readonly",
            "https://www.googleapis.com/auth/drive.readonly",
        ),
    ),
    "microsoft": OAuthEndpoints(
        auth_url="https://login.microsoftonline.com/common/oauth2/v2.0/authorize",
        token_url="https://login.microsoftonline.com/common/oauth2/v2.0/token",
        scopes=("openid", "profile", "email", "User.Read", "Mail.Read", "Calendars.Read", "offline_access"),
    ),
    "quickbooks": OAuthEndpoints(
        auth_url="https://appcenter.intuit.com/connect/oauth2",
        token_url="https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer",
        scopes=("com.intuit.quickbooks.accounting",),
        uses_basic_auth=True,
    ),
    "slack": OAuthEndpoints(
        auth_url="https://slack.com/oauth/v2/authorize",
        token_url="https://slack.com/api/oauth.v2.access",
        scopes=("channels:read", "chat:write", "users:read"),
    ),
    "hubspot": OAuthEndpoints(
        auth_url="https://app.hubspot.com/oauth/authorize",
        token_url="https://api.hubapi.com/oauth/v1/token",
        scopes=("crm.objects.contacts.read", "crm.objects.companies.read", "crm.objects.deals.read"),
    ),
    "salesforce": OAuthEndpoints(
        auth_url="https://login.salesforce.com/services/oauth2/authorize",
        token_url="https://login.salesforce.com/services/oauth2/token",
        scopes=("api", "refresh_token"),
    ),
    "zoho": OAuthEndpoints(
        auth_url="https://accounts.zoho.com/oauth/v2/auth",
        token_url="https://accounts.zoho.com/oauth/v2/token",
        scopes=("ZohoCRM.modules.contacts.READ", "ZohoCRM.modules.deals.READ"),
    ),
    "pipedrive": OAuthEndpoints(
        auth_url="https://oauth.pipedrive.com/oauth/authorize",
        token_url="https://oauth.pipedrive.com/oauth/token",
        uses_basic_auth=True,
    ),
    "stripe": OAuthEndpoints(
        # Stripe Connect, not platform billing
        auth_url="https://connect.stripe.com/oauth/authorize",
        token_url="https://connect.stripe.com/oauth/token",
        scopes=("read_write",),
        extra_params={"response_type": "code"},
    ),
    "dropbox": OAuthEndpoints(
        auth_url="https://www.dropbox.com/oauth2/authorize",
        token_url="https://api.dropboxapi.com/oauth2/token",
        extra_params={"token_access_type": "offline"},
    ),
    "xero": OAuthEndpoints(
        auth_url="https://login.xero.com/identity/connect/authorize",
        token_url="https://identity.xero.com/connect/token",
        scopes=(
            "openid", "profile", "email",
            "accounting.transactions", "accounting.contacts", "offline_access",
        ),
        uses_basic_auth=True,
    ),
    "zoom": OAuthEndpoints(
        # Zoom scopes live on the app registration, not the auth URL.
        auth_url="https://zoom.us/oauth/authorize",
        token_url="https://zoom.us/oauth/token",
        uses_basic_auth=True,
    ),
}
