"""
Error taxonomy for the credential vault and provider connectors.

Every error carries a machine-readable ``code`` so routes and the
aggregator can report *what* went wrong without echoing messages that
might contain provider output.  Messages never contain token values.
"""

from __future__ import annotations

from typing import Optional


class VaultError(Exception):
    """Base class for all connector / vault errors."""

    code = "VAULT_ERROR"

    def __init__(self, message: str = "", *, provider: Optional[str] = None) -> None:
        super().__init__(message or self.code)
        self.provider = provider


# ── Operator must fix ───────────────────────────────────────────────────


class ConfigurationError(VaultError):
    """Missing or unusable encryption key / client credential."""

    code = "CONFIGURATION_ERROR"


class NotConfigured(ConfigurationError):
    """Provider has no enabled, resolvable OAuth app registration."""

    code = "OAUTH_APP_NOT_CONFIGURED"


class OAuthAppNotConfigured(NotConfigured):
    """Strict provider: the per-provider OAuth app row is missing.

    Raised instead of falling back to any process-wide credential.
    """

    code = "OAUTH_APP_REGISTRATION_MISSING"


class DecryptionError(VaultError):
    """Stored secret is corrupted, tampered with, or in an unknown format."""

    code = "DECRYPTION_ERROR"


# ── Caller errors ───────────────────────────────────────────────────────


class UnsupportedProvider(VaultError):
    code = "UNSUPPORTED_PROVIDER"


class PermissionDenied(VaultError):
    code = "FORBIDDEN"


# ── Expected user-facing states ─────────────────────────────────────────


class NotConnected(VaultError):
    """User has not completed authorization for this provider."""

    code = "OAUTH_REQUIRED"


class ReconnectRequired(NotConnected):
    """Connection lacks the scoped identifier captured at connect time."""

    code = "RECONNECT_REQUIRED"


class ReauthRequired(VaultError):
    """Refresh token rejected, missing, or a required scope was not granted."""

    code = "REAUTH_REQUIRED"


class RefreshFailed(ReauthRequired):
    """Token endpoint rejected a refresh request."""

    code = "REFRESH_FAILED"

    def __init__(
        self,
        message: str = "",
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        oauth_error: Optional[str] = None,
    ) -> None:
        super().__init__(message, provider=provider)
        self.status_code = status_code
        self.oauth_error = oauth_error


# ── Transient ───────────────────────────────────────────────────────────


class ProviderUnavailable(VaultError):
    """Network failure, timeout, rate limit or 5xx from a third party."""

    code = "PROVIDER_UNAVAILABLE"


class ProviderAuthError(VaultError):
    """Provider rejected the access token (401/403); a refresh may help."""

    code = "PROVIDER_AUTH_ERROR"
