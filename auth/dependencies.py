"""
FastAPI dependencies for authentication.

``get_current_user_id`` verifies the bearer token; ``get_identity`` adds
the caller's role and organisation from ``profiles`` and decides the
privilege tier once per request, from the settings the app was built with.
Services downstream trust ``Identity.elevated`` and never re-derive it.
"""

from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from auth.identity import Identity
from auth.jwt import verify_token
from config.settings import Settings
from database.store import CredentialStore

_bearer_scheme = HTTPBearer()


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> CredentialStore:
    return request.app.state.store


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> str:
    """
    Extract and verify the Bearer token, returning the authenticated
    ``user_id`` (UUID string).
    """
    return verify_token(credentials.credentials, secret=settings.jwt_secret)


async def get_identity(
    user_id: str = Depends(get_current_user_id),
    store: CredentialStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> Identity:
    profile = await store.get_profile(user_id)
    if profile is None:
        return Identity(user_id=user_id)
    return Identity(
        user_id=user_id,
        role=profile.role,
        organization_id=profile.organization_id,
        elevated=settings.is_elevated(profile.role),
    )
