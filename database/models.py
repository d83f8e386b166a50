"""
SQLAlchemy ORM models for the columns the credential vault touches.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class Profile(Base):
    __tablename__ = "profiles"

    user_id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String(255))
    organization_id = Column(UUID(as_uuid=True), nullable=True)
    role = Column(String(32), nullable=False, default="member")
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class Integration(Base):
    """One OAuth credential per (org, user, provider)."""

    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("org_id", "user_id", "provider", name="uq_integrations_org_user_provider"),
        Index("ix_integrations_user_provider", "user_id", "provider"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(UUID(as_uuid=True), nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    provider = Column(String(32), nullable=False)
    access_token = Column(Text)
    refresh_token = Column(Text)
    connected_account = Column(String(255))
    health = Column(String(32))            # "ok" | "reauth_required" | NULL
    scopes = Column(Text)                  # provider-specific: realm id, tenant id, granted scopes…
    last_synced_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class IntegrationConfig(Base):
    """OAuth app registration per provider (plain, ``env:NAME`` or encrypted values)."""

    __tablename__ = "integration_configs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    provider = Column(String(32), unique=True, nullable=False)
    client_id = Column(Text, nullable=False)
    client_secret = Column(Text, nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class OAuthState(Base):
    __tablename__ = "oauth_states"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    state = Column(String(64), unique=True, nullable=False)
    user_id = Column(UUID(as_uuid=True), nullable=False)
    provider = Column(String(32), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
