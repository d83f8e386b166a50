"""
Integration vault service — application entry point.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.middleware import register_middleware
from config.settings import Settings, config
from connectors.aggregator import Aggregator
from connectors.credentials import CredentialResolver
from connectors.encryption import TokenCipher
from connectors.migration import TokenMigration
from connectors.normalize import utcnow
from connectors.oauth_flow import AuthorizationFlow
from connectors.redaction import SecretRedactingFilter
from connectors.registry import ConnectorRegistry
from connectors.routes import router as connectors_router
from connectors.token_manager import TokenManager
from database.session import build_engine, build_session_factory
from database.store import CredentialStore, SqlCredentialStore

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _handler in logging.getLogger().handlers:
    _handler.addFilter(SecretRedactingFilter())
for _noisy in ("httpcore", "httpx", "asyncio", "sqlalchemy.engine"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app(settings: Settings = config, store: Optional[CredentialStore] = None) -> FastAPI:
    app = FastAPI(
        title="Integration Vault",
        version="1.0.0",
        description="Encrypted OAuth credentials and a unified view over connected providers.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Services: built once, shared by every request
    if store is None:
        store = SqlCredentialStore(build_session_factory(build_engine(settings.database_url)))
    cipher = TokenCipher.from_settings(settings)
    registry = ConnectorRegistry()
    resolver = CredentialResolver(cipher)
    tokens = TokenManager(store, cipher, resolver, registry, settings)

    app.state.settings = settings
    app.state.store = store
    app.state.cipher = cipher
    app.state.registry = registry
    app.state.resolver = resolver
    app.state.tokens = tokens
    app.state.flow = AuthorizationFlow(store, cipher, resolver, registry, settings)
    app.state.aggregator = Aggregator(store, tokens, registry, settings)
    app.state.migration = TokenMigration(store, cipher)

    # Routes
    app.include_router(connectors_router, prefix="/api/v1/connectors")

    @app.on_event("startup")
    async def on_startup():
        # Clean up OAuth states abandoned before this instance started
        expired = await store.delete_expired_oauth_states(utcnow())
        if expired:
            logger.info("Removed %d expired OAuth states", expired)
        logger.info("Providers: %s", ", ".join(registry.providers()))
        logger.info("Application ready to accept requests.")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
