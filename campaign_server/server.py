"""
FastAPI application for the campaign engine.

Wires the campaign store, the SMM panel client and the expiry sweeper into
the marketing and SMM routers, with startup/shutdown hooks managing their
lifecycles.
"""

import logging
from typing import Optional

from fastapi import FastAPI

from . import database as db
from .auth import configure_admin_tokens
from .config import ServerConfig, get_config, set_config
from .errors import register_exception_handlers
from .expiry_sweeper import init_sweeper
from .marketing_api import router as marketing_router
from .smm_api import router as smm_router
from .smm_client import get_smm_client, start_smm_client, stop_smm_client
from .store import CampaignStore

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[ServerConfig] = None,
    store: Optional[CampaignStore] = None,
) -> FastAPI:
    """Build the FastAPI app; ``store`` overrides the configured backend."""
    config = config or get_config()
    set_config(config)
    configure_admin_tokens(config.auth_tokens)

    store = store or db.create_store(config)
    db.set_store(store)
    init_sweeper(store, grace_hours=config.grace_hours)

    app = FastAPI(
        title='Streamline Campaign Engine',
        description='Campaign lifecycle orchestration for music promotion',
        version='1.0.0',
    )
    register_exception_handlers(app)
    app.include_router(marketing_router)
    app.include_router(smm_router)

    @app.on_event('startup')
    async def start_smm_panel():
        if not config.smm_panel_api_key:
            logger.warning('SMM_PANEL_API_KEY not set; submissions will fail')
        await start_smm_client(
            config.smm_panel_api_url,
            config.smm_panel_api_key,
            timeout=config.smm_panel_timeout_seconds,
        )

    @app.on_event('shutdown')
    async def stop_smm_panel():
        await stop_smm_client()

    @app.on_event('shutdown')
    async def close_store():
        await store.close()

    @app.get('/health')
    async def health():
        client = get_smm_client()
        return {
            'status': 'ok',
            'store': type(store).__name__,
            'smm_panel': client.get_health() if client else None,
        }

    return app
