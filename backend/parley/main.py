"""
Parley - FastAPI application exposing the conversation engine.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .api import sessions_router, providers_router
from .api.deps import init_controller
from .core.logging_config import setup_logging
from .models.provider import Provider, ProviderType
from .storage.session_store import SessionStore, get_session_store, init_session_store

# Configured by setup_logging() during startup
logger = logging.getLogger(__name__)


async def ensure_default_provider(store: SessionStore) -> None:
    """First start: seed one provider from the LLM_* settings."""
    if store.providers:
        return
    provider = Provider.factory(
        ProviderType(settings.llm_provider),
        api_key=settings.llm_api_key or "",
        host=settings.llm_base_url,
    )
    await store.save_provider(provider)
    logger.info(f"Created default provider: {provider.name} ({provider.host})")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings)

    store = init_session_store(base_dir=settings.local_storage_path)
    await store.load_all()
    await ensure_default_provider(store)
    controller = init_controller(store)

    logger.info(
        f"Starting {settings.app_name} v{settings.app_version}",
        extra={"extra_fields": {
            "storage": settings.local_storage_path,
            "log_level": settings.log_level.upper(),
            "debug": settings.debug,
            "flush_interval": settings.ui_flush_interval,
        }},
    )
    yield

    # Cancel live runs so their trees are cleaned up before the final saves
    for session in store.sessions:
        await controller.stop(session)
    await controller.wait_background()
    logger.info(f"Shutting down {settings.app_name}")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Branching multi-provider LLM conversation engine",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)
app.include_router(providers_router)


@app.get("/")
async def root():
    return {
        "app": settings.app_name,
        "version": settings.app_version,
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Liveness plus what the store currently holds (when it is up)."""
    health = {"status": "healthy", "version": settings.app_version}
    try:
        store = get_session_store()
    except RuntimeError:
        health["store"] = "not initialized"
    else:
        health["sessions"] = len(store.sessions)
        health["providers"] = len(store.providers)
    return health


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "parley.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
