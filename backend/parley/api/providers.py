"""
Provider API endpoints - Configure backends and their model catalogs.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from ..config import settings
from ..llm.factory import create_llm_provider, refresh_provider_models
from ..models.provider import Provider
from ..storage.session_store import SessionStore
from .deps import find_provider, get_store
from .schemas import ModelTest, ProviderCreate, ProviderView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/providers", tags=["providers"])


@router.post("", response_model=ProviderView, status_code=status.HTTP_201_CREATED)
async def create_provider(body: ProviderCreate, store: SessionStore = Depends(get_store)):
    provider = Provider.factory(body.type, api_key=body.api_key, host=body.host)
    if body.name:
        provider.name = body.name
    await store.save_provider(provider)
    logger.info(f"Provider created: {provider.name} ({provider.type.value})")
    return ProviderView.from_provider(provider)


@router.get("", response_model=List[ProviderView])
async def list_providers(store: SessionStore = Depends(get_store)):
    return [ProviderView.from_provider(p) for p in store.providers]


@router.get("/{provider_id}", response_model=ProviderView)
async def get_provider(provider_id: str, store: SessionStore = Depends(get_store)):
    return ProviderView.from_provider(find_provider(store, provider_id))


@router.post("/{provider_id}/refresh-models", response_model=ProviderView)
async def refresh_models(provider_id: str, store: SessionStore = Depends(get_store)):
    """Merge the backend's model catalog into the provider. Discovery failures add nothing."""
    provider = find_provider(store, provider_id)
    await refresh_provider_models(provider, timeout=settings.llm_timeout)
    await store.save_provider(provider)
    return ProviderView.from_provider(provider)


@router.post("/{provider_id}/test")
async def test_model(provider_id: str, body: ModelTest, store: SessionStore = Depends(get_store)):
    provider = find_provider(store, provider_id)
    model = provider.find_model(body.model_code)
    if model is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Model {body.model_code} not found")
    ok = await create_llm_provider(provider, timeout=settings.llm_timeout).test_model(model)
    return {"provider_id": provider.id, "model": model.code, "ok": ok}
