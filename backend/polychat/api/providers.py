"""
Providers API endpoints - model catalog and saved per-provider settings.
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from polychat.core.database import get_db
from polychat.core.exceptions import ConfigError
from polychat.core.logging import get_logger
from polychat.services.adapter import get_provider, list_providers
from polychat.services.security import CredentialCipher
from polychat.services.storage import SettingsStore

logger = get_logger(__name__)
router = APIRouter()


class SaveSettingsRequest(BaseModel):
    """Request to save the settings of one provider."""
    apiKey: str = Field(..., min_length=1)
    model: str
    temperature: Optional[float] = Field(None, ge=0, le=2)
    maxTokens: Optional[int] = Field(None, gt=0)
    systemPrompt: Optional[str] = None
    passphrase: Optional[str] = Field(
        None, description="When given, the key is stored encrypted with it"
    )


class SettingsResponse(BaseModel):
    """Saved settings without the API key."""
    id: str
    provider: str
    isEncrypted: bool
    hasApiKey: bool
    model: str
    temperature: Optional[float] = None
    maxTokens: Optional[int] = None
    systemPrompt: Optional[str] = None


@router.get("")
async def get_providers() -> list[dict[str, Any]]:
    """
    All supported providers with their models and capabilities.
    """
    return [p.to_dict() for p in list_providers()]


@router.get("/settings", response_model=list[SettingsResponse])
async def list_settings(db: AsyncSession = Depends(get_db)):
    store = SettingsStore(db)
    return [SettingsResponse(**s.to_public_dict()) for s in await store.get_settings()]


@router.get("/{provider_id}")
async def get_provider_detail(provider_id: str) -> dict[str, Any]:
    provider = get_provider(provider_id)
    if not provider:
        raise HTTPException(status_code=404, detail="Provider not found")
    return provider.to_dict()


@router.put("/{provider_id}/settings", response_model=SettingsResponse)
async def save_settings(
    provider_id: str,
    request: SaveSettingsRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Create or replace a provider's saved settings.
    """
    if not get_provider(provider_id):
        raise HTTPException(status_code=404, detail="Provider not found")

    store = SettingsStore(db, cipher=CredentialCipher())
    try:
        chat_settings = await store.save_settings(
            provider_id,
            api_key=request.apiKey,
            model=request.model,
            temperature=request.temperature,
            max_tokens=request.maxTokens,
            system_prompt=request.systemPrompt,
            passphrase=request.passphrase,
        )
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info("Settings saved", provider=provider_id, encrypted=chat_settings.is_encrypted)
    return SettingsResponse(**chat_settings.to_public_dict())


@router.delete("/{provider_id}/settings")
async def delete_settings(
    provider_id: str,
    db: AsyncSession = Depends(get_db),
):
    store = SettingsStore(db)
    if not await store.delete_settings(provider_id):
        raise HTTPException(status_code=404, detail="Settings not found")
    return {"message": "Settings deleted"}
