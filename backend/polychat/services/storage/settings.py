"""
Settings Store - saved per-provider chat configuration.
"""
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from polychat.core.exceptions import ConfigError
from polychat.core.logging import get_logger
from polychat.models import ChatSettings
from polychat.services.adapter.registry import require_provider
from polychat.services.security.credentials import CredentialCipher

logger = get_logger(__name__)


class SettingsStore:
    """
    Database store for ChatSettings, one row per provider.

    When a cipher is given, keys saved with a passphrase are stored
    encrypted and get_api_key needs the same passphrase to read them.
    """

    def __init__(self, db: AsyncSession, cipher: Optional[CredentialCipher] = None):
        self.db = db
        self.cipher = cipher

    async def _get(self, provider: str) -> Optional[ChatSettings]:
        result = await self.db.execute(
            select(ChatSettings).where(ChatSettings.provider == provider)
        )
        return result.scalar_one_or_none()

    async def save_settings(
        self,
        provider: str,
        api_key: str,
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
        passphrase: Optional[str] = None,
    ) -> ChatSettings:
        """Create or replace the settings for a provider."""
        require_provider(provider)

        is_encrypted = False
        stored_key = api_key
        if passphrase is not None:
            if self.cipher is None:
                raise ConfigError("No credential cipher configured for encrypted keys")
            stored_key = self.cipher.encrypt(api_key, passphrase)
            is_encrypted = True

        existing = await self._get(provider)
        if existing:
            existing.api_key = stored_key
            existing.is_encrypted = is_encrypted
            existing.model = model
            existing.temperature = temperature
            existing.max_tokens = max_tokens
            existing.system_prompt = system_prompt
            await self.db.commit()
            await self.db.refresh(existing)

            logger.debug("Updated chat settings", provider=provider, encrypted=is_encrypted)
            return existing

        chat_settings = ChatSettings(
            provider=provider,
            api_key=stored_key,
            is_encrypted=is_encrypted,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            system_prompt=system_prompt,
        )
        self.db.add(chat_settings)
        await self.db.commit()
        await self.db.refresh(chat_settings)

        logger.debug("Created chat settings", provider=provider, encrypted=is_encrypted)
        return chat_settings

    async def get_settings(self, provider: Optional[str] = None) -> list[ChatSettings]:
        """Settings for one provider, or for all providers."""
        stmt = select(ChatSettings)
        if provider:
            stmt = stmt.where(ChatSettings.provider == provider)
        result = await self.db.execute(stmt.order_by(ChatSettings.provider))
        return list(result.scalars().all())

    async def delete_settings(self, provider: str) -> bool:
        result = await self.db.execute(
            delete(ChatSettings).where(ChatSettings.provider == provider)
        )
        await self.db.commit()
        return result.rowcount > 0

    async def get_api_key(self, provider: str, passphrase: Optional[str] = None) -> Optional[str]:
        """Stored key in plaintext, or None when the provider has no settings."""
        chat_settings = await self._get(provider)
        if chat_settings is None:
            return None
        if not chat_settings.is_encrypted:
            return chat_settings.api_key
        if self.cipher is None or passphrase is None:
            raise ConfigError(f"API key for '{provider}' is encrypted; a passphrase is required")
        return self.cipher.decrypt(chat_settings.api_key, passphrase)
