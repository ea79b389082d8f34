"""
Per-provider chat settings.
The API key column holds whatever the caller stored, normally ciphertext.
"""
from sqlalchemy import Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from polychat.core.database import Base
from polychat.models.conversation import new_id


class ChatSettings(Base):
    """Saved provider configuration."""

    __tablename__ = "chat_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    provider: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    api_key: Mapped[str] = mapped_column(Text, nullable=False)
    is_encrypted: Mapped[bool] = mapped_column(default=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    temperature: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dict(self) -> dict:
        """Convert to dictionary. Includes the stored key, used by export."""
        return {
            "id": self.id,
            "provider": self.provider,
            "apiKey": self.api_key,
            "isEncrypted": self.is_encrypted,
            "model": self.model,
            "temperature": self.temperature,
            "maxTokens": self.max_tokens,
            "systemPrompt": self.system_prompt,
        }

    def to_public_dict(self) -> dict:
        """Dictionary without the API key, for API responses."""
        data = self.to_dict()
        data.pop("apiKey")
        data["hasApiKey"] = bool(self.api_key)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ChatSettings":
        return cls(
            id=str(data["id"]),
            provider=data["provider"],
            api_key=data.get("apiKey", ""),
            is_encrypted=bool(data.get("isEncrypted", False)),
            model=data["model"],
            temperature=data.get("temperature"),
            max_tokens=data.get("maxTokens"),
            system_prompt=data.get("systemPrompt"),
        )
