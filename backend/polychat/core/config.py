"""
Application configuration.
All sensitive values loaded from environment variables.
"""
from typing import List, Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./polychat.db"

    # Provider credentials
    # Supported providers: openai, anthropic, google
    AI_API_KEY: str = ""

    # Provider-specific API keys (optional, falls back to AI_API_KEY)
    OPENAI_API_KEY: Optional[str] = None
    ANTHROPIC_API_KEY: Optional[str] = None
    GEMINI_API_KEY: Optional[str] = None

    # Request defaults
    # Anthropic requires max_tokens on every request
    DEFAULT_MAX_TOKENS: int = 4096

    # Credential encryption (PBKDF2 iterations)
    CREDENTIAL_KDF_ITERATIONS: int = 100_000

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or console

    # AI Debug Logging - enables message and fragment content logging
    # WARNING: Set to True only for debugging, logs may contain sensitive data
    AI_DEBUG_LOG: bool = False
    # Maximum length of message content to log (0 = unlimited)
    AI_DEBUG_LOG_MAX_LENGTH: int = 2000

    def get_api_key(self, provider: str) -> str:
        """Get API key for a specific provider."""
        provider_keys = {
            "openai": self.OPENAI_API_KEY,
            "anthropic": self.ANTHROPIC_API_KEY,
            "google": self.GEMINI_API_KEY,
        }
        # Return provider-specific key if set, otherwise fall back to AI_API_KEY
        return provider_keys.get(provider.lower()) or self.AI_API_KEY

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
