from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # `.env.prod` takes priority over `.env`
        env_file=(".env", ".env.prod")
    )

    # Hosted auth provider. When disabled every request runs as the local dev user.
    auth_enabled: bool = False
    auth_provider_url: Optional[str] = None
    auth_provider_anon_key: Optional[str] = None
    auth_jwt_audience: str = "authenticated"

    # Transactional email (Resend)
    resend_api_key: Optional[str] = None
    resend_api_url: str = "https://api.resend.com/emails"
    email_from_address: str = "onboarding@resend.dev"
    email_default_sender_name: str = "JobConnect"

    # Postal code lookup
    address_lookup_url: str = "https://viacep.com.br/ws"

    # Application base URL (for constructing OAuth redirect URLs etc.)
    app_base_url: str = "http://localhost:8000"  # Default for local dev

    @property
    def auth_issuer(self) -> Optional[str]:
        if not self.auth_provider_url:
            return None
        return f"{self.auth_provider_url.rstrip('/')}/auth/v1"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
