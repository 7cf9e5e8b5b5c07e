from functools import lru_cache

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    # Supabase settings
    supabase_url: str = ''
    supabase_service_role_key: str = ''
    photo_bucket: str = 'journal-photos'

    # Surge settings
    surge_webhook_secret: str = ''
    surge_api_token: str = ''
    surge_account_id: str = ''
    surge_phone_number_id: str = ''
    surge_api_url: str = 'https://api.surge.app'

    # Billing collaborator
    checkout_function: str = 'create-checkout'
    upgrade_url: str = 'https://journalbytext.com/upgrade'

    # Webhook policy
    signature_tolerance_seconds: int = 900
    rate_limit_max_messages: int = 10
    rate_limit_window_minutes: int = 15
    max_body_length: int = 10_000

    # Outbound / attachments
    http_timeout_seconds: float = 10.0
    outbound_max_retries: int = 2
    outbound_workers: int = 4
    breaker_failure_threshold: int = 5
    breaker_cooldown_seconds: int = 60
    max_attachment_bytes: int = 10 * 1024 * 1024

    # Entry aggregation
    append_max_attempts: int = 5

    log_level: str = 'INFO'

    @property
    def surge_configured(self) -> bool:
        return bool(self.surge_api_token and self.surge_account_id)

    @property
    def messages_url(self) -> str:
        return f"{self.surge_api_url.rstrip('/')}/accounts/{self.surge_account_id}/messages"

@lru_cache
def get_settings() -> Settings:
    return Settings()
