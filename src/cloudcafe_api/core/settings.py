from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./cloudcafe.db"
    tracing_enabled: bool = False
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    # Application URLs
    app_url: str = "http://localhost:5173"
    api_base_url: str = "http://localhost:8000"

    # Shop
    currency: str = "GBP"
    order_notes_max_length: int = 500
    collection_minutes_normal: int = 25
    collection_minutes_busy: int = 55

    # Stamp card
    rewards_stamps_per_reward: int = 10
    rewards_eligible_categories: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["Coffee", "Tea", "Hot Drink", "Iced"]
    )
    rewards_qr_prefix: str = "cloudcafe"
    rewards_ledger_max_retries: int = 3

    # Worldpay hosted payment pages
    worldpay_env: Literal["try", "access"] = "try"
    worldpay_base_url: str | None = None
    worldpay_merchant_entity: str = ""
    worldpay_service_key: str | None = None
    worldpay_username: str | None = None
    worldpay_password: str | None = None
    worldpay_narrative: str = "Cloud Cafe"
    worldpay_description: str = "Cloud Cafe Order"
    worldpay_timeout_seconds: float = 10.0
    worldpay_webhook_allowed_networks: Annotated[list[str], NoDecode] = Field(default_factory=list)
    # Proxies whose X-Forwarded-For entries are believed; empty means the
    # socket peer is the webhook source.
    worldpay_webhook_trusted_proxies: Annotated[list[str], NoDecode] = Field(default_factory=list)

    # Redirect outcomes are user-controlled; only the webhook is authoritative
    # unless this is switched on.
    payment_trust_redirect_success: bool = False

    @field_validator(
        "rewards_eligible_categories",
        "worldpay_webhook_allowed_networks",
        "worldpay_webhook_trusted_proxies",
        mode="before",
    )
    @classmethod
    def _parse_csv_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    @property
    def worldpay_payment_pages_url(self) -> str:
        if self.worldpay_base_url:
            return self.worldpay_base_url.rstrip("/")
        host = "try.access.worldpay.com" if self.worldpay_env == "try" else "access.worldpay.com"
        return f"https://{host}/payment_pages"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
