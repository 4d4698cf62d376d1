"""
Importer configuration.

Loads settings from environment variables with validation via Pydantic Settings.
"""

from enum import StrEnum
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppEnv(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


# Credential fields grouped by the external service that needs them.
SERVICE_CREDENTIALS: dict[str, tuple[str, ...]] = {
    "taobao": ("taobao_app_key", "taobao_app_secret", "taobao_access_token"),
    "anthropic": ("anthropic_api_key",),
    "photoroom": ("photoroom_api_key",),
    "shopify": ("shopify_store", "shopify_access_token"),
}


class Settings(BaseSettings):
    """Pipeline settings loaded from .env file and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ─── Application ──────────────────────────────────────────
    app_name: str = "axent-importer"
    app_version: str = "0.1.0"
    app_env: AppEnv = AppEnv.DEVELOPMENT

    # ─── Taobao Global (source marketplace) ──────────────────
    taobao_app_key: str = ""
    taobao_app_secret: str = ""
    taobao_access_token: str = ""
    taobao_api_base: str = "https://api.taobao.global/rest"
    taobao_test_item_id: str = "846881782232"
    source_circuit_failure_threshold: int = 5
    source_circuit_cooldown_seconds: int = 300

    # ─── Anthropic (translation / vision) ────────────────────
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"

    # ─── PhotoRoom (background removal) ──────────────────────
    photoroom_api_key: str = ""
    photoroom_api_base: str = "https://image-api.photoroom.com/v2"
    photoroom_background_color: str = "F5F5F5"

    # ─── Shopify (commerce admin) ────────────────────────────
    shopify_store: str = ""
    shopify_access_token: str = ""
    shopify_api_version: str = "2025-01"
    shopify_publication_id: str = ""
    shopify_request_delay_ms: int = 500  # Admin REST limit is 2 calls/s
    image_upload_batch_size: int = 3
    image_upload_max_attempts: int = 3
    image_upload_retry_delay: float = 2.0

    # ─── Pricing ─────────────────────────────────────────────
    # 2.0 = 100% markup, 2.5 = 150% markup
    price_markup: float = 2.0
    source_currency: str = "CNY"
    target_currency: str = "USD"
    exchange_rate_url: str = "https://api.frankfurter.app/latest"
    exchange_rate_ttl_seconds: int = 3600
    fallback_exchange_rate: float = 0.14

    # ─── Batch Import ────────────────────────────────────────
    catalog_sheet_path: str = "Products.xlsx"
    results_dir: str = "."
    brands_dir: str = "brands"
    batch_pause_seconds: float = 2.0
    size_chart_max_images: int = 10

    # ─── Observability ──────────────────────────────────────────
    sentry_dsn: str = ""
    sentry_traces_sample_rate: float = 0.0
    log_level: str = "INFO"
    log_format: str = "auto"

    @model_validator(mode="after")
    def normalize_shopify_store(self) -> "Settings":
        """Accept the store as a bare domain or a full URL.

        The admin console hands out ``https://name.myshopify.com/`` but the
        API base is built from the bare host.
        """
        store = self.shopify_store.strip()
        for prefix in ("https://", "http://"):
            if store.startswith(prefix):
                store = store[len(prefix):]
        self.shopify_store = store.rstrip("/")
        return self

    @model_validator(mode="after")
    def enforce_production_safety(self) -> "Settings":
        """Block startup if production runs without credentials.

        Only fires when APP_ENV=production. Development and test environments
        continue to work with empty defaults.
        """
        if self.app_env != AppEnv.PRODUCTION:
            return self

        violations = [
            f"{field.upper()} must be set in production"
            for field in self.missing_credentials()
        ]

        if self.price_markup < 1.0:
            violations.append("PRICE_MARKUP must be >= 1.0 in production")

        if violations:
            raise ValueError(
                "Production safety check failed:\n  - " + "\n  - ".join(violations)
            )

        return self

    def missing_credentials(self, services: tuple[str, ...] | None = None) -> list[str]:
        """Return the names of credential fields that are empty."""
        wanted = services or tuple(SERVICE_CREDENTIALS)
        missing: list[str] = []
        for service in wanted:
            for field in SERVICE_CREDENTIALS[service]:
                if not getattr(self, field):
                    missing.append(field)
        return missing

    @property
    def is_development(self) -> bool:
        return self.app_env == AppEnv.DEVELOPMENT

    @property
    def shopify_admin_base_url(self) -> str:
        return f"https://{self.shopify_store}/admin/api/{self.shopify_api_version}"

    @property
    def exchange_rate_ttl(self) -> float:
        return float(self.exchange_rate_ttl_seconds)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
