"""Runtime configuration based on environment variables."""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import AnyHttpUrl, BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from solgate.domain.models import Product, Promotion

MEMO_PROGRAM_ID = "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr"
LEGACY_MEMO_PROGRAM_ID = "Memo1UhkJRfHyvLMcVucJwxXeuD728EqVDDwQDxFMNo"


def _default_products() -> dict[str, Product]:
    catalog = (
        Product(key="paid_access", name="Paid Access", icon="💎",
                setup_fee=Decimal("0.7"), monthly_fee=Decimal("0.2")),
        Product(key="security", name="Security", icon="🔒",
                setup_fee=Decimal("0.4"), monthly_fee=Decimal("0.15")),
        Product(key="alerts", name="Alerts", icon="🚨",
                setup_fee=Decimal("0.3"), monthly_fee=Decimal("0.2")),
        Product(key="bundle", name="All-in-One Bundle", icon="🌟",
                setup_fee=Decimal("1.6"), monthly_fee=Decimal("0.55")),
    )
    return {product.key: product for product in catalog}


class DatabaseSettings(BaseModel):
    dsn: str = Field(
        default="sqlite+aiosqlite:///solgate.db",
        description="SQLAlchemy async DSN (aiosqlite by default, asyncmy for MySQL).",
    )
    pool_size: int = Field(default=5, ge=1, le=50)
    max_overflow: int = Field(default=10, ge=0, le=100)
    echo: bool = False
    pool_recycle: int = Field(default=3600, ge=30)
    pool_pre_ping: bool = Field(default=True)


class SolanaSettings(BaseModel):
    rpc_url: AnyHttpUrl = Field(default="https://api.mainnet-beta.solana.com")
    commitment: Literal["confirmed", "finalized"] = "confirmed"
    treasury_address: str = "EyTtALk3AJubxGgkEvkkU4cJQcQuke8ovGV3AucuGs3J"
    memo_program_ids: list[str] = Field(
        default_factory=lambda: [MEMO_PROGRAM_ID, LEGACY_MEMO_PROGRAM_ID]
    )
    request_timeout_seconds: int = Field(default=15, ge=1, le=120)


class BillingSettings(BaseModel):
    products: dict[str, Product] = Field(default_factory=_default_products)
    bundle_product: str = "bundle"
    promotion: Promotion = Field(default_factory=Promotion)
    days_per_month: int = Field(default=30, ge=1)
    invoice_ttl_minutes: int = Field(default=30, ge=1)
    max_months_per_purchase: int = Field(default=60, ge=1)
    duration_options: list[int] = Field(default_factory=lambda: [1, 3, 5, 12])
    memo_prefix: str = Field(default="ACC", min_length=1, max_length=16)

    @field_validator("duration_options")
    @classmethod
    def _positive_durations(cls, value: list[int]) -> list[int]:
        if not value or any(months <= 0 for months in value):
            raise ValueError("duration_options must contain positive month counts")
        return value


class AutomationSettings(BaseModel):
    invoice_sweep_minutes: int = Field(default=10, ge=1)
    subscription_sweep_minutes: int = Field(default=30, ge=1)
    reminder_days_before: int = Field(default=3, ge=1)
    reminder_guard_hours: int = Field(default=20, ge=1)
    expired_notice_guard_hours: int = Field(default=24, ge=1)
    kick_grace_hours: int = Field(default=12, ge=0)


class RequestLimitSettings(BaseModel):
    max_actions: int = Field(default=8, ge=1)
    window_seconds: int = Field(default=10, ge=1)
    eviction_interval_seconds: int = Field(default=300, ge=1)


class InviteSettings(BaseModel):
    ttl_seconds: int = Field(default=3600, ge=60)


class SolGateSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SOLGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    environment: Literal["dev", "staging", "prod"] = "dev"
    telegram_token: SecretStr
    telegram_proxy: str | None = None
    owner_telegram_id: int | None = None

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    solana: SolanaSettings = Field(default_factory=SolanaSettings)
    billing: BillingSettings = Field(default_factory=BillingSettings)
    automation: AutomationSettings = Field(default_factory=AutomationSettings)
    request_limit: RequestLimitSettings = Field(default_factory=RequestLimitSettings)
    invites: InviteSettings = Field(default_factory=InviteSettings)


@lru_cache
def get_settings() -> SolGateSettings:
    """Return cached settings instance."""

    return SolGateSettings()  # type: ignore[call-arg]


__all__ = [
    "AutomationSettings",
    "BillingSettings",
    "DatabaseSettings",
    "InviteSettings",
    "RequestLimitSettings",
    "SolGateSettings",
    "SolanaSettings",
    "get_settings",
]
