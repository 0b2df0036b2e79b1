from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "dApp Factory"
    environment: str = "dev"
    log_level: str = "INFO"
    public_app_url: str = "http://localhost:3000"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str

    # ─────────── JWT / ADMIN AUTH ───────────
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_access_token_minutes: int = 720  # 12 hours
    admin_username: str = "admin"
    admin_password_hash: Optional[str] = None

    # ─────────── SOLANA ───────────
    solana_rpc_url: str = "https://api.devnet.solana.com"
    solana_commitment: str = "confirmed"
    solana_treasury_wallet: str = ""
    solana_treasury_private_key: Optional[str] = None  # base58 or JSON byte array
    solana_rpc_timeout_seconds: float = 30.0

    # ─────────── PRICING (per service tier) ───────────
    price_sol_starter: Decimal = Decimal("0.1")
    price_sol_professional: Decimal = Decimal("0.5")
    price_sol_enterprise: Decimal = Decimal("2.0")
    price_usd_starter: Decimal = Decimal("49")
    price_usd_professional: Decimal = Decimal("149")
    price_usd_enterprise: Decimal = Decimal("499")

    # ─────────── GENERATION ───────────
    generator_url: str = "http://localhost:8080/generate"
    generator_api_key: Optional[str] = None
    generation_timeout_seconds: float = 1200.0  # 20 minutes
    max_concurrent_generations: int = 4
    review_risk_threshold: int = 50

    # ─────────── DOWNLOADS ───────────
    download_dir: str = "temp/downloads"
    download_ttl_hours: int = 48
    max_downloads: int = 10

    # ─────────── REFUNDS ───────────
    auto_refund_after_hours: int = 24

    # ─────────── STRIPE ───────────
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_success_url: str = "http://localhost:3000/success?order={order_id}"
    stripe_cancel_url: str = "http://localhost:3000/cancelled?order={order_id}"

    # ─────────── EMAIL ───────────
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_use_tls: bool = True
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    email_from: str = "orders@dappfactory.local"

    # ─────────── RATE LIMIT ───────────
    rate_limit_capacity: int = 20
    rate_limit_per_minute: int = 20


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
