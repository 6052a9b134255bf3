from typing import Dict, List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

from common.core.constants import Environment, LockProviderType, UsageProviderType


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Environment Profile
    environment: Environment = Environment.LOCAL

    # API Settings
    app_name: str = "billing-backend"
    api_version: str = "0.1.0"
    debug: bool = False

    # Database Components
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "billing"
    db_use_nullpool: bool = (
        False  # True for workers (sequential), False for API (concurrent)
    )
    db_pool_size: int = 10
    db_pool_overflow: int = 5

    @property
    def database_url(self) -> str:
        """Construct database URL from components."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    # Redis
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    @property
    def redis_connection_url(self) -> str:
        """Construct Redis URL from components."""
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        else:
            return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    # Rate limiting storage (memory:// for single pod / tests)
    rate_limit_storage_uri: Optional[str] = None

    # Locking
    lock_provider: LockProviderType = LockProviderType.REDIS
    subscription_lock_ttl_seconds: int = 60

    # OpenTelemetry
    otel_service_name: str = "billing-backend"
    otel_service_version: str = "0.1.0"
    otel_exporter_otlp_endpoint: Optional[str] = None  # e.g. https://collector:4318
    otel_exporter_otlp_headers: Dict[str, str] = {}

    # Auth (session layer issues HS256 JWTs, we only verify them)
    auth_jwt_secret: str = "local-dev-secret"
    auth_jwt_algorithm: str = "HS256"
    auth_jwt_audience: Optional[str] = "authenticated"

    # Usage counters (owned by the projects / uploads / team services)
    usage_provider: UsageProviderType = UsageProviderType.HTTP
    usage_service_base_url: str = "http://localhost:8001"
    usage_service_timeout_seconds: float = 5.0

    # Billing - Stripe (payments)
    stripe_secret_key: str = ""
    stripe_publishable_key: str = ""
    stripe_webhook_secret: str = ""
    # Response mapping in the payment provider is written against this version
    stripe_api_version: str = "2025-03-31.basil"
    # Stripe price IDs for purchasable tiers
    stripe_price_id_basic: str = ""
    stripe_price_id_pro: str = ""
    stripe_price_id_studio: str = ""

    # Hosted checkout defaults when the client doesn't pass redirect URLs
    checkout_success_url: str = "http://localhost:3000/subscription?checkout=success"
    checkout_cancel_url: str = "http://localhost:3000/subscription?checkout=cancel"

    # Processor retry policy (transient failures only)
    processor_retry_attempts: int = 3
    processor_retry_base_delay_seconds: float = 0.5
    processor_retry_max_delay_seconds: float = 4.0

    # Reconciliation worker
    reconciliation_interval_seconds: int = 900
    reconciliation_stale_after_seconds: int = 3600
    reconciliation_batch_size: int = 100

    @property
    def cors_allowed_origins(self) -> List[str]:
        """Auto-select CORS origins based on environment."""
        if self.environment == Environment.LOCAL:
            return [
                "http://localhost:3000",
                "http://localhost:5173",
            ]
        return [
            "https://arquinorma.com",
            "https://app.arquinorma.com",
        ]


settings = Settings()
