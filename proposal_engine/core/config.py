"""Application configuration"""

from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "Proposal Engine API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Database
    DATABASE_URL: str = "postgresql://localhost:5432/proposal_engine"

    # URLs
    FRONTEND_URL: str = "http://localhost:3000"

    # Pricing
    # WHY: Defaults mirror the observed production behaviour; tenants can
    # override them through the environment without a code change.
    DEFAULT_CURRENCY: str = "USD"
    SUPPORTED_CURRENCIES: list[str] = ["USD", "EUR", "GBP"]
    DEFAULT_TAX_RATE_PERCENT: float = 10.0
    MAX_PROPOSAL_AMOUNT: float = 1_000_000.0
    VALIDITY_WARNING_DAYS: int = 365

    # Approval workflow
    # WHY: required_approvals was stored but never enforced (threshold of 1).
    # Owners of acceptance criteria flip this flag to honour the configured
    # per-level count.
    ENFORCE_REQUIRED_APPROVALS: bool = False
    APPROVAL_TIMEOUT_POLICY: Literal["escalate", "reject"] = "escalate"
    WORKFLOW_SWEEP_INTERVAL_SECONDS: int = 300
    SCHEDULER_ENABLED: bool = True

    # Signatures
    VERIFICATION_CODE_LENGTH: int = 10
    DEFAULT_SIGNATURE_EXPIRY_DAYS: int = 30

    # Notifications
    RESEND_API_KEY: Optional[str] = None
    NOTIFICATION_FROM_EMAIL: Optional[str] = None
    NOTIFICATION_DISPATCH_BATCH: int = 100
    NOTIFICATION_MAX_ATTEMPTS: int = 5

    # CORS
    CORS_ORIGINS: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    @property
    def async_database_url(self) -> str:
        """Get async database URL"""
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://")


settings = Settings()
