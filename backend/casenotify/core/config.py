"""Application configuration"""

from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # API
    API_V1_PREFIX: str = "/api"
    PROJECT_NAME: str = "Case Booking Notification API"
    VERSION: str = "0.1.0"
    DEBUG: bool = False

    # Security
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    ENCRYPTION_KEY: str  # Fernet key for encrypting mailbox tokens at rest

    # Database
    DATABASE_URL: str

    # Redis (pending OAuth authorizations, shared by every worker)
    REDIS_URL: str = "redis://localhost:6379/0"

    # Microsoft Graph (Outlook / Microsoft 365)
    MICROSOFT_CLIENT_ID: Optional[str] = None
    MICROSOFT_CLIENT_SECRET: Optional[str] = None
    MICROSOFT_TENANT_ID: str = "common"

    # Google (Gmail)
    GOOGLE_CLIENT_ID: Optional[str] = None
    GOOGLE_CLIENT_SECRET: Optional[str] = None

    # OAuth redirect shared by both providers
    OAUTH_REDIRECT_URI: str = "http://localhost:3000/auth/callback"
    PENDING_AUTH_TTL_SECONDS: int = 600

    # Token lifecycle
    # WHY: Treat tokens as expired slightly early so a send never races expiry
    TOKEN_EXPIRY_SKEW_SECONDS: int = 300
    ADMIN_TOKEN_REFRESH_WINDOW_SECONDS: int = 1800
    ADMIN_TOKEN_REFRESH_INTERVAL_MINUTES: int = 15
    # Fail closed when the provider cannot be reached for online revalidation
    STRICT_ONLINE_VALIDATION: bool = False

    # Fallback cache used when the database is unreachable
    FALLBACK_CACHE_MAX_SIZE: int = 256
    FALLBACK_CACHE_TTL_SECONDS: int = 900

    # Mail delivery
    MAIL_PROVIDER_TIMEOUT_SECONDS: float = 15.0
    SEND_MAX_ATTEMPTS: int = 3
    SEND_BACKOFF_BASE_SECONDS: float = 1.0
    DEFAULT_FROM_NAME: str = "Case Booking System"

    # Staff directory of the case-booking application, used for role expansion.
    # Unset means an empty directory: role-based recipients resolve to nobody.
    DIRECTORY_API_URL: Optional[str] = None
    DIRECTORY_API_TOKEN: Optional[str] = None
    DIRECTORY_TIMEOUT_SECONDS: float = 10.0

    # Background jobs
    ENABLE_SCHEDULER: bool = True

    # CORS
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    def client_id_for(self, provider: str) -> Optional[str]:
        """
        Return the configured OAuth client id for a mail provider.

        WHY: A missing client id is not a startup error. It only matters
        when someone tries to connect that provider, so callers check it
        at that point and raise ConfigurationError.
        """
        return {
            "microsoft": self.MICROSOFT_CLIENT_ID,
            "google": self.GOOGLE_CLIENT_ID,
        }.get(provider)

    def client_secret_for(self, provider: str) -> Optional[str]:
        """Return the configured OAuth client secret for a mail provider."""
        return {
            "microsoft": self.MICROSOFT_CLIENT_SECRET,
            "google": self.GOOGLE_CLIENT_SECRET,
        }.get(provider)

    @property
    def async_database_url(self) -> str:
        """
        Convert DATABASE_URL to async driver format.

        WHY: SQLAlchemy async needs the asyncpg driver, but most hosting
        platforms hand out plain postgresql:// URLs.
        """
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        return url


settings = Settings()
