"""Application configuration with environment variables."""

from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_DB_TYPES = ("sqlite",)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    VERSION: str = "1.4.0"
    TESTING: bool = False
    LOG_LEVEL: str = "INFO"

    # Listener (host:port)
    LISTEN_ADDRESS: str = "0.0.0.0:3100"

    # Database
    DB_TYPE: str = "sqlite"
    DB_PATH: str = "data/telemetry.db"
    INITIAL_TEMPLATE_DB_PATH: str = ""
    DB_MAX_SIZE: int = 1024 * 1024 * 1024
    DB_SIZE_WARN_PCT: int = 70
    DB_SIZE_CRIT_PCT: int = 80
    DB_WRITER_POOL_SIZE: int = 2
    DB_READER_POOL_SIZE: int = 16
    AUTO_MIGRATE: bool = True

    # Sessions
    SESSION_TTL_SECONDS: int = 86_400
    PRODUCER_SESSION_TTL_SECONDS: int = 30 * 86_400
    SESSION_CLEANUP_INTERVAL_SECONDS: int = 60
    COOKIE_SECURE: bool | None = None

    # Ingest and uploads
    MAX_EVENT_BYTES: int = 262_144
    MAX_EVENT_DATA_BYTES: int = 131_072
    LOGO_MAX_BYTES: int = 512_000

    # Password hashing (Argon2id)
    PASSWORD_HASH_TIME_COST: int = 3
    PASSWORD_HASH_MEMORY_COST: int = 65_536  # KiB
    PASSWORD_HASH_PARALLELISM: int = 4
    INITIAL_GOD_PASSWORD: str = "god"

    # Request handling
    REQUEST_TIMEOUT_SECONDS: float = 30.0
    MAX_CONCURRENT_REQUESTS: int = 256
    SHUTDOWN_GRACE_SECONDS: int = 10

    # Org -> team resolution cache
    TEAM_CACHE_TTL_SECONDS: int = 300

    # Rate Limiting (requests per minute)
    RATE_LIMIT_AUTH: int = 10
    RATE_LIMIT_INGEST: int = 1200

    # CORS (comma-separated, empty disables the middleware)
    CORS_ORIGINS: str = ""

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    @model_validator(mode="after")
    def _validate(self) -> "Settings":
        if self.DB_TYPE.lower() not in SUPPORTED_DB_TYPES:
            raise ValueError(
                f"DB_TYPE '{self.DB_TYPE}' is not supported (expected one of {SUPPORTED_DB_TYPES})"
            )
        if self.SESSION_TTL_SECONDS <= 0 or self.PRODUCER_SESSION_TTL_SECONDS <= 0:
            raise ValueError("Session TTLs must be positive")
        if not 0 < self.DB_SIZE_WARN_PCT < self.DB_SIZE_CRIT_PCT <= 100:
            raise ValueError("DB_SIZE_WARN_PCT must be below DB_SIZE_CRIT_PCT (both 1-100)")
        if self.MAX_CONCURRENT_REQUESTS <= 0 or self.REQUEST_TIMEOUT_SECONDS <= 0:
            raise ValueError("Request limits must be positive")
        self._split_listen_address()
        return self

    def _split_listen_address(self) -> tuple[str, int]:
        host, sep, port = self.LISTEN_ADDRESS.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"LISTEN_ADDRESS must be host:port, got '{self.LISTEN_ADDRESS}'")
        return host, int(port)

    @property
    def listen_host(self) -> str:
        return self._split_listen_address()[0]

    @property
    def listen_port(self) -> int:
        return self._split_listen_address()[1]

    @property
    def database_path(self) -> Path:
        return Path(self.DB_PATH).expanduser()

    @property
    def template_path(self) -> Path | None:
        if not self.INITIAL_TEMPLATE_DB_PATH:
            return None
        return Path(self.INITIAL_TEMPLATE_DB_PATH).expanduser()

    @property
    def database_url(self) -> str:
        return f"sqlite:///{self.database_path}"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def cookie_secure(self) -> bool:
        """Secure cookies only in production unless overridden."""
        if self.COOKIE_SECURE is not None:
            return self.COOKIE_SECURE
        return self.ENV == "production"


settings = Settings()
