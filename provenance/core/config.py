"""Application configuration."""

import os
import re

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings.

    Environment variables will be loaded and validated using Pydantic.
    """

    app_name: str = "Provenance Engine"
    version: str = "0.1.0"
    api_prefix: str = "/api/v1"

    # CORS Settings
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = False

    # Database Settings
    DATABASE_URL: str = "sqlite:///./provenance.db"
    MAX_CONNECTIONS: int = 10

    # Redis Settings (empty URL disables the durable queue)
    REDIS_URL: str = ""
    REDIS_POOL_SIZE: int = 10
    REDIS_SOCKET_TIMEOUT: int = 5

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    # Chain Settings
    RPC_URL: str = "https://sepolia.base.org"
    RPC_TIMEOUT: int = Field(default=10, gt=0)
    DEFAULT_CHAIN_ID: int = 84532
    REGISTRY_ADDRESS: str | None = None
    REGISTRY_START_BLOCK: int | None = Field(default=None, ge=0)
    LOG_SCAN_BLOCK_WINDOW: int = Field(default=1_000_000, gt=0)
    # Ordered chainId -> registry address, e.g. {"84532": "0x...", "8453": "0x..."}
    REGISTRY_DEPLOYMENTS: dict[int, str] = Field(default_factory=dict)
    CHAIN_RPC_URLS: dict[int, str] = Field(default_factory=dict)

    # Manifest Settings
    IPFS_GATEWAY: str = "https://ipfs.io/ipfs/"
    MANIFEST_FETCH_TIMEOUT: float = Field(default=15.0, gt=0)
    MANIFEST_MAX_BYTES: int = Field(default=1024 * 1024, gt=0)

    # Uploads (must be readable by workers in queued mode)
    UPLOAD_DIR: str = "./uploads"

    # Verification Job Settings
    VERIFY_QUEUE_NAME: str = "verification"
    VERIFY_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    VERIFY_BACKOFF_SECONDS: int = Field(default=5, ge=0)
    VERIFY_WORKER_COUNT: int = Field(default=3, ge=1)
    VERIFY_JOB_TIMEOUT: int = 300
    COMPLETED_JOB_TTL: int = Field(default=7 * 24 * 3600, ge=0)
    FAILED_JOB_TTL: int = Field(default=30 * 24 * 3600, ge=0)

    # Cache TTLs (seconds)
    CACHE_TTL_MANIFEST: int = 15 * 60
    CACHE_TTL_PLATFORM_BINDING: int = 3 * 60

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
    )

    @model_validator(mode="after")
    def validate_origins(self) -> "Settings":
        """Validate CORS origins."""
        if self.cors_origins == ["*"]:
            self.cors_origins = [
                "http://localhost",
                "http://localhost:8000",
                "http://localhost:3000",
            ]
        return self

    @model_validator(mode="after")
    def use_test_configs_for_testing(self) -> "Settings":
        """Use test database and Redis for tests to ensure isolation."""
        if os.getenv("TESTING") == "true":
            test_database_url = os.getenv("TEST_DATABASE_URL")
            if test_database_url:
                self.DATABASE_URL = test_database_url

            test_redis_url = os.getenv("TEST_REDIS_URL")
            if test_redis_url is not None:
                self.REDIS_URL = test_redis_url
            elif self.REDIS_URL and re.search(r"/0$", self.REDIS_URL):
                # Switch from database 0 to database 1 for tests
                self.REDIS_URL = re.sub(r"/0$", "/1", self.REDIS_URL)
        return self


# Create settings instance
settings = Settings()
