"""Application settings and configuration.

This module defines all configuration options for the RoleGate verification
service. Settings are loaded from environment variables with sensible defaults.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="RoleGate", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")

    # Operator authentication
    secret_key: str = Field(alias="SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    debug: bool = Field(default=False, alias="DEBUG")

    # Database configuration
    database_url: str = Field(default="sqlite:///./rolegate.db", alias="DATABASE_URL")
    test_database_url: str | None = Field(default=None, alias="TEST_DATABASE_URL")
    use_testing_database: bool = Field(default=False, alias="USE_TEST_DATABASE")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Challenge (nonce) lifecycle and key-value storage
    nonce_ttl_seconds: int = Field(default=300, ge=1, alias="NONCE_TTL_SECONDS")
    kv_backend: str = Field(default="memory", alias="KV_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")
    kv_memory_max_entries: int = Field(default=10_000, ge=1, alias="KV_MEMORY_MAX_ENTRIES")

    # EIP-712 domain the wallet signs under
    eip712_domain_name: str = Field(default="verethfier", alias="EIP712_DOMAIN_NAME")
    eip712_domain_version: str = Field(default="1", alias="EIP712_DOMAIN_VERSION")
    eip712_chain_id: int = Field(default=1, alias="EIP712_CHAIN_ID")
    signature_address_case_insensitive: bool = Field(
        default=False,
        alias="SIGNATURE_ADDRESS_CASE_INSENSITIVE",
    )

    # Holdings data source
    asset_api_url: str | None = Field(default=None, alias="ASSET_API_URL")
    asset_api_key: str | None = Field(default=None, alias="ASSET_API_KEY")
    asset_table: str = Field(default="ethscriptions", alias="ASSET_TABLE")
    marketplace_escrow_address: str | None = Field(
        default=None,
        alias="MARKETPLACE_ESCROW_ADDRESS",
    )
    asset_http_timeout_seconds: float = Field(default=10.0, alias="ASSET_HTTP_TIMEOUT_SECONDS")

    # Chat platform (Discord) integration
    discord_bot_token: str | None = Field(default=None, alias="DISCORD_BOT_TOKEN")
    discord_application_id: str | None = Field(default=None, alias="DISCORD_APPLICATION_ID")
    discord_api_base_url: str = Field(
        default="https://discord.com/api/v10",
        alias="DISCORD_API_BASE_URL",
    )
    discord_http_timeout_seconds: float = Field(
        default=10.0,
        alias="DISCORD_HTTP_TIMEOUT_SECONDS",
    )

    # Background reverification sweep
    reverify_enabled: bool = Field(default=False, alias="REVERIFY_ENABLED")
    reverify_interval_seconds: float = Field(default=3600.0, alias="REVERIFY_INTERVAL_SECONDS")
    reverify_batch_size: int = Field(default=10, ge=1, alias="REVERIFY_BATCH_SIZE")
    reverify_batch_pause_seconds: float = Field(
        default=1.0,
        alias="REVERIFY_BATCH_PAUSE_SECONDS",
    )

    # CORS configuration for the verification web page
    cors_origins: list[str] = Field(default=["*"], alias="CORS_ORIGINS")
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(default=["*"], alias="CORS_ALLOW_HEADERS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def database_url_sync(self) -> str:
        """Return a sync-compatible database URL for tooling.

        Converts asyncpg URLs to psycopg for synchronous database operations
        like Alembic migrations.
        """
        url = self.effective_database_url
        if url.startswith("postgresql+asyncpg"):
            return url.replace("postgresql+asyncpg", "postgresql+psycopg", 1)
        return url

    @property
    def effective_database_url(self) -> str:
        """Return the database URL respecting testing overrides."""
        if self.use_testing_database and self.test_database_url:
            return self.test_database_url
        return self.database_url

    @property
    def discord_enabled(self) -> bool:
        """Return True when the bot credentials needed for role calls are present."""
        return bool(self.discord_bot_token)


settings = Settings()  # type: ignore[call-arg]
