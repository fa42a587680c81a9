from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file into environment BEFORE any settings classes are instantiated
load_dotenv()


class AgentSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AGENT_")

    high_confidence_threshold: int = Field(
        default=80, description="Minimum recommendation confidence (0-100) to enqueue an action"
    )
    activity_log_size: int = Field(default=100, description="Activity log ring buffer length")
    action_history_size: int = Field(default=100, description="Finished actions kept per agent")
    subscriber_queue_size: int = Field(default=100, description="Observer channel capacity")
    load_defaults: bool = Field(default=True, description="Register the default agent set on startup")
    principal: str = Field(default="", description="Wallet address the default agents act for")


class AuthorizationSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="AUTH_")

    default_max_amount: float = Field(default=1000.0, description="Default per-transaction cap")
    default_expiry_hours: float = Field(default=24.0, description="Default grant lifetime")


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="DB_")

    url: str = Field(default="sqlite:///./grants.db", description="SQLAlchemy URL for grant storage")
    echo: bool = Field(default=False, description="Echo SQL queries")


class MarketDataSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MARKET_DATA_")

    provider: str = Field(default="defillama", description="defillama|static")
    defillama_url: str = "https://yields.llama.fi/pools"
    chain: str = Field(default="BSC", description="Chain to pull pools for")
    min_tvl_usd: float = Field(default=100_000.0, description="Ignore pools below this TVL")
    max_pools: int = Field(default=50, description="Max opportunities per snapshot")
    cache_ttl_seconds: int = Field(default=300, description="Snapshot cache lifetime")
    max_stale_seconds: int = Field(default=900, description="Serve cache on fetch failure up to this age")
    request_timeout_seconds: float = 10.0

    # Retry settings for the upstream API
    max_retries: int = Field(default=3, description="Max retry attempts for snapshot fetches")
    retry_backoff_base: float = Field(default=2.0, description="Exponential backoff base (seconds)")
    retry_backoff_max: float = Field(default=8.0, description="Max backoff delay (seconds)")


class ExecutionSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="EXECUTION_")

    gateway: str = Field(default="paper", description="Execution gateway (paper)")
    paper_initial_balance: float = Field(default=10_000.0, description="Simulated balance per principal")
    drain_interval_seconds: int = Field(default=15, description="How often approved actions are dispatched")
    trade_history_size: int = Field(default=100, description="Trade records kept in memory")


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: str = Field(default="INFO", description="Log level: DEBUG|INFO|WARNING|ERROR")
    format: str = Field(default="json", description="json|console")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra environment variables (handled by nested settings)
    )

    environment: str = Field(default="development", description="development|test|production")
    debug: bool = False

    agents: AgentSettings = Field(default_factory=AgentSettings)
    auth: AuthorizationSettings = Field(default_factory=AuthorizationSettings)
    db: DatabaseSettings = Field(default_factory=DatabaseSettings)
    market_data: MarketDataSettings = Field(default_factory=MarketDataSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


settings = Settings()
