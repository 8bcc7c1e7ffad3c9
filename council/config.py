"""Configuration settings for the council orchestrator."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    db_host: str = "localhost"
    db_port: int = 15432
    db_name: str = "council"
    db_user: str = "agent"
    db_password: str = "agent"

    # Redis
    redis_url: str = "redis://localhost:16379/0"
    redis_queue_max_depth: int = 100
    redis_events_enabled: bool = False
    drain_stream: str = "stream:tasks:drain"

    # Sandbox provider
    e2b_api_key: str | None = None
    sandbox_template: str = "zapdev"
    sandbox_timeout_seconds: int = 3600  # absolute lifetime
    sandbox_create_max_retries: int = 3
    sandbox_backoff_base_seconds: float = 1.0
    sandbox_backoff_max_seconds: float = 10.0
    sandbox_rate_limit_backoff_seconds: float = 30.0
    circuit_breaker_threshold: int = 5
    circuit_breaker_reset_seconds: float = 60.0

    # Inference gateway
    ai_gateway_base_url: str = "https://ai-gateway.vercel.sh/v1"
    ai_gateway_api_key: str | None = None
    agent_timeout: int = 300  # 5 minutes
    agent_max_tool_rounds: int = 12

    # Source control host
    github_api_url: str = "https://api.github.com"
    github_automation_token: str | None = None
    default_base_branch: str = "main"
    pr_creation_priority: int = 40

    # Task queue
    task_max_retries: int = 3

    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def async_database_url(self) -> str:
        """Async SQLAlchemy database URL."""
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    class Config:
        env_prefix = "COUNCIL_"
        env_file = ".env"


# Process-wide settings for the CLI entry point. Pipeline code takes settings explicitly.
settings = Settings()
