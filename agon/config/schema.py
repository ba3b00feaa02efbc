"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_data_dir() -> Path:
    return Path.home() / ".agon"


class DatabaseConfig(BaseModel):
    """SQLite database holding rooms, messages, memories and the job queue."""
    path: str = str(_default_data_dir() / "agon.db")


class DiscordConfig(BaseModel):
    """Discord REST configuration."""
    bot_token: str = ""  # Bot token from Discord Developer Portal
    api_base: str = "https://discord.com/api/v10"
    timeout_seconds: float = 30.0
    fetch_limit: int = 50  # Messages pulled per history sync (max 100)


class ProviderConfig(BaseModel):
    """LLM provider configuration."""
    api_key: str = ""
    api_base: str | None = None


class ProvidersConfig(BaseModel):
    """Configuration for LLM providers."""
    openai: ProviderConfig = Field(default_factory=ProviderConfig)
    anthropic: ProviderConfig = Field(default_factory=ProviderConfig)
    gemini: ProviderConfig = Field(default_factory=ProviderConfig)
    openrouter: ProviderConfig = Field(default_factory=ProviderConfig)


class ArenaConfig(BaseModel):
    """Debate behaviour."""
    max_turns: int = 30  # Default for new rooms
    history_limit: int = 20  # Messages included in each prompt
    max_tool_rounds: int = 128
    thinking_delay_seconds: float = 3.0  # Pause before each LLM reply
    dedup_early_seconds: int = 30  # Synced copy may predate the local reply by this much
    dedup_late_seconds: int = 1800  # ...or follow it by this much
    memory_search_limit: int = 8


class StepPolicyConfig(BaseModel):
    """Retry policy for one class of steps."""
    max_retries: int = 3
    initial_delay_seconds: float = 2.0
    backoff_factor: float = 2.0
    timeout_seconds: float = 60.0


class StepsConfig(BaseModel):
    """Retry policies per step class."""
    db: StepPolicyConfig = Field(default_factory=StepPolicyConfig)
    chat: StepPolicyConfig = Field(
        default_factory=lambda: StepPolicyConfig(max_retries=5, initial_delay_seconds=5.0, timeout_seconds=120.0)
    )
    llm: StepPolicyConfig = Field(
        default_factory=lambda: StepPolicyConfig(max_retries=3, initial_delay_seconds=30.0, timeout_seconds=7200.0)
    )


class QueueConfig(BaseModel):
    """Durable job queue and worker pool."""
    workers: int = 4
    poll_interval_seconds: float = 1.0
    lease_seconds: int = 3 * 60 * 60  # Must outlive the slowest turn
    retry_delay_seconds: float = 30.0
    max_retry_delay_seconds: float = 900.0
    max_attempts: int = 10


class FinalizeConfig(BaseModel):
    """Summary and memory extraction after a debate ends."""
    enabled: bool = True
    provider: str = "openrouter"
    model: str = "meta-llama/llama-3.1-8b-instruct"
    max_memories_per_agent: int = 15
    transcript_chars: int = 50_000
    agent_transcript_chars: int = 25_000


class WatchdogConfig(BaseModel):
    """Stall recovery for rooms whose next job went missing."""
    enabled: bool = True
    interval_seconds: float = 60.0
    active_stall_seconds: int = 120
    audience_grace_seconds: int = 60


class LoggingConfig(BaseModel):
    """Log sink configuration."""
    level: str = "INFO"
    json_logs: bool = False


class Config(BaseSettings):
    """Root configuration for agon."""
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    arena: ArenaConfig = Field(default_factory=ArenaConfig)
    steps: StepsConfig = Field(default_factory=StepsConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    finalize: FinalizeConfig = Field(default_factory=FinalizeConfig)
    watchdog: WatchdogConfig = Field(default_factory=WatchdogConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def database_path(self) -> Path:
        """Expanded database path."""
        return Path(self.database.path).expanduser()

    def get_provider(self, name: str) -> ProviderConfig | None:
        """Get provider config by provider name."""
        return getattr(self.providers, name, None)

    model_config = SettingsConfigDict(
        env_prefix="AGON_",
        env_nested_delimiter="__",
    )
