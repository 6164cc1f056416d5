"""Configuration schema for mission-control."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


class AgentConfig(BaseModel):
    """The interactive CLI agent launched per session."""

    command: str = "claude"
    args: list[str] = Field(default_factory=list)
    env_override: str = "MISSION_CONTROL_AGENT_CMD"


class RuntimeConfig(BaseModel):
    """Per-session PTY runtime tuning."""

    cols: int = 80
    rows: int = 30
    warmup_s: float = 0.5
    stop_grace_s: float = 2.0
    # Output is coalesced into at most one event per interval (~60/s).
    flush_interval_s: float = 0.016
    silence_threshold_s: float = 30.0
    progress_tick_s: float = 1.0
    rate_window_s: float = 5.0
    max_output_chunks: int = 1000
    max_output_bytes: int = 10 * 1024 * 1024


class PersistenceConfig(BaseModel):
    """Durable state location and cadence."""

    state_dir: str = "~/.claude-mission-control"
    state_file: str = "state.json"
    autosave_interval_s: float = 30.0
    command_history_limit: int = 100


class DevModeConfig(BaseModel):
    """Development switches replacing the agent executable."""

    simulator: bool = False
    echo: bool = False


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file: str = ""


class Config(BaseSettings):
    """Root configuration for mission-control."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    persistence: PersistenceConfig = Field(default_factory=PersistenceConfig)
    test_mode: DevModeConfig = Field(default_factory=DevModeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def state_path(self) -> Path:
        """Get expanded path of the persisted state document."""
        return Path(self.persistence.state_dir).expanduser() / self.persistence.state_file

    model_config = ConfigDict(
        env_prefix="MISSION_CONTROL_",
        env_nested_delimiter="__",
        extra="ignore",
    )
