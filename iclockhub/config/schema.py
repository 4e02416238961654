"""Configuration schema using Pydantic."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings


class BufferConfig(BaseModel):
    """Per-device FIFO buffer caps."""

    ledger: int = 500
    events: int = 10000
    push_summaries: int = 300
    poll_history: int = 200
    raw_samples: int = 50
    operation_logs: int = 1000


class IClockConfig(BaseModel):
    """Device-facing push/pull endpoint configuration."""

    host: str = "0.0.0.0"
    port: int = 5099
    pull_mode: bool = False  # Synthesize a catch-up fetch on idle polls
    default_lookback_hours: int = 48
    command_dialect: str = "DATA_QUERY"  # DATA_QUERY | GET_ATTLOG | ATTLOG
    use_crlf: bool = False
    stale_seconds: int = 90
    user_sync_interval_hours: float = 6.0  # 0 disables automatic roster sync on poll
    max_push_bytes: int = 10 * 1024 * 1024
    device_timezone: str = "UTC"  # Zone the terminals' wall clocks run in
    buffers: BufferConfig = Field(default_factory=BufferConfig)

    @property
    def line_ending(self) -> str:
        return "\r\n" if self.use_crlf else "\n"


class AdminConfig(BaseModel):
    """Administrative JSON API configuration."""

    enabled: bool = True
    max_body_bytes: int = 1024 * 1024


class RealtimeConfig(BaseModel):
    """Server-sent event stream configuration."""

    enabled: bool = True
    queue_size: int = 256
    keepalive_seconds: float = 15.0


class Config(BaseSettings):
    """Root configuration for iclockhub."""
    iclock: IClockConfig = Field(default_factory=IClockConfig)
    admin: AdminConfig = Field(default_factory=AdminConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)

    model_config = ConfigDict(
        env_prefix="ICLOCKHUB_",
        env_nested_delimiter="__"
    )
