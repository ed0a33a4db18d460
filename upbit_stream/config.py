from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import Channel


# Get the directory where this config.py file is located
_config_dir = Path(__file__).parent
_env_file = _config_dir.parent / ".env"  # project root .env


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Endpoint
    ws_url: str = "wss://api.upbit.com/websocket/v1"
    open_timeout_seconds: float = 30.0
    close_timeout_seconds: float = 10.0

    # Connection upkeep
    keepalive_interval_seconds: float = 30.0
    auto_reconnect: bool = True
    reconnect_initial_delay_seconds: float = 1.0
    reconnect_max_delay_seconds: float = 60.0

    # One-shot calls
    request_timeout_seconds: float = 10.0
    history_count: int = 200

    # Initial subscription intent
    default_market: str = "KRW-BTC"
    default_interval: str = "1"  # venue minute unit, or D/W
    channels: str = "ticker"  # comma-separated: "ticker,trade,orderbook"

    # Market catalog
    quote_currency: str = "KRW"

    # Per-consumer stream buffer (0 = unbounded)
    stream_queue_size: int = 1000

    log_level: str = "INFO"

    def get_channels(self) -> list[Channel]:
        """Parse subscribed channels. Ticker is always included."""
        channels = [Channel.TICKER]
        for name in self.channels.split(","):
            name = name.strip().lower()
            if not name:
                continue
            channel = Channel(name)
            if channel not in channels:
                channels.append(channel)
        return channels

    def get_quote_prefix(self) -> str:
        return f"{self.quote_currency.strip().upper()}-"


def get_settings() -> Settings:
    return Settings()
