from pathlib import Path
from typing import Dict, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client and mock backend configuration."""

    runner_base_url: str = "http://localhost:5001"
    runner_ws_path: str = "/api/devlm/ws"
    runner_token_path: str = "/api/devlm/ws-token"

    # Credentials for the token side channel (session cookie and/or bearer key)
    runner_cookies: Dict[str, str] = {}
    runner_api_key: str | None = None
    token_request_timeout_seconds: float = 10.0

    interrupt_message: str = "User requested pause"

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_dir: Path = Path("logs")

    mock_host: str = "127.0.0.1"
    mock_port: int = 5001
    mock_event_delay_seconds: float = 0.2

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        extra="ignore",
    )

    @property
    def ws_url(self) -> str:
        """WebSocket URL derived from the HTTP base URL (http->ws, https->wss)."""
        base = self.runner_base_url.rstrip("/")
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}{self.runner_ws_path}"

    @property
    def token_url(self) -> str:
        return f"{self.runner_base_url.rstrip('/')}{self.runner_token_path}"


def get_settings() -> Settings:
    """Return the application settings singleton (loaded from env / .env)."""
    global _SETTINGS
    try:
        return _SETTINGS
    except NameError:
        _SETTINGS = Settings()
        return _SETTINGS
