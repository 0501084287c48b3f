from pydantic_settings import BaseSettings
from typing import List
from pathlib import Path
import json
import os


SETTINGS_FILE = Path(__file__).parent.parent.parent / "settings.json"


def load_settings_from_file() -> dict:
    """Load settings from JSON file if exists."""
    if SETTINGS_FILE.exists():
        try:
            with open(SETTINGS_FILE) as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError):
            pass
    return {}


def save_settings_to_file(settings: dict) -> None:
    """Save settings to JSON file."""
    with open(SETTINGS_FILE, "w") as f:
        json.dump(settings, f, indent=2)


class Settings(BaseSettings):
    # Chat source
    chat_source_mode: str = "mock"
    local_chats_dir: str = "./demo-chats"
    host_base_url: str = "http://localhost:8000"
    host_api_token: str = ""

    # Organization state persistence
    state_file: str = "./organization_state.json"
    save_debounce_seconds: float = 1.0

    # Aggregation
    page_size: int = 100
    fetch_timeout_seconds: float = 10.0
    max_concurrent_fetches: int = 8
    refresh_debounce_seconds: float = 0.1

    # Reconciliation delays (seconds), per trigger
    remap_delay_renamed: float = 0.5
    remap_delay_duplicated: float = 0.5
    remap_delay_reloaded: float = 1.0
    remap_delay_page_loaded: float = 0.2
    prune_delay: float = 0.1
    remap_followup_delay: float = 3.0  # 0 disables the second pass

    # Server
    backend_port: int = 8000
    cors_origins: List[str] = ["http://localhost:5173"]

    class Config:
        env_file = ".env"
        env_prefix = "CHATSHELF_"
        extra = "ignore"

    def __init__(self, **kwargs):
        # Load from settings file first
        file_settings = load_settings_from_file()

        # Merge: kwargs > file_settings > env vars (handled by pydantic)
        merged = {**file_settings, **kwargs}

        super().__init__(**merged)

        # Handle CORS_ORIGINS as JSON string from env
        cors_env = os.getenv("CORS_ORIGINS")
        if cors_env:
            try:
                self.cors_origins = json.loads(cors_env)
            except json.JSONDecodeError:
                pass

    def get_effective_settings(self) -> dict:
        """Get current effective settings (for API response)."""
        return {
            "chat_source_mode": self.chat_source_mode,
            "local_chats_dir": self.local_chats_dir,
            "host_base_url": self.host_base_url,
            "host_api_token": self._mask_key(self.host_api_token),
            "state_file": self.state_file,
            "page_size": self.page_size,
            "fetch_timeout_seconds": self.fetch_timeout_seconds,
            "max_concurrent_fetches": self.max_concurrent_fetches,
        }

    def remap_delay_for(self, event_type: str) -> float:
        """Delay before reconciling after the given upstream event."""
        delays = {
            "owner_renamed": self.remap_delay_renamed,
            "owner_duplicated": self.remap_delay_duplicated,
            "directory_reloaded": self.remap_delay_reloaded,
            "directory_page_loaded": self.remap_delay_page_loaded,
            "owner_deleted": self.prune_delay,
        }
        return delays.get(event_type, self.remap_delay_renamed)

    def _mask_key(self, key: str) -> str:
        """Mask a secret key for display."""
        if not key:
            return ""
        if len(key) <= 8:
            return "*" * len(key)
        return key[:4] + "*" * (len(key) - 8) + key[-4:]


def reload_settings() -> "Settings":
    """Reload settings from file and environment."""
    global settings
    settings = Settings()
    return settings


settings = Settings()
