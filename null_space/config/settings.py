"""Configuration settings for null-space."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

# NOTE: load_dotenv() is called in CLI main.py for faster module imports


@dataclass
class Settings:
    """Main settings container."""

    # Application data root; vaults live under data_dir / "vaults"
    data_dir: Path = field(default_factory=lambda: Path.home() / ".null_space")

    # Key derivation
    kdf_iterations: int = 480_000  # OWASP 2023 recommendation

    # Session management
    session_timeout_minutes: int = 0  # 0 = sessions live until locked

    # Search
    search_limit: int = 20

    # Logging
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Create settings from environment variables.

        Environment variables:
            NULL_SPACE_DATA_DIR: Application data root
            NULL_SPACE_KDF_ITERATIONS: PBKDF2 iteration count
            NULL_SPACE_SESSION_TIMEOUT: Session timeout in minutes (0 = none)
            NULL_SPACE_SEARCH_LIMIT: Default number of search results
            LOG_LEVEL: Log level name
            NULL_SPACE_LOG_FILE: Optional log file path
        """
        settings = cls()

        if data_dir := os.getenv("NULL_SPACE_DATA_DIR"):
            settings.data_dir = Path(data_dir).expanduser()

        if iterations := os.getenv("NULL_SPACE_KDF_ITERATIONS"):
            settings.kdf_iterations = int(iterations)

        if timeout := os.getenv("NULL_SPACE_SESSION_TIMEOUT"):
            settings.session_timeout_minutes = int(timeout)

        if limit := os.getenv("NULL_SPACE_SEARCH_LIMIT"):
            settings.search_limit = int(limit)

        if log_level := os.getenv("LOG_LEVEL"):
            settings.log_level = log_level

        if log_file := os.getenv("NULL_SPACE_LOG_FILE"):
            settings.log_file = Path(log_file)

        return settings


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def configure(settings: Settings) -> None:
    """Set the global settings instance."""
    global _settings
    _settings = settings
