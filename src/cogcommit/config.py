"""
CogCommit Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables prefixed with ``COGCOMMIT_``.
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from cogcommit.constants import COGCOMMIT_UUID_NAMESPACE, SYNC_BATCH_SIZE


def get_default_data_dir() -> str:
    """
    Get the directory holding the local database, auth tokens and machine id.

    Returns:
        str: ``$HOME/.cogcommit``, or ``.cogcommit`` if HOME is not available
    """
    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".cogcommit")

    # Fallback for development/testing environments without HOME
    return ".cogcommit"


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for CogCommit logs.

    Follows XDG Base Directory Specification:
    - Uses $XDG_STATE_HOME/cogcommit if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/cogcommit if not set
    - Returns relative path ./logs if HOME not available (dev/testing)

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "cogcommit" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "cogcommit" / "logs")

    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COGCOMMIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Remote record service
    remote_url: str = ""
    remote_anon_key: str = ""
    remote_timeout: float = 30.0

    # Local storage
    data_dir: str = ""  # Defaults to ~/.cogcommit if empty
    db_filename: str = "cogcommit.db"
    auth_filename: str = "auth.json"
    machine_id_filename: str = "machine-id"

    # Sync
    sync_batch_size: int = SYNC_BATCH_SIZE  # Turns per upsert request
    uuid_namespace: str = COGCOMMIT_UUID_NAMESPACE
    warmup_marker: str = "warmup"
    free_tier_name: str = "free"
    auto_resolve_conflicts: bool = True
    clock_skew_tolerance_seconds: int = 300

    # Engine retry policy (errored commits get this many extra passes)
    sync_max_retries: int = 1
    sync_retry_initial_delay: float = 0.5
    sync_retry_max_delay: float = 30.0

    # Continuous sync queue
    queue_debounce_seconds: float = 0.5
    queue_interval_seconds: float = 300.0
    queue_retry_interval_seconds: float = 30.0
    queue_max_retries: int = 3

    # Visual attachments
    visual_bucket: str = "visuals"
    visual_cache_ttl_hours: int = 24

    # Studio API
    api_host: str = "127.0.0.1"
    api_port: int = 4747

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # XDG-compliant log directory (defaults to XDG state dir if empty)
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True
    log_file_enabled: bool = True
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5

    @property
    def data_directory(self) -> Path:
        """Get the data directory, using ~/.cogcommit if not specified."""
        if self.data_dir:
            return Path(self.data_dir).expanduser()
        return Path(get_default_data_dir())

    @property
    def database_url(self) -> str:
        """SQLite URL for the local record store."""
        return f"sqlite:///{self.data_directory / self.db_filename}"

    @property
    def auth_path(self) -> Path:
        return self.data_directory / self.auth_filename

    @property
    def machine_id_path(self) -> Path:
        return self.data_directory / self.machine_id_filename

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())

    @property
    def is_cloud_configured(self) -> bool:
        """Whether a remote URL and public key are both set."""
        return bool(self.remote_url and self.remote_anon_key)


# Global settings instance
settings = Settings()
