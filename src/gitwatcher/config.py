"""Daemon configuration via pydantic-settings (.env + GITWATCHER_* env vars)."""

import os
import sys
from pathlib import Path

from loguru import logger
from pydantic_settings import BaseSettings, SettingsConfigDict

_CONFIG_HOME = Path.home() / ".config" / "gitwatcher"


class WatcherConfig(BaseSettings):
    """All daemon configuration with layered resolution:
    .env file < environment variables < constructor kwargs.

    User-editable service settings (AI backend, tokens) are not here; they
    live in the state file next to the watched repositories.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GITWATCHER_",
        extra="ignore",
    )

    # -- Files --
    state_file: Path = _CONFIG_HOME / "config.json"
    log_dir: Path = _CONFIG_HOME / "logs"
    lock_dir: Path = _CONFIG_HOME

    # -- Scheduling --
    default_schedule: str = "*/30 * * * *"
    max_workers: int = 8
    max_idle_wait: float = 60.0
    reload_interval: float = 5.0  # seconds between state file checks in serve

    # -- Network --
    network_timeout: float = 120.0
    github_api_url: str = "https://api.github.com"
    gemini_api_url: str = "https://generativelanguage.googleapis.com/v1beta"

    # -- Git --
    ssh_key_path: Path | None = None  # None = ~/.ssh/id_rsa
    remote_name: str = "origin"
    integration_branch: str = "main"
    author_name: str = "GitWatcher"
    author_email: str = "gitwatcher@local"

    # -- Behavior --
    log_level: str = "INFO"

    @property
    def resolved_ssh_key(self) -> Path:
        """SSH key used for push/fetch. SSH_KEY_PATH is honored for compatibility."""
        if self.ssh_key_path is not None:
            return self.ssh_key_path.expanduser()
        env_key = os.environ.get("SSH_KEY_PATH", "")
        if env_key:
            return Path(env_key).expanduser()
        return Path.home() / ".ssh" / "id_rsa"

    def ensure_dirs(self) -> None:
        """Create all required directories if they don't exist."""
        for d in (self.state_file.parent, self.log_dir, self.lock_dir):
            d.mkdir(parents=True, exist_ok=True)

    def setup_logging(self) -> None:
        """Configure loguru for the daemon."""
        logger.remove()  # Remove default stderr handler

        log_format = (
            "{time:YYYY-MM-DDTHH:mm:ssZ} | {level:<8} | "
            "{extra[stage]:<10} | {message}"
        )

        def _default_extra(record):
            record["extra"].setdefault("stage", "")
            return True

        logger.add(
            sys.stderr,
            format=log_format,
            level=self.log_level.upper(),
            filter=_default_extra,
        )

        self.ensure_dirs()
        logger.add(
            str(self.log_dir / "gitwatcher.log"),
            format=log_format,
            level="DEBUG",
            rotation="10 MB",
            retention="30 days",
            filter=_default_extra,
        )
