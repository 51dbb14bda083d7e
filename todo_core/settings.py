# =============================================================================
# todo_core/settings.py
# Application settings: defaults, secrets.toml, .env and environment variables
# =============================================================================
"""
Settings for the sync core.

Sources, lowest to highest precedence:
    1. Built-in defaults
    2. ``secrets.toml`` with a ``[supabase]`` table::

        [supabase]
        url = "https://your-project.supabase.co"
        key = "your-anon-key"

    3. A ``.env`` file (loaded with python-dotenv, never overriding the
       real environment)
    4. Environment variables: SUPABASE_URL, SUPABASE_KEY, TODO_DATA_DIR,
       TODO_LOG_LEVEL, TODO_LOG_TO_FILE, TODO_SESSION_DAYS
"""

from __future__ import annotations
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import logging

from dotenv import load_dotenv

from todo_core.errors import ConfigurationError

logger = logging.getLogger(__name__)

APP_ID = "com.electron.todolist"
DEFAULT_DATA_DIR = Path.home() / ".todo-sync"
DEFAULT_SECRETS_FILE = Path("secrets.toml")
AUTH_REDIRECT_URL = "com.electron.todolist://auth/callback"


@dataclass
class Settings:
    """Resolved configuration for one application instance."""
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    data_dir: Path = field(default_factory=lambda: DEFAULT_DATA_DIR)
    log_level: str = "INFO"
    log_to_file: bool = True
    session_days: int = 10
    redirect_url: str = AUTH_REDIRECT_URL
    app_id: str = APP_ID

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "cache"

    @property
    def session_path(self) -> Path:
        return self.data_dir / "session.enc"

    @property
    def log_dir(self) -> Path:
        return self.data_dir / "logs"

    def require_remote(self) -> Tuple[str, str]:
        """
        Return (url, key) for the Supabase project.

        Raises:
            ConfigurationError: if either value is missing
        """
        if not self.supabase_url:
            raise ConfigurationError("Supabase URL is not configured", config_key="SUPABASE_URL")
        if not self.supabase_key:
            raise ConfigurationError("Supabase key is not configured", config_key="SUPABASE_KEY")
        return self.supabase_url, self.supabase_key


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _read_secrets(path: Path) -> Dict[str, Any]:
    """Read the [supabase] table of a secrets.toml; {} if absent."""
    if not path.exists():
        return {}
    try:
        with open(path, "rb") as f:
            secrets = tomllib.load(f)
    except (tomllib.TOMLDecodeError, OSError) as e:
        raise ConfigurationError(f"Cannot read secrets file {path}: {e}") from e
    section = secrets.get("supabase", {})
    if not isinstance(section, dict):
        raise ConfigurationError("[supabase] in secrets file must be a table", config_key="supabase")
    return section


def load_settings(
    env_file: Optional[Path] = None,
    secrets_file: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Settings:
    """
    Build Settings from every configured source.

    Args:
        env_file: .env file to load (default: search from the working directory)
        secrets_file: secrets.toml path (default: ./secrets.toml)
        environ: Environment mapping to read instead of os.environ (tests)

    Returns:
        Settings instance
    """
    if environ is None:
        if env_file is not None:
            load_dotenv(env_file, override=False)
        else:
            load_dotenv(override=False)
        environ = dict(os.environ)

    settings = Settings()

    secrets = _read_secrets(Path(secrets_file) if secrets_file else DEFAULT_SECRETS_FILE)
    settings.supabase_url = secrets.get("url") or settings.supabase_url
    settings.supabase_key = secrets.get("key") or settings.supabase_key

    if environ.get("SUPABASE_URL"):
        settings.supabase_url = environ["SUPABASE_URL"]
    if environ.get("SUPABASE_KEY"):
        settings.supabase_key = environ["SUPABASE_KEY"]
    if environ.get("TODO_DATA_DIR"):
        settings.data_dir = Path(environ["TODO_DATA_DIR"]).expanduser()
    if environ.get("TODO_LOG_LEVEL"):
        settings.log_level = environ["TODO_LOG_LEVEL"].upper()
    if environ.get("TODO_LOG_TO_FILE"):
        settings.log_to_file = _parse_bool(environ["TODO_LOG_TO_FILE"])
    if environ.get("TODO_SESSION_DAYS"):
        try:
            settings.session_days = int(environ["TODO_SESSION_DAYS"])
        except ValueError as e:
            raise ConfigurationError(
                "TODO_SESSION_DAYS must be an integer", config_key="TODO_SESSION_DAYS"
            ) from e
        if settings.session_days <= 0:
            raise ConfigurationError(
                "TODO_SESSION_DAYS must be positive", config_key="TODO_SESSION_DAYS"
            )

    logger.debug(f"Settings loaded (data_dir={settings.data_dir})")
    return settings
