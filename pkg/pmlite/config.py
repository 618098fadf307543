# PM Lite: configuration
# Override storage, backend and notification settings via config.yaml or PMLITE_* env vars.

import os
import logging
import yaml
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_PATH = Path.home() / ".config" / "pmlite" / "config.yaml"

# env var -> Config field
ENV_OVERRIDES = {
    "PMLITE_DB": "db_path",
    "PMLITE_SUPABASE_URL": "supabase_url",
    "PMLITE_SUPABASE_ANON_KEY": "supabase_anon_key",
    "PMLITE_NOTIFY_URL": "notify_url",
    "PMLITE_NOTIFY_EMAIL_TO": "notify_email_to",
    "PMLITE_NOTIFY_WHATSAPP_TO": "notify_whatsapp_to",
    "PMLITE_API_SECRET": "api_secret",
}


@dataclass
class Config:
    """Runtime configuration for PM Lite."""

    # Local persistence
    db_path: str = "~/.local/share/pmlite/pmlite.db"

    # Hosted backend (empty = cloud disabled, local-only)
    supabase_url: str = ""
    supabase_anon_key: str = ""

    # Notifications (empty endpoint = log and simulate)
    notify_url: str = ""
    notify_email_to: str = ""
    notify_whatsapp_to: str = ""

    # HTTP API
    api_secret: str = ""  # empty = mutating routes unauthenticated

    # Behavior
    request_timeout: Optional[float] = None  # None = wait indefinitely
    background_sync: bool = True

    @property
    def cloud_enabled(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)

    def resolve_paths(self):
        """Expand ~ in the database path."""
        self.db_path = str(Path(self.db_path).expanduser())

    def apply_env(self, environ=None):
        env = os.environ if environ is None else environ
        for var, attr in ENV_OVERRIDES.items():
            if env.get(var):
                setattr(self, attr, env[var])

    @classmethod
    def load(cls, path: Optional[str] = None, environ=None) -> "Config":
        """
        Load config from a YAML file, then apply env overrides.

        A missing or unreadable default file falls back to defaults; an
        explicitly given path that does not exist raises ConfigError.
        """
        cfg_path = Path(path).expanduser() if path else CONFIG_PATH
        if path and not cfg_path.exists():
            raise ConfigError(f"Config file not found: {cfg_path}")
        known = {f.name for f in fields(cls)}
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                if not isinstance(data, dict):
                    raise ValueError("top level must be a mapping")
                cfg = cls(**{k: v for k, v in data.items() if k in known})
            except (OSError, ValueError, TypeError, yaml.YAMLError) as e:
                logger.warning(f"Ignoring config {cfg_path}: {e}")
                cfg = cls()
        else:
            cfg = cls()
        cfg.apply_env(environ)
        cfg.resolve_paths()
        return cfg
