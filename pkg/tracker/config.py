# Task tracker: configuration
# Override backend, paths and bind address via tracker.yaml, env vars or CLI args.

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Optional

import yaml

from .json_store import JSONRepository
from .store import SQLiteRepository, TaskRepository

CONFIG_PATH = Path(__file__).resolve().parents[2] / "tracker.yaml"

BACKENDS = ("sqlite", "json")

# Environment variable → config field
ENV_OVERRIDES = {
    "TRACKER_BACKEND": "backend",
    "TRACKER_DB": "db_path",
    "TRACKER_DATA_DIR": "data_dir",
    "TRACKER_HOST": "host",
    "TRACKER_PORT": "port",
    "TRACKER_LOG_LEVEL": "log_level",
}


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""
    pass


@dataclass
class TrackerConfig:
    """Runtime configuration for the task tracker."""

    # Storage
    backend: str = "sqlite"           # "sqlite" or "json"
    db_path: str = "./data/todo.db"   # sqlite backend
    data_dir: str = "./data"          # json backend

    # HTTP
    host: str = "127.0.0.1"
    port: int = 8080

    log_level: str = "INFO"

    def validate(self):
        """Normalize values and reject the ones we cannot run with."""
        self.backend = str(self.backend).strip().lower()
        if self.backend not in BACKENDS:
            raise ConfigError(f"Unknown backend {self.backend!r}. Available: {list(BACKENDS)}")
        try:
            self.port = int(self.port)
        except (TypeError, ValueError):
            raise ConfigError(f"port must be an integer, got {self.port!r}")
        self.log_level = str(self.log_level).upper()
        self.db_path = str(Path(self.db_path).expanduser())
        self.data_dir = str(Path(self.data_dir).expanduser())

    def apply_env(self, environ=None):
        """Let TRACKER_* environment variables override file values."""
        environ = os.environ if environ is None else environ
        for var, name in ENV_OVERRIDES.items():
            value = environ.get(var)
            if value:
                setattr(self, name, value)

    @classmethod
    def load(cls, path: Optional[str] = None, environ=None) -> "TrackerConfig":
        """Load config from YAML file, falling back to defaults."""
        environ = os.environ if environ is None else environ
        if path:
            cfg_path = Path(path)
        elif environ.get("TRACKER_CONFIG"):
            cfg_path = Path(environ["TRACKER_CONFIG"])
        else:
            cfg_path = CONFIG_PATH

        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Cannot read config {cfg_path}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"Config {cfg_path} must be a mapping")
            known = {f.name for f in fields(cls)}
            cfg = cls(**{k: v for k, v in data.items() if k in known})
        elif path:
            raise ConfigError(f"Config file not found: {cfg_path}")
        else:
            cfg = cls()

        cfg.apply_env(environ)
        cfg.validate()
        return cfg


def open_repository(cfg: TrackerConfig) -> TaskRepository:
    """Build the repository the config asks for."""
    if cfg.backend == "json":
        return JSONRepository(cfg.data_dir)
    return SQLiteRepository(cfg.db_path)
