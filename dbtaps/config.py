"""
dbtaps Configuration

Settings come from three layers, later ones winning:
1. Defaults on the Config dataclass
2. A JSON config file (--config)
3. DBTAPS_* environment variables (a .env file is honoured)

CLI options are applied on top by the commands themselves.
"""

import os
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Any, Callable, Dict, Optional
import json

from dotenv import load_dotenv

ENV_PREFIX = 'DBTAPS_'


@dataclass
class Config:
    """
    Settings shared by the client commands and the server.
    """
    # Endpoints
    database_url: str = ''
    remote_url: str = ''

    # Chunking
    chunk_size: int = 1000
    target_time_low: float = 0.8
    target_time_high: float = 1.1
    max_chunk_size: Optional[int] = None
    max_chunk_retries: Optional[int] = None  # None = retry forever

    # Server
    host: str = '0.0.0.0'
    port: int = 5000
    login: str = ''
    password: str = ''

    # Logging
    log_level: str = 'INFO'

    def __post_init__(self):
        if self.chunk_size < 1:
            raise ValueError(f"chunk_size must be at least 1, got {self.chunk_size}")
        if self.target_time_low > self.target_time_high:
            raise ValueError("target_time_low must not exceed target_time_high")

    @classmethod
    def from_env(cls) -> 'Config':
        """Defaults overridden by whatever DBTAPS_* variables are set."""
        load_dotenv()
        return cls(**_read_env())

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Read a JSON config file; unknown keys are ignored."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def save(self, path: Path):
        """Write the settings as a JSON config file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


# Field -> parser for its environment variable
_ENV_PARSERS: Dict[str, Callable[[str], Any]] = {
    'database_url': str,
    'remote_url': str,
    'chunk_size': int,
    'target_time_low': float,
    'target_time_high': float,
    'max_chunk_size': int,
    'max_chunk_retries': int,
    'host': str,
    'port': int,
    'login': str,
    'password': str,
    'log_level': str,
}


def env_name(field_name: str) -> str:
    return ENV_PREFIX + field_name.upper()


def _read_env() -> Dict[str, Any]:
    values = {}
    for name, parse in _ENV_PARSERS.items():
        raw = os.getenv(env_name(name))
        if raw:
            values[name] = parse(raw)
    return values


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Build the effective configuration.

    The file (if any) is read first; environment variables then replace
    individual fields.
    """
    base: Dict[str, Any] = {}
    if config_path and config_path.exists():
        base = Config.from_file(config_path).to_dict()

    load_dotenv()
    base.update(_read_env())
    return Config(**base)
