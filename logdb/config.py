"""Configuration management for the request log database.

Provides:
- A small Config base class with dict/JSON round-tripping
- AggregatorConfig: store location, debug flag, flush and retry settings
- Environment overrides (LOGDB_PATH, LOGDB_DEBUG)
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from logdb.retry import RetryPolicy

_TRUE_VALUES = {"1", "true", "yes", "on"}


class Config:
    """Base configuration class for organizing application settings."""

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary.

        Returns:
            Dictionary of all config attributes
        """
        return {k: v for k, v in self.__dict__.items() if not k.startswith("_")}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary.

        Unknown keys are rejected so a typo in a config file does not pass
        silently.

        Args:
            data: Configuration dictionary

        Returns:
            Config instance with values from dictionary
        """
        config = cls()
        for key, value in data.items():
            if not hasattr(config, key):
                raise ValueError(f"Unknown configuration key: {key}")
            setattr(config, key, value)
        config._coerce()
        return config

    def _coerce(self) -> None:
        """Hook for subclasses to normalise types after loading."""

    def save_json(self, path: Path) -> None:
        """Save configuration to JSON file.

        Args:
            path: Path to save configuration file
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2, default=str)

    @classmethod
    def load_json(cls, path: Path) -> "Config":
        """Load configuration from JSON file.

        Raises:
            FileNotFoundError: If file doesn't exist
            json.JSONDecodeError: If file is not valid JSON
        """
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data)


class AggregatorConfig(Config):
    """Configuration for the database aggregator."""

    def __init__(self):
        """Initialize aggregator configuration with defaults."""
        super().__init__()
        self.db_path = Path("requests.sqlite")
        self.debug = False
        self.rebuild = False
        self.flush_interval = 100          # flush file progress every N units; 0 = only at finalize
        self.busy_timeout_ms = 2000
        self.retry_interval = 0.3
        self.retry_max_attempts: Optional[int] = 10   # None or 0 = retry forever
        self.retry_backoff = 2.0
        self.retry_max_interval = 5.0

    def _coerce(self) -> None:
        if str(self.db_path) != ":memory:":
            self.db_path = Path(self.db_path)
        self.flush_interval = int(self.flush_interval)
        if self.retry_max_attempts is not None:
            # 0 means retry forever, as on the command line
            self.retry_max_attempts = int(self.retry_max_attempts) or None

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "AggregatorConfig":
        """Defaults overridden by LOGDB_PATH / LOGDB_DEBUG."""
        environ = os.environ if environ is None else environ
        config = cls()
        if environ.get("LOGDB_PATH"):
            config.db_path = Path(environ["LOGDB_PATH"])
        if environ.get("LOGDB_DEBUG"):
            config.debug = environ["LOGDB_DEBUG"].strip().lower() in _TRUE_VALUES
        return config

    def retry_policy(self) -> RetryPolicy:
        """Build the contention retry policy these settings describe."""
        return RetryPolicy(
            interval=self.retry_interval,
            max_attempts=self.retry_max_attempts or None,
            backoff=self.retry_backoff,
            max_interval=self.retry_max_interval,
        )
