"""Configuration loader for the CLI.

Supports YAML format with environment variable interpolation. This module is
the only place the process environment is consulted; everything downstream
receives plain values.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

import yaml

from .validation import CATEGORIES, validate_category

DEFAULT_DATA_DIR_NAME = ".bybit-cli"

ENV_ENCRYPTION_KEY = "BYBIT_CLI_ENCRYPTION_KEY"
ENV_DATA_DIR = "BB_DATA_DIR"
ENV_TESTNET = "BB_TESTNET"


def default_data_dir() -> str:
    return str(Path.home() / DEFAULT_DATA_DIR_NAME)


@dataclass
class ExchangeConfig:
    """Bybit exchange settings."""
    testnet: bool = False
    category: str = "linear"
    timeout: int = 10
    recv_window: int = 5000
    max_retries: int = 3

    def __post_init__(self):
        validate_category(self.category)


@dataclass
class VaultConfig:
    """Account vault settings."""
    data_dir: str = field(default_factory=default_data_dir)
    encryption_key: Optional[str] = None

    @property
    def path(self) -> Path:
        return Path(self.data_dir).expanduser()


@dataclass
class LoggingConfig:
    log_file: Optional[str] = None
    level: str = "WARNING"


@dataclass
class CliConfig:
    """Complete CLI configuration."""
    exchange: ExchangeConfig = field(default_factory=ExchangeConfig)
    vault: VaultConfig = field(default_factory=VaultConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    account: Optional[str] = None
    json_output: bool = False

    @classmethod
    def from_yaml(cls, config_path: str, environ: Optional[Mapping[str, str]] = None) -> "CliConfig":
        """Load configuration from YAML file with env var interpolation.

        Example YAML:
            exchange:
              testnet: true
              category: linear
            vault:
              data_dir: "${HOME}/.bybit-cli"
            logging:
              level: DEBUG
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with config_file.open("r") as f:
            raw = f.read()

        # Interpolate environment variables: ${VAR_NAME}
        env = os.environ if environ is None else environ
        for key, value in env.items():
            raw = raw.replace(f"${{{key}}}", value)

        data = yaml.safe_load(raw) or {}

        config = cls(
            exchange=ExchangeConfig(**data.get("exchange", {})),
            vault=VaultConfig(**data.get("vault", {})),
            logging=LoggingConfig(**data.get("logging", {})),
            account=data.get("account"),
            json_output=bool(data.get("json_output", False)),
        )
        return config.with_env(env)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "CliConfig":
        """Defaults overlaid with environment settings."""
        env = os.environ if environ is None else environ
        return cls().with_env(env)

    def with_env(self, environ: Mapping[str, str]) -> "CliConfig":
        """Apply BB_DATA_DIR, BB_TESTNET and the encryption passphrase."""
        if environ.get(ENV_DATA_DIR):
            self.vault.data_dir = environ[ENV_DATA_DIR]
        if environ.get(ENV_TESTNET) == "1":
            self.exchange.testnet = True
        if environ.get(ENV_ENCRYPTION_KEY):
            self.vault.encryption_key = environ[ENV_ENCRYPTION_KEY]
        return self

    def to_yaml(self, output_path: str) -> None:
        """Save configuration to YAML file. The encryption key is never written."""
        data = {
            "exchange": {
                "testnet": self.exchange.testnet,
                "category": self.exchange.category,
                "timeout": self.exchange.timeout,
                "recv_window": self.exchange.recv_window,
                "max_retries": self.exchange.max_retries,
            },
            "vault": {
                "data_dir": self.vault.data_dir,
            },
            "logging": {
                "log_file": self.logging.log_file,
                "level": self.logging.level,
            },
        }

        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with output_file.open("w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
