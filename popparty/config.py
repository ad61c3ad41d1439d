"""
PoP Party Client Configuration
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field, asdict
from typing import List, Optional

from popparty.constants import (
    DEFAULT_RPC_MAX_RETRIES,
    DEFAULT_RPC_RETRY_BACKOFF_SEC,
    DEFAULT_RPC_TIMEOUT_SEC,
    DEFAULT_RPC_URL,
    INSTANCE_ID_SIZE,
)
from popparty.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass
class LedgerConfig:
    """Ledger RPC configuration."""
    rpc_url: str = DEFAULT_RPC_URL
    timeout_sec: float = DEFAULT_RPC_TIMEOUT_SEC
    max_retries: int = DEFAULT_RPC_MAX_RETRIES
    retry_backoff_sec: float = DEFAULT_RPC_RETRY_BACKOFF_SEC


@dataclass
class PartyConfig:
    """Default party and reward coin, hex-encoded instance ids."""
    instance_id: Optional[str] = None
    reward_target: Optional[str] = None


@dataclass
class LogConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    max_size_mb: int = 10
    backup_count: int = 3


def _is_instance_hex(value: str) -> bool:
    try:
        return len(bytes.fromhex(value)) == INSTANCE_ID_SIZE
    except ValueError:
        return False


@dataclass
class ClientConfig:
    """
    Complete client configuration.

    All settings for talking to a ledger about one party.
    """
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    party: PartyConfig = field(default_factory=PartyConfig)
    log: LogConfig = field(default_factory=LogConfig)

    def validate(self) -> List[str]:
        """
        Validate configuration.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not self.ledger.rpc_url.startswith(("http://", "https://")):
            errors.append(f"rpc_url must be an http(s) URL: {self.ledger.rpc_url}")
        if self.ledger.timeout_sec <= 0:
            errors.append("timeout_sec must be positive")
        if self.ledger.max_retries < 0:
            errors.append("max_retries cannot be negative")
        if self.ledger.retry_backoff_sec < 0:
            errors.append("retry_backoff_sec cannot be negative")

        if self.party.instance_id is not None and not _is_instance_hex(self.party.instance_id):
            errors.append(f"Invalid party instance id: {self.party.instance_id}")
        if self.party.reward_target is not None and not _is_instance_hex(self.party.reward_target):
            errors.append(f"Invalid reward target: {self.party.reward_target}")

        if not isinstance(getattr(logging, self.log.level.upper(), None), int):
            errors.append(f"Unknown log level: {self.log.level}")

        return errors

    def check(self) -> None:
        """
        Raises:
            ConfigError: If validate() reports anything
        """
        errors = self.validate()
        if errors:
            raise ConfigError(errors)

    def save(self, path: str) -> None:
        """Save configuration to file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Configuration saved to {path}")

    @classmethod
    def load(cls, path: str) -> "ClientConfig":
        """Load configuration from file."""
        with open(path, 'r') as f:
            data = json.load(f)

        config = cls()

        try:
            if "ledger" in data:
                config.ledger = LedgerConfig(**data["ledger"])

            if "party" in data:
                config.party = PartyConfig(**data["party"])

            if "log" in data:
                config.log = LogConfig(**data["log"])
        except TypeError as e:
            raise ConfigError([f"Unknown configuration key in {path}: {e}"])

        logger.info(f"Configuration loaded from {path}")
        return config

    def to_dict(self) -> dict:
        """Export configuration as dictionary."""
        return {
            "ledger": asdict(self.ledger),
            "party": asdict(self.party),
            "log": asdict(self.log),
        }


def setup_logging(config: LogConfig) -> None:
    """Configure logging based on config."""
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler()]

    if config.file:
        from logging.handlers import RotatingFileHandler
        file_handler = RotatingFileHandler(
            config.file,
            maxBytes=config.max_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        )
        handlers.append(file_handler)

    logging.basicConfig(
        level=level,
        format=config.format,
        handlers=handlers,
    )
