"""
Configuration management for zkevm-harness.

Provides centralized configuration for:
- L1/L2 RPC endpoints and chain ids of the local devnet
- Well-known development accounts used by the harness
- Confirmation-tier timeouts and polling intervals
- Dynamic chain-spec location
- Logging configuration

Settings are loaded from environment variables with prefix ZKEVM_HARNESS_.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


# Local devnet defaults
DEFAULT_SEQUENCER_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
DEFAULT_SEQUENCER_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
DEFAULT_L1_NETWORK_URL = "http://localhost:8545"
DEFAULT_L1_CHAIN_ID = 1337
DEFAULT_L2_NETWORK_URL = "http://localhost:8124"
DEFAULT_L2_CHAIN_ID = 195
DEFAULT_L2_ADMIN_ADDRESS = "0x8f8E2d6cF621f30e9a11309D6A56A876281Fd534"
DEFAULT_L2_ADMIN_PRIVATE_KEY = "0x815405dddb0e2a99b12af775fd2929e526704e1d1aea6a0b4e74dc33e2f7fcd2"

# Confirmation timeouts
DEFAULT_MINING_TIMEOUT_SECONDS = 180.0
DEFAULT_VIRTUALIZATION_TIMEOUT_SECONDS = 240.0
DEFAULT_CONSOLIDATION_TIMEOUT_SECONDS = 240.0
DEFAULT_POLL_INTERVAL_SECONDS = 1.0

DYNAMIC_CONFIGS_DIR = "dynamic-configs"


@dataclass(frozen=True)
class PollPolicy:
    """How often and for how long a condition is polled."""
    interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    timeout: float = 60.0  # Relative deadline, measured from the first probe

    def __post_init__(self) -> None:
        if self.interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {self.interval}")
        if self.timeout <= 0:
            raise ValueError(f"Poll timeout must be positive, got {self.timeout}")


@dataclass(frozen=True)
class ConfirmationTimeouts:
    """Per-tier deadlines used by the submitter and the confirmation tracker."""
    mining_seconds: float = DEFAULT_MINING_TIMEOUT_SECONDS
    virtualization_seconds: float = DEFAULT_VIRTUALIZATION_TIMEOUT_SECONDS
    consolidation_seconds: float = DEFAULT_CONSOLIDATION_TIMEOUT_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS

    @property
    def mining(self) -> PollPolicy:
        return PollPolicy(interval=self.poll_interval_seconds, timeout=self.mining_seconds)

    @property
    def virtualization(self) -> PollPolicy:
        return PollPolicy(interval=self.poll_interval_seconds, timeout=self.virtualization_seconds)

    @property
    def consolidation(self) -> PollPolicy:
        return PollPolicy(interval=self.poll_interval_seconds, timeout=self.consolidation_seconds)

    @classmethod
    def from_settings(cls, settings: "HarnessSettings") -> "ConfirmationTimeouts":
        return cls(
            mining_seconds=settings.mining_timeout_seconds,
            virtualization_seconds=settings.virtualization_timeout_seconds,
            consolidation_seconds=settings.consolidation_timeout_seconds,
            poll_interval_seconds=settings.poll_interval_seconds,
        )


@dataclass
class RPCEndpointConfig:
    """Configuration for a single RPC endpoint."""
    url: str
    priority: int = 0  # Lower is higher priority
    timeout_seconds: float = 30.0
    max_consecutive_failures: int = 3


@dataclass
class LoggingConfig:
    """Configuration for transaction lifecycle logging."""
    rpc_call_level: str = "DEBUG"
    transaction_level: str = "INFO"
    confirmation_level: str = "INFO"
    error_level: str = "ERROR"

    mask_addresses: bool = False  # Partial masking for shared CI logs


class HarnessSettings(BaseSettings):
    """Main harness configuration."""

    # Networks
    l1_rpc_url: str = DEFAULT_L1_NETWORK_URL
    l1_chain_id: int = DEFAULT_L1_CHAIN_ID
    l2_rpc_url: str = DEFAULT_L2_NETWORK_URL
    l2_rpc_fallback_urls: str = ""  # Comma-separated
    l2_chain_id: int = DEFAULT_L2_CHAIN_ID

    # Development accounts
    sequencer_address: str = DEFAULT_SEQUENCER_ADDRESS
    sequencer_private_key: str = DEFAULT_SEQUENCER_PRIVATE_KEY
    l2_admin_address: str = DEFAULT_L2_ADMIN_ADDRESS
    l2_admin_private_key: str = DEFAULT_L2_ADMIN_PRIVATE_KEY

    # Dynamic chain specs live under <config_root>/dynamic-configs/
    config_root: Path = Field(default_factory=Path.home)

    # Confirmation tiers
    mining_timeout_seconds: float = DEFAULT_MINING_TIMEOUT_SECONDS
    virtualization_timeout_seconds: float = DEFAULT_VIRTUALIZATION_TIMEOUT_SECONDS
    consolidation_timeout_seconds: float = DEFAULT_CONSOLIDATION_TIMEOUT_SECONDS
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS

    # Transport
    rpc_timeout_seconds: float = 30.0
    validate_chain_id: bool = True

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_json: bool = False

    class Config:
        env_prefix = "ZKEVM_HARNESS_"
        env_file = ".env"
        extra = "ignore"

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator(
        "mining_timeout_seconds",
        "virtualization_timeout_seconds",
        "consolidation_timeout_seconds",
        "poll_interval_seconds",
        "rpc_timeout_seconds",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @property
    def dynamic_configs_dir(self) -> Path:
        return Path(self.config_root) / DYNAMIC_CONFIGS_DIR

    def l2_endpoints(self) -> List[RPCEndpointConfig]:
        """L2 endpoints in priority order (primary first)."""
        endpoints = [
            RPCEndpointConfig(url=self.l2_rpc_url, priority=0, timeout_seconds=self.rpc_timeout_seconds)
        ]
        fallbacks = [u.strip() for u in self.l2_rpc_fallback_urls.split(",") if u.strip()]
        for i, url in enumerate(fallbacks):
            if url != self.l2_rpc_url:  # Don't duplicate primary
                endpoints.append(
                    RPCEndpointConfig(url=url, priority=i + 1, timeout_seconds=self.rpc_timeout_seconds)
                )
        return endpoints

    def l1_endpoints(self) -> List[RPCEndpointConfig]:
        return [RPCEndpointConfig(url=self.l1_rpc_url, timeout_seconds=self.rpc_timeout_seconds)]


@lru_cache
def get_settings() -> HarnessSettings:
    """Get cached settings instance."""
    return HarnessSettings()


def load_settings(env_file: Optional[str] = None) -> HarnessSettings:
    """Load settings bypassing the cache, optionally from a specific env file."""
    if env_file:
        return HarnessSettings(_env_file=env_file)
    return HarnessSettings()
