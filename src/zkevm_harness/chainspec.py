"""
Chain-spec documents and network descriptors.

A chain spec is the JSON document describing a network's protocol
parameters: chain id, consensus kind, fork activation heights and the
consensus-specific sub-configuration. Documents are parsed into frozen
pydantic models so a descriptor can be shared freely once published.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import ConfigParseError

logger = logging.getLogger(__name__)

GENESIS_HASH_LENGTH = 32


class ConsensusKind(str, Enum):
    """Consensus engines a chain spec can select."""
    ETHASH = "ethash"
    CLIQUE = "clique"
    AURA = "aura"
    BOR = "bor"
    SERENITY = "serenity"


class _FrozenModel(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


class EthashConfig(_FrozenModel):
    """Ethash has no tunables; the sub-object is an empty marker."""


class CliqueConfig(_FrozenModel):
    period: int = Field(default=0, ge=0)
    epoch: int = Field(default=30000, gt=0)


class AuRaConfig(_FrozenModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    step_duration: Optional[int] = Field(default=None, alias="stepDuration")


class BorConfig(_FrozenModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    period: Optional[Dict[str, int]] = None
    producer_delay: Optional[Dict[str, int]] = Field(default=None, alias="producerDelay")
    sprint: Optional[Dict[str, int]] = None


ConsensusConfig = Union[EthashConfig, CliqueConfig, AuRaConfig, BorConfig]

# Block-number forks, in activation order
BLOCK_FORKS = (
    "homestead",
    "dao_fork",
    "tangerine_whistle",
    "spurious_dragon",
    "byzantium",
    "constantinople",
    "petersburg",
    "istanbul",
    "muir_glacier",
    "berlin",
    "london",
    "arrow_glacier",
    "gray_glacier",
    "fork_id4",
    "fork_id5_dragonfruit",
    "fork_id6_inca_berry",
    "fork_id7_etrog",
    "fork_id88_elderberry",
)

TIME_FORKS = ("shanghai", "cancun")


class ChainSpec(_FrozenModel):
    """Protocol parameters of one network."""

    chain_name: Optional[str] = Field(default=None, alias="ChainName")
    chain_id: int = Field(alias="chainId", ge=0)
    consensus: ConsensusKind

    homestead_block: Optional[int] = Field(default=None, alias="homesteadBlock", ge=0)
    dao_fork_block: Optional[int] = Field(default=None, alias="daoForkBlock", ge=0)
    tangerine_whistle_block: Optional[int] = Field(default=None, alias="eip150Block", ge=0)
    spurious_dragon_block: Optional[int] = Field(default=None, alias="eip155Block", ge=0)
    byzantium_block: Optional[int] = Field(default=None, alias="byzantiumBlock", ge=0)
    constantinople_block: Optional[int] = Field(default=None, alias="constantinopleBlock", ge=0)
    petersburg_block: Optional[int] = Field(default=None, alias="petersburgBlock", ge=0)
    istanbul_block: Optional[int] = Field(default=None, alias="istanbulBlock", ge=0)
    muir_glacier_block: Optional[int] = Field(default=None, alias="muirGlacierBlock", ge=0)
    berlin_block: Optional[int] = Field(default=None, alias="berlinBlock", ge=0)
    london_block: Optional[int] = Field(default=None, alias="londonBlock", ge=0)
    arrow_glacier_block: Optional[int] = Field(default=None, alias="arrowGlacierBlock", ge=0)
    gray_glacier_block: Optional[int] = Field(default=None, alias="grayGlacierBlock", ge=0)

    # zkEVM fork ids
    fork_id4_block: Optional[int] = Field(default=None, alias="forkID4Block", ge=0)
    fork_id5_dragonfruit_block: Optional[int] = Field(default=None, alias="forkID5DragonfruitBlock", ge=0)
    fork_id6_inca_berry_block: Optional[int] = Field(default=None, alias="forkID6IncaBerryBlock", ge=0)
    fork_id7_etrog_block: Optional[int] = Field(default=None, alias="forkID7EtrogBlock", ge=0)
    fork_id88_elderberry_block: Optional[int] = Field(default=None, alias="forkID88ElderberryBlock", ge=0)

    shanghai_time: Optional[int] = Field(default=None, alias="shanghaiTime", ge=0)
    cancun_time: Optional[int] = Field(default=None, alias="cancunTime", ge=0)

    terminal_total_difficulty: Optional[int] = Field(default=None, alias="terminalTotalDifficulty", ge=0)
    terminal_total_difficulty_passed: bool = Field(default=False, alias="terminalTotalDifficultyPassed")

    # Consensus-specific sub-configuration
    ethash: Optional[EthashConfig] = None
    clique: Optional[CliqueConfig] = None
    aura: Optional[AuRaConfig] = None
    bor: Optional[BorConfig] = None

    @model_validator(mode="after")
    def check_consensus_config(self) -> "ChainSpec":
        required = {
            ConsensusKind.CLIQUE: self.clique,
            ConsensusKind.AURA: self.aura,
            ConsensusKind.BOR: self.bor,
        }
        if self.consensus in required and required[self.consensus] is None:
            raise ValueError(
                f"consensus '{self.consensus.value}' requires a '{self.consensus.value}' section"
            )
        return self

    @property
    def consensus_config(self) -> Optional[ConsensusConfig]:
        """The sub-configuration matching the selected consensus kind."""
        if self.consensus == ConsensusKind.ETHASH:
            return self.ethash or EthashConfig()
        return getattr(self, self.consensus.value, None)

    @property
    def fork_blocks(self) -> Dict[str, int]:
        """Activation height of every configured block-number fork, in fork order."""
        forks = {}
        for fork in BLOCK_FORKS:
            block = getattr(self, f"{fork}_block")
            if block is not None:
                forks[fork] = block
        return forks

    @property
    def fork_times(self) -> Dict[str, int]:
        forks = {}
        for fork in TIME_FORKS:
            timestamp = getattr(self, f"{fork}_time")
            if timestamp is not None:
                forks[fork] = timestamp
        return forks

    def is_fork_active(self, fork: str, block_number: int, timestamp: Optional[int] = None) -> bool:
        """Check whether a fork is active at a block (and timestamp, for time forks)."""
        if fork in TIME_FORKS:
            activation = getattr(self, f"{fork}_time")
            return activation is not None and timestamp is not None and timestamp >= activation
        if fork not in BLOCK_FORKS:
            raise ValueError(f"Unknown fork: {fork}")
        activation = getattr(self, f"{fork}_block")
        return activation is not None and block_number >= activation

    @classmethod
    def for_testing(cls, chain_id: int) -> "ChainSpec":
        """Ethash parameters with every pre-merge fork active from genesis."""
        return cls(
            chain_id=chain_id,
            consensus=ConsensusKind.ETHASH,
            homestead_block=0,
            tangerine_whistle_block=0,
            spurious_dragon_block=0,
            byzantium_block=0,
            constantinople_block=0,
            petersburg_block=0,
            istanbul_block=0,
            muir_glacier_block=0,
            berlin_block=0,
            ethash=EthashConfig(),
        )

    @classmethod
    def from_json(cls, document: Union[str, bytes], source: str) -> "ChainSpec":
        """
        Parse a chain-spec JSON document.

        Args:
            document: Raw JSON text
            source: Where the document came from, used in error messages

        Raises:
            ConfigParseError: If the document is not valid JSON or fails validation
        """
        try:
            data = json.loads(document)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ConfigParseError(source, f"invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ConfigParseError(source, "top-level value must be an object")

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigParseError(
                source,
                f"{e.error_count()} validation error(s)",
                details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
            ) from e


@dataclass(frozen=True)
class NetworkDescriptor:
    """Immutable identity and protocol parameters of one network."""
    name: str
    protocol_parameters: ChainSpec
    genesis_hash: Optional[bytes] = None

    def __post_init__(self) -> None:
        if self.genesis_hash is not None and len(self.genesis_hash) != GENESIS_HASH_LENGTH:
            raise ValueError(
                f"Genesis hash for {self.name} must be {GENESIS_HASH_LENGTH} bytes, "
                f"got {len(self.genesis_hash)}"
            )

    @property
    def chain_id(self) -> int:
        return self.protocol_parameters.chain_id

    @property
    def consensus(self) -> ConsensusKind:
        return self.protocol_parameters.consensus

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "chain_id": self.chain_id,
            "consensus": self.consensus.value,
            "genesis_hash": "0x" + self.genesis_hash.hex() if self.genesis_hash else None,
            "fork_blocks": self.protocol_parameters.fork_blocks,
            "fork_times": self.protocol_parameters.fork_times,
        }
