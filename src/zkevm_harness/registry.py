"""
Network registry: resolves a network name or genesis hash to its descriptor.

Resolution order for names:
1. Static table built from the chain specs packaged with this library
2. Dynamic store: <config_root>/dynamic-configs/<name>-chainspec.json,
   re-read on every call (no caching)

Genesis hashes only ever resolve from the static table.

The static table is built once, in an explicit initialization phase
(build_static_registry). A malformed packaged chain spec raises
InitializationError there; callers never see it from resolve().
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Callable, Dict, Iterable, Optional, Tuple, Union

from eth_utils import decode_hex, is_hex

from .chainspec import GENESIS_HASH_LENGTH, ChainSpec, NetworkDescriptor
from .config import DYNAMIC_CONFIGS_DIR, HarnessSettings
from .exceptions import ConfigParseError, InitializationError, UnknownNetworkError

logger = logging.getLogger(__name__)

DEV_CHAIN_NAME = "dev"
DEV_NETWORK_ID = 1337

NetworkIdentifier = Union[str, bytes]


@dataclass(frozen=True)
class StaticNetwork:
    """Entry of the packaged network table."""
    name: str
    filename: str
    genesis_hash: Optional[str] = None


STATIC_NETWORKS: Tuple[StaticNetwork, ...] = (
    StaticNetwork(
        "mainnet", "mainnet.json",
        "0xd4e56740f876aef8c010b86a40d5f56745a118d0906a34e69aec8c0db1cb8fa3",
    ),
    StaticNetwork(
        "sepolia", "sepolia.json",
        "0x25a5cc106eea7138acab33231d7160d69cb777ee0c2c553fcddf5138993e6dd9",
    ),
    StaticNetwork(
        "rinkeby", "rinkeby.json",
        "0x6341fd3daf94b748c72ced5a5b26028f2474f5f00d824504e4fa37a75767e177",
    ),
    StaticNetwork(
        "goerli", "goerli.json",
        "0xbf7e331f7f7c1dd2e05159666b3bf8bc7a8a3a9eb1d518969eab529dd9b88c1a",
    ),
    StaticNetwork(
        "mumbai", "mumbai.json",
        "0x7b66506a9ebdbf30d32b43c5f15a3b1216269a1ec3a75aa3182b86176a2b1ca7",
    ),
    StaticNetwork(
        "bor-mainnet", "bor-mainnet.json",
        "0xa9c28ce2141b56c474f1dc504bee9b01eb1bd7d1a507580d5519d4437a97de1b",
    ),
    StaticNetwork(
        "bor-devnet", "bor-devnet.json",
        "0x5a06b25b0c6530708ea0b98a3409290e39dce6be7f558493aeb6e4b99a172a87",
    ),
    StaticNetwork(
        "gnosis", "gnosis.json",
        "0x4f1dd23188aab3a76b463e4af801b52b1248ef073c648cbdc4c9333d3da79756",
    ),
    StaticNetwork(
        "chiado", "chiado.json",
        "0xada44fd8d2ecab8b08f256af07ad3e777f17fb434f8f8e678b312f576212ba9a",
    ),
    StaticNetwork(
        "hermez-mainnet", "hermez-mainnet.json",
        "0x81005434635456a16f74ff7023fbe0bf423abbc8a8deb093ffff455c0ad3b741",
    ),
    StaticNetwork(
        "hermez-mainnet-shadowfork", "hermez-mainnet-shadowfork.json",
        "0xe54709058a084845156393707161a7b3347859b1796167ca014354841f68373c",
    ),
    StaticNetwork(
        "hermez-cardona", "hermez-cardona.json",
        "0x676c1a76a6c5855a32bdf7c61977a0d1510088a4eeac1330466453b3d08b60b9",
    ),
    StaticNetwork(
        "hermez-bali", "hermez-bali.json",
        "0x7311011ce6ab98ef0a15e44fe29f7680909588322534d1736361daa678543038",
    ),
    StaticNetwork(
        "hermez-dev", "hermez-dev.json",
        "0x532abde1baf4157008acf46f17c27624b54cab8e24922dac9ddb63da681e1848",
    ),
    StaticNetwork(
        "hermez-estest", "hermez-estest.json",
        "0x8c630b598fab24a99b59cdd8257f41b35d0aca992f13cd381c7591f5e89eec58",
    ),
    StaticNetwork(
        "hermez-etrog", "hermez-etrog.json",
        "0x5e14aefe391fafa040ee0a0fff6afbc1c230853b9684afb9363f3af081db0192",
    ),
    StaticNetwork(
        "xlayer-mainnet", "xlayer-mainnet.json",
        "0x11f32f605beb94a1acb783cb3b6da6d7975461ce3addf441e7ad60c2ec95e88f",
    ),
    StaticNetwork(
        "xlayer-testnet", "xlayer-testnet.json",
        "0xdad3589dbcd55e44383c859a4896630299fff6daa276adcb43329ce3a13ff66c",
    ),
    StaticNetwork(
        "xlayer-dev", "xlayer-dev.json",
        "0x2b9d8bf8b04959ac6f0396ee32093142a669b1f21d169ccb3199666e2a9ce946",
    ),
)


def read_packaged_chainspec(filename: str) -> str:
    """Read a chain spec shipped inside the package."""
    return resources.files(__package__).joinpath("chainspecs", filename).read_text(encoding="utf-8")


def parse_genesis_hash(value: Union[str, bytes]) -> bytes:
    """
    Normalize a genesis hash given as raw bytes or 0x-prefixed hex.

    Raises:
        ValueError: If the value is not a 32-byte digest
    """
    if isinstance(value, str):
        if not (value.startswith(("0x", "0X")) and is_hex(value)):
            raise ValueError(f"Genesis hash must be 0x-prefixed hex, got {value!r}")
        value = decode_hex(value)
    if len(value) != GENESIS_HASH_LENGTH:
        raise ValueError(
            f"Genesis hash must be {GENESIS_HASH_LENGTH} bytes, got {len(value)}"
        )
    return bytes(value)


# Path separators and the NUL byte the OS refuses in file names
_INVALID_NAME_CHARS = ("/", "\\", "\x00")


def _looks_like_genesis_hash(identifier: str) -> bool:
    return (
        identifier.startswith(("0x", "0X"))
        and len(identifier) == 2 + 2 * GENESIS_HASH_LENGTH
        and is_hex(identifier)
    )


class DynamicChainSpecStore:
    """
    Loads chain specs for networks that are not compiled into the package.

    Files are looked up at <config_root>/dynamic-configs/<name>-chainspec.json
    and read on every call.
    """

    def __init__(self, config_root: Optional[Path] = None):
        self._config_root = Path(config_root) if config_root is not None else Path.home()

    @property
    def config_root(self) -> Path:
        return self._config_root

    def path_for(self, name: str) -> Path:
        return self._config_root / DYNAMIC_CONFIGS_DIR / f"{name}-chainspec.json"

    def load(self, name: str) -> NetworkDescriptor:
        """
        Load the descriptor for a dynamically configured network.

        Raises:
            UnknownNetworkError: If no chain spec exists for the name
            ConfigParseError: If the chain spec cannot be read or parsed
        """
        if not name or name in (".", "..") or any(c in name for c in _INVALID_NAME_CHARS):
            raise UnknownNetworkError(name, details={"reason": "invalid network name"})

        path = self.path_for(name)
        try:
            document = path.read_bytes()
        except (FileNotFoundError, NotADirectoryError) as e:
            raise UnknownNetworkError(name, details={"path": str(path)}) from e
        except OSError as e:
            raise ConfigParseError(str(path), f"unreadable: {e}") from e

        spec = ChainSpec.from_json(document, source=str(path))
        logger.debug(f"Loaded dynamic chain spec for {name} from {path}")
        return NetworkDescriptor(name=name, protocol_parameters=spec)


class NetworkRegistry:
    """
    Immutable mapping of network identifiers to descriptors.

    Construct once (see build_static_registry) and share. The static
    tables are read-only after construction, so concurrent reads need no
    locking; dynamic lookups build a fresh, value-equal descriptor per call.
    """

    def __init__(
        self,
        descriptors: Iterable[NetworkDescriptor],
        dynamic_store: Optional[DynamicChainSpecStore] = None,
    ):
        by_name: Dict[str, NetworkDescriptor] = {}
        by_genesis: Dict[bytes, NetworkDescriptor] = {}

        for descriptor in descriptors:
            if descriptor.name in by_name:
                raise ValueError(f"Duplicate network name: {descriptor.name}")
            by_name[descriptor.name] = descriptor
            if descriptor.genesis_hash is not None:
                if descriptor.genesis_hash in by_genesis:
                    raise ValueError(
                        f"Genesis hash of {descriptor.name} already registered for "
                        f"{by_genesis[descriptor.genesis_hash].name}"
                    )
                by_genesis[descriptor.genesis_hash] = descriptor

        self._by_name = MappingProxyType(by_name)
        self._by_genesis = MappingProxyType(by_genesis)
        self._dynamic_store = dynamic_store

    @property
    def names(self) -> Tuple[str, ...]:
        """Statically known network names, in registration order."""
        return tuple(self._by_name)

    @property
    def descriptors(self) -> Tuple[NetworkDescriptor, ...]:
        return tuple(self._by_name.values())

    def is_static(self, name: str) -> bool:
        return name in self._by_name

    def resolve(self, identifier: NetworkIdentifier) -> NetworkDescriptor:
        """
        Resolve a network name or genesis hash.

        Args:
            identifier: Network name, 32 raw bytes, or 0x-prefixed 64-digit hex

        Returns:
            NetworkDescriptor

        Raises:
            UnknownNetworkError: If the identifier cannot be resolved
            ConfigParseError: If the dynamic chain spec is malformed
            ValueError: If bytes of the wrong length are passed
        """
        if isinstance(identifier, (bytes, bytearray)):
            return self.resolve_genesis_hash(identifier)
        if _looks_like_genesis_hash(identifier):
            return self.resolve_genesis_hash(identifier)
        return self.resolve_name(identifier)

    def resolve_name(self, name: str) -> NetworkDescriptor:
        descriptor = self._by_name.get(name)
        if descriptor is not None:
            return descriptor

        if self._dynamic_store is None:
            raise UnknownNetworkError(name)

        return self._dynamic_store.load(name)

    def resolve_genesis_hash(self, genesis_hash: Union[str, bytes]) -> NetworkDescriptor:
        digest = parse_genesis_hash(genesis_hash)
        descriptor = self._by_genesis.get(digest)
        if descriptor is None:
            raise UnknownNetworkError("0x" + digest.hex())
        return descriptor

    def genesis_hash_of(self, name: str) -> Optional[bytes]:
        """Statically known genesis hash for a name, if any."""
        descriptor = self._by_name.get(name)
        return descriptor.genesis_hash if descriptor is not None else None

    def network_id(self, name: str) -> int:
        """
        Network id used for peering and signing defaults.

        The local "dev" network has no descriptor and always maps to 1337.
        """
        if name == DEV_CHAIN_NAME:
            return DEV_NETWORK_ID
        return self.resolve_name(name).chain_id

    def dynamic_config_path(self, name: str) -> Optional[Path]:
        if self._dynamic_store is None:
            return None
        return self._dynamic_store.path_for(name)


def load_static_descriptors(
    entries: Iterable[StaticNetwork] = STATIC_NETWORKS,
    reader: Callable[[str], str] = read_packaged_chainspec,
) -> Tuple[NetworkDescriptor, ...]:
    """
    Parse the packaged network table.

    Raises:
        InitializationError: If any packaged chain spec is missing or malformed
    """
    descriptors = []

    for entry in entries:
        try:
            document = reader(entry.filename)
            spec = ChainSpec.from_json(document, source=f"packaged:{entry.filename}")
            genesis = parse_genesis_hash(entry.genesis_hash) if entry.genesis_hash else None
        except (ConfigParseError, OSError, ValueError) as e:
            raise InitializationError(
                f"Packaged chain spec for {entry.name} is unusable: {e}",
                details={"network": entry.name, "filename": entry.filename},
            ) from e

        descriptors.append(
            NetworkDescriptor(name=entry.name, protocol_parameters=spec, genesis_hash=genesis)
        )

    return tuple(descriptors)


def build_static_registry(
    config_root: Optional[Path] = None,
    entries: Iterable[StaticNetwork] = STATIC_NETWORKS,
    reader: Callable[[str], str] = read_packaged_chainspec,
    enable_dynamic: bool = True,
) -> NetworkRegistry:
    """
    Build the registry from the packaged network table.

    This is the explicit initialization phase: entry points call it once
    and decide what to do with InitializationError.

    Args:
        config_root: Root of the dynamic-configs directory (default: home)
        entries: Static network table
        reader: Reads a packaged chain spec by filename
        enable_dynamic: Whether unknown names fall back to the dynamic store

    Raises:
        InitializationError: If a packaged chain spec is malformed
    """
    descriptors = load_static_descriptors(entries, reader)
    store = DynamicChainSpecStore(config_root) if enable_dynamic else None

    logger.info(
        f"Initialized network registry with {len(descriptors)} static networks"
        + (f", dynamic configs under {store.config_root / DYNAMIC_CONFIGS_DIR}" if store else "")
    )

    return NetworkRegistry(descriptors, dynamic_store=store)


def registry_from_settings(settings: HarnessSettings) -> NetworkRegistry:
    """Build the registry rooted at the configured dynamic-config location."""
    return build_static_registry(config_root=settings.config_root)
