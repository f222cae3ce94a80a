"""Transaction signing for the harness.

TransactionSigner is the port the submitter signs through. AccountSigner is
the local-key implementation used against devnets: it binds a private key to
one chain id and hands out nonces in order.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from eth_account import Account
from eth_utils import encode_hex, to_checksum_address

from .config import HarnessSettings
from .exceptions import SigningError

logger = logging.getLogger(__name__)

DEFAULT_GAS_LIMIT = 21_000
DEFAULT_GAS_PRICE = 1_000_000_000  # 1 gwei


class NonceSource(Protocol):
    async def get_nonce(self, address: str, block: str = "pending") -> int: ...


@dataclass
class TransactionRequest:
    """A transaction to be signed and submitted."""
    to_address: str
    value: int = 0  # Native token value in wei
    data: bytes = b""
    gas_limit: Optional[int] = None
    gas_price: Optional[int] = None
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    nonce: Optional[int] = None
    chain_id: Optional[int] = None

    @property
    def is_dynamic_fee(self) -> bool:
        return self.max_fee_per_gas is not None

    def to_dict(self, chain_id: int, nonce: int) -> Dict[str, Any]:
        """Unsigned transaction fields in the form eth-account signs."""
        tx: Dict[str, Any] = {
            "to": to_checksum_address(self.to_address),
            "value": self.value,
            "data": encode_hex(self.data),
            "gas": self.gas_limit if self.gas_limit is not None else DEFAULT_GAS_LIMIT,
            "nonce": nonce,
            "chainId": chain_id,
        }
        if self.is_dynamic_fee:
            tx["maxFeePerGas"] = self.max_fee_per_gas
            tx["maxPriorityFeePerGas"] = (
                self.max_priority_fee_per_gas
                if self.max_priority_fee_per_gas is not None
                else self.max_fee_per_gas
            )
        else:
            tx["gasPrice"] = self.gas_price if self.gas_price is not None else DEFAULT_GAS_PRICE
        return tx


@dataclass(frozen=True)
class SignedTransaction:
    """Raw signed transaction ready for eth_sendRawTransaction."""
    raw: bytes
    hash: str
    nonce: int
    sender: str

    @property
    def raw_hex(self) -> str:
        return encode_hex(self.raw)


class TransactionSigner(ABC):
    """Abstract interface for transaction signers."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Sender address."""

    @property
    @abstractmethod
    def chain_id(self) -> int:
        """Chain id of the signing domain."""

    @abstractmethod
    async def sign(self, request: TransactionRequest) -> SignedTransaction:
        """Sign a transaction request."""


class AccountSigner(TransactionSigner):
    """
    Signs with a local private key.

    Nonces start at `start_nonce` or, when that is not given, at the pending
    transaction count reported by `nonce_source` on first use. Each signed
    transaction without an explicit nonce takes the next one.
    """

    def __init__(
        self,
        private_key: str,
        chain_id: int,
        start_nonce: Optional[int] = None,
        nonce_source: Optional[NonceSource] = None,
    ):
        try:
            self._account = Account.from_key(private_key)
        except (ValueError, TypeError) as e:
            raise SigningError(f"Invalid private key: {e}") from e

        self._chain_id = chain_id
        self._next_nonce = start_nonce
        self._nonce_source = nonce_source

    @classmethod
    def for_settings(
        cls,
        settings: HarnessSettings,
        nonce_source: Optional[NonceSource] = None,
        use_admin: bool = False,
    ) -> "AccountSigner":
        """
        Signer for the devnet sequencer (or L2 admin) account on L2.

        Raises:
            SigningError: If the configured key does not belong to the
                configured account address
        """
        if use_admin:
            key, expected = settings.l2_admin_private_key, settings.l2_admin_address
        else:
            key, expected = settings.sequencer_private_key, settings.sequencer_address

        signer = cls(key, settings.l2_chain_id, nonce_source=nonce_source)
        if signer.address.lower() != expected.lower():
            raise SigningError(
                f"Configured key signs as {signer.address}, not {expected}",
                details={"expected": expected, "received": signer.address},
            )
        return signer

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def chain_id(self) -> int:
        return self._chain_id

    async def _peek_nonce(self) -> int:
        if self._next_nonce is None:
            if self._nonce_source is None:
                raise SigningError(
                    f"No nonce available for {self.address}: pass start_nonce or a nonce source"
                )
            self._next_nonce = await self._nonce_source.get_nonce(self.address, "pending")
            logger.debug(f"Starting nonce for {self.address} is {self._next_nonce}")

        return self._next_nonce

    async def sign(self, request: TransactionRequest) -> SignedTransaction:
        """
        Sign a request in this signer's chain domain.

        Raises:
            SigningError: If the request targets another chain, or eth-account
                rejects the transaction fields
        """
        if request.chain_id is not None and request.chain_id != self._chain_id:
            raise SigningError(
                f"Transaction chain id {request.chain_id} does not match signer chain id {self._chain_id}",
                details={"expected": self._chain_id, "received": request.chain_id},
            )

        allocated = request.nonce is None
        nonce = await self._peek_nonce() if allocated else request.nonce

        try:
            signed = self._account.sign_transaction(request.to_dict(self._chain_id, nonce))
        except (ValueError, TypeError) as e:
            raise SigningError(f"Could not sign transaction: {e}") from e

        # Only a successfully signed transaction consumes its nonce
        if allocated:
            self._next_nonce = nonce + 1

        return SignedTransaction(
            raw=bytes(signed.raw_transaction),
            hash=encode_hex(bytes(signed.hash)),
            nonce=nonce,
            sender=self.address,
        )
