"""Node client interface, keystore interface and the records they exchange."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Protocol, runtime_checkable

from tronrelay.utils import TronAddress


class ContractResult(str, Enum):
    """Contract execution result reported in a transaction receipt."""

    DEFAULT = "DEFAULT"
    SUCCESS = "SUCCESS"
    REVERT = "REVERT"
    BAD_JUMP_DESTINATION = "BAD_JUMP_DESTINATION"
    OUT_OF_MEMORY = "OUT_OF_MEMORY"
    PRECOMPILED_CONTRACT = "PRECOMPILED_CONTRACT"
    STACK_TOO_SMALL = "STACK_TOO_SMALL"
    STACK_TOO_LARGE = "STACK_TOO_LARGE"
    ILLEGAL_OPERATION = "ILLEGAL_OPERATION"
    STACK_OVERFLOW = "STACK_OVERFLOW"
    OUT_OF_ENERGY = "OUT_OF_ENERGY"
    OUT_OF_TIME = "OUT_OF_TIME"
    JVM_STACK_OVER_FLOW = "JVM_STACK_OVER_FLOW"
    UNKNOWN = "UNKNOWN"
    TRANSFER_FAILED = "TRANSFER_FAILED"
    INVALID_CODE = "INVALID_CODE"


# Results after which a transaction is never retried.
FATAL_RESULTS = frozenset(
    {
        ContractResult.REVERT,
        ContractResult.BAD_JUMP_DESTINATION,
        ContractResult.OUT_OF_MEMORY,
        ContractResult.STACK_TOO_SMALL,
        ContractResult.STACK_TOO_LARGE,
        ContractResult.ILLEGAL_OPERATION,
        ContractResult.STACK_OVERFLOW,
        ContractResult.JVM_STACK_OVER_FLOW,
        ContractResult.TRANSFER_FAILED,
        ContractResult.INVALID_CODE,
    }
)

# Results that are retried without any adjustment.
UNKNOWN_RESULTS = frozenset({ContractResult.UNKNOWN, ContractResult.DEFAULT})


class ResponseCode(str, Enum):
    """Response code of a broadcast request."""

    SUCCESS = "SUCCESS"
    SIGERROR = "SIGERROR"
    CONTRACT_VALIDATE_ERROR = "CONTRACT_VALIDATE_ERROR"
    CONTRACT_EXE_ERROR = "CONTRACT_EXE_ERROR"
    BANDWITH_ERROR = "BANDWITH_ERROR"
    DUP_TRANSACTION_ERROR = "DUP_TRANSACTION_ERROR"
    TAPOS_ERROR = "TAPOS_ERROR"
    TOO_BIG_TRANSACTION_ERROR = "TOO_BIG_TRANSACTION_ERROR"
    TRANSACTION_EXPIRATION_ERROR = "TRANSACTION_EXPIRATION_ERROR"
    SERVER_BUSY = "SERVER_BUSY"
    NO_CONNECTION = "NO_CONNECTION"
    NOT_ENOUGH_EFFECTIVE_CONNECTION = "NOT_ENOUGH_EFFECTIVE_CONNECTION"
    BLOCK_UNSOLIDIFIED = "BLOCK_UNSOLIDIFIED"
    OTHER_ERROR = "OTHER_ERROR"


# Broadcast codes after which the broadcast is retried.
RETRYABLE_BROADCAST_CODES = frozenset(
    {ResponseCode.SERVER_BUSY, ResponseCode.BLOCK_UNSOLIDIFIED}
)


class TransactionStatus(IntEnum):
    """Status of a transaction as seen by callers of the manager."""

    UNKNOWN = 0
    PENDING = 1
    UNCONFIRMED = 2
    FINALIZED = 3
    FAILED = 4
    FATAL = 5


class ClientError(Exception):
    """Raised when a node request fails."""


@dataclass
class BroadcastResponse:
    """Reply of a node to a broadcast request."""

    result: bool = False
    code: str = ""
    message: str = ""
    txid: str = ""


class BroadcastError(ClientError):
    """Raised when a node rejects a broadcast; ``response`` holds its reply."""

    def __init__(self, message: str, response: BroadcastResponse | None = None) -> None:
        super().__init__(message)
        self.response = response if response is not None else BroadcastResponse()

    @property
    def retryable(self) -> bool:
        """Whether the rejection is a transient one worth retrying."""
        return not self.response.result and self.response.code in {
            code.value for code in RETRYABLE_BROADCAST_CODES
        }


@dataclass
class RawData:
    """The signed part of a transaction."""

    timestamp: int = 0
    expiration: int = 0
    ref_block_hash: str = ""
    ref_block_bytes: str = ""
    fee_limit: int = 0


@dataclass
class Transaction:
    """A transaction built by a node, with its signatures as hex strings."""

    tx_id: str = ""
    raw_data: RawData = field(default_factory=RawData)
    raw_data_hex: str = ""
    signature: list[str] = field(default_factory=list)
    visible: bool = False

    def add_signature(self, signature: bytes) -> None:
        """Append a signature to the transaction."""
        self.signature.append(signature.hex())


@dataclass
class TriggerResponse:
    """Reply of a node to a contract call that builds a transaction."""

    transaction: Transaction = field(default_factory=Transaction)
    result: bool = False
    code: str = ""
    message: str = ""


@dataclass
class EnergyEstimate:
    """Energy a node estimates a contract call needs."""

    energy_required: int = 0
    result: bool = False
    code: str = ""
    message: str = ""


@dataclass
class ConstantCallResult:
    """Reply of a node to a read-only contract call."""

    result: bool = False
    code: str = ""
    message: str = ""
    energy_used: int = 0
    energy_penalty: int = 0


@dataclass
class TransactionInfo:
    """Execution record of a transaction included in a block."""

    id: str = ""
    block_number: int = 0
    block_timestamp: int = 0
    receipt_result: str = ""


@dataclass
class Block:
    """Header fields of a block; ``timestamp`` is None when the header is missing."""

    timestamp: int | None = None
    number: int | None = None


@runtime_checkable
class TronClient(Protocol):
    """Access to a full node and a solidity node.

    Every method raises ClientError, or a subclass, when the request fails.
    """

    def get_energy_prices(self) -> str:
        """Return the energy price history as ``timestamp:price`` pairs joined by commas."""
        raise NotImplementedError

    def estimate_energy(
        self,
        from_address: TronAddress,
        contract_address: TronAddress,
        method: str,
        params: list[Any],
        t_amount: int,
    ) -> EnergyEstimate:
        """Estimate the energy a contract call needs."""
        raise NotImplementedError

    def trigger_constant_contract_full_node(
        self,
        from_address: TronAddress,
        contract_address: TronAddress,
        method: str,
        params: list[Any],
    ) -> ConstantCallResult:
        """Run a contract call without committing it."""
        raise NotImplementedError

    def trigger_smart_contract(
        self,
        from_address: TronAddress,
        contract_address: TronAddress,
        method: str,
        params: list[Any],
        fee_limit: int,
        t_amount: int,
    ) -> TriggerResponse:
        """Build an unsigned transaction for a contract call."""
        raise NotImplementedError

    def broadcast_transaction(self, transaction: Transaction) -> BroadcastResponse:
        """Broadcast a signed transaction; raises BroadcastError when rejected."""
        raise NotImplementedError

    def get_now_block_full_node(self) -> Block:
        """Return the latest block known to the full node."""
        raise NotImplementedError

    def get_transaction_info_by_id_full_node(self, tx_hash: str) -> TransactionInfo:
        """Look up a transaction on the full node, including unfinalised blocks."""
        raise NotImplementedError

    def get_transaction_info_by_id(self, tx_hash: str) -> TransactionInfo:
        """Look up a transaction among finalised blocks."""
        raise NotImplementedError


@runtime_checkable
class Keystore(Protocol):
    """Signs data on behalf of accounts it holds keys for."""

    def sign(self, account: str, data: bytes | None) -> bytes:
        """Sign ``data`` with the key of ``account``; raises when the account is unknown."""
        raise NotImplementedError


def classify_result(result: str) -> ContractResult | None:
    """Map a receipt result string to a ContractResult, or None if it is not recognised."""
    try:
        return ContractResult(result)
    except ValueError:
        return None