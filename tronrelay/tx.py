"""Transactions tracked by the transaction manager."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any

from tronrelay.utils import TronAddress


class TxState(IntEnum):
    """Lifecycle state of a tracked transaction."""

    PENDING = 0
    ERRORED = 1
    FATALLY_ERRORED = 2
    BROADCASTED = 3
    CONFIRMED = 4
    FINALIZED = 5


@dataclass(eq=False)
class TronTx:
    """A contract call moving through broadcast, confirmation and finalisation."""

    from_address: TronAddress | None = None
    contract_address: TronAddress | None = None
    method: str = ""
    params: list[Any] = field(default_factory=list)
    attempt: int = 0
    out_of_time_errors: int = 0
    energy_bump_times: int = 0
    id: str = ""  # idempotency key
    state: TxState = TxState.PENDING
    create_ts: datetime | None = None