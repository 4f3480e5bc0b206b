"""Transaction manager settings."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta


@dataclass
class TronTxmConfig:
    """Settings of the transaction manager; unset values fall back to defaults there."""

    broadcast_chan_size: int = 0
    confirm_poll_secs: int = 0
    energy_multiplier: float = 0.0
    fixed_energy_value: int = 0
    retention_period: timedelta = timedelta(0)
    reap_interval: timedelta = timedelta(0)