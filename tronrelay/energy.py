"""Energy price parsing and fee-limit padding."""

from __future__ import annotations

import json
import re

DEFAULT_ENERGY_UNIT_PRICE = 210  # as of 2025-02-10

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_INTEGER = re.compile(r"[+-]?[0-9]+")


class EnergyPriceError(ValueError):
    """Raised when an energy price list cannot be parsed.

    ``fallback`` holds the price to use instead.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.fallback = DEFAULT_ENERGY_UNIT_PRICE


def _quote_list(parts: list[str]) -> str:
    return "[" + " ".join(json.dumps(part, ensure_ascii=False) for part in parts) + "]"


def parse_latest_energy_price(energy_prices: str) -> int:
    """Return the price of the last ``timestamp:price`` entry of a comma list."""
    last_parts = energy_prices.split(",")[-1].split(":")
    if len(last_parts) != 2:
        raise EnergyPriceError(
            "invalid format for energy price component: expected 'timestamp:price', "
            f"got {_quote_list(last_parts)}"
        )

    price_text = last_parts[1]
    if not _INTEGER.fullmatch(price_text):
        raise EnergyPriceError(
            f'failed to parse energy unit price: parsing "{price_text}": invalid syntax'
        )
    price = int(price_text)
    if not _INT32_MIN <= price <= _INT32_MAX:
        raise EnergyPriceError(
            f'failed to parse energy unit price: parsing "{price_text}": value out of range'
        )
    return price


def calculate_padded_fee_limit(fee_limit: int, bump_times: int, multiplier: float) -> int:
    """Scale a fee limit by ``multiplier`` raised to ``bump_times + 1``, truncated."""
    return int(float(fee_limit) * multiplier ** (bump_times + 1))