"""Transaction manager for TRON smart-contract calls, with energy pricing and state tracking."""

__version__ = "0.1.0"

__all__ = ["__version__"]