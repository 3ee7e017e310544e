"""
CryptoSim core package initialization.

Backtesting engine for a crypto trading dashboard: replays historical prices
against a strategy, simulates fills under capital, fee and position limits,
and computes performance statistics. Simulations run as background jobs with
progress reporting and cooperative cancellation.
"""

from __future__ import annotations

from importlib import metadata as _importlib_metadata

# Package version (prefer installed metadata, fallback to dev version)
try:
    __version__ = _importlib_metadata.version("cryptosim")
except _importlib_metadata.PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = ["__version__", "package_info"]


def package_info() -> str:
    """Return a short, human-friendly package info string."""
    return f"CryptoSim {__version__}"
