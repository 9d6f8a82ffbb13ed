"""Utility modules for WS-Relay."""

from .logging import (
    setup_logging,
    get_logger,
    console,
    mask_secret,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "console",
    "mask_secret",
]
