"""Iconforge - AI icon set generation over a hosted image model."""

__version__ = "0.1.0"

from iconforge.core.config import IconforgeConfig, config

__all__ = [
    "IconforgeConfig",
    "config",
]
