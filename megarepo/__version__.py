"""Version information for megarepo."""

__version__ = "0.1.0"
