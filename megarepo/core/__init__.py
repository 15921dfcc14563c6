"""Core functionality for megarepo"""

from .megarepo import Megarepo

__all__ = ["Megarepo"]
