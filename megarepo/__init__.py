"""
megarepo - compose many git repositories into one workspace through a shared store
"""

from .__version__ import __version__
from .core import Megarepo
from .cli.main import main

__all__ = ["Megarepo", "main", "__version__"]
