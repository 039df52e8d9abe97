"""circuitwatch: circuit-limit tracking for NSE/BSE index options."""
from .version import __version__

__all__ = ["__version__"]
