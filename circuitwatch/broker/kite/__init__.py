"""Kite Connect adapter."""
from .client import ClientConfig, KiteLike, create_kite_client
from .provider import KiteBroker

__all__ = ["ClientConfig", "KiteLike", "create_kite_client", "KiteBroker"]
