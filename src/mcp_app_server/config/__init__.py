"""Configuration management."""
from .inventory import ServerInventory

__all__ = ["ServerInventory"]
