"""Database package for the order engine."""
from .connection import Database
from .models import Base, OrderRecord
from .store import SqlOrderStore

__all__ = [
    "Base",
    "Database",
    "OrderRecord",
    "SqlOrderStore",
]
