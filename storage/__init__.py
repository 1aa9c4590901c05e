"""
Storage Package.

The warehouse: durable storage of normalized chain data with
a bounded cache in front of it.

Modules:
- database: engine, sessions, transaction scopes, read snapshots
- models/: ORM models
- repositories/: data access layer
- cache: LRU block and balance cache
- warehouse: the facade used by the scanner, tracer and server
"""

from storage.cache import LRUCache, WarehouseCache
from storage.database import Database, create_database_engine
from storage.types import AddressBalance, LabeledAddress, LabelInfo, RevokeResult, TipMarker
from storage.warehouse import Warehouse, WarehouseSnapshot


__all__ = [
    "AddressBalance",
    "Database",
    "LabeledAddress",
    "LabelInfo",
    "LRUCache",
    "RevokeResult",
    "TipMarker",
    "Warehouse",
    "WarehouseCache",
    "WarehouseSnapshot",
    "create_database_engine",
]
