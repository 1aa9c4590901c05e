"""
Repository Layer Package.

============================================================
PURPOSE
============================================================
The Repository Layer is the ONLY gateway to persistent storage.
All database access goes through repository classes, and the
Warehouse is the only caller of repositories.

============================================================
ARCHITECTURE PRINCIPLES
============================================================
1. Session Injection: sessions are injected, not created internally
2. Explicit Methods: no generic 'execute', clear method names
3. Append-Only Chain Data: blocks, transactions and links are
   only inserted, or hard-deleted above a fork height
4. Exception Handling: all DB errors wrapped in repository exceptions

============================================================
REPOSITORIES
============================================================
- ChainRepository: blocks, transactions, inputs/outputs, tip markers,
  skipped heights, reorg events, balances
- LinkRepository: derived address-to-address links
- LabelRepository: labels and address label assignment
- NetworkRepository: registered networks

============================================================
"""

from storage.repositories.base import BaseRepository, chunked
from storage.repositories.chain import ChainRepository, LinkRepository
from storage.repositories.exceptions import (
    ConflictError,
    ConnectionError,
    DuplicateRecordError,
    IntegrityError,
    LockedRecordError,
    QueryError,
    RecordNotFoundError,
    RepositoryException,
    TransactionError,
    ValidationError,
)
from storage.repositories.labels import LabelRepository
from storage.repositories.networks import NetworkRepository


__all__ = [
    "BaseRepository",
    "chunked",
    "ChainRepository",
    "LinkRepository",
    "LabelRepository",
    "NetworkRepository",
    "RepositoryException",
    "RecordNotFoundError",
    "ConflictError",
    "DuplicateRecordError",
    "IntegrityError",
    "ConnectionError",
    "QueryError",
    "TransactionError",
    "LockedRecordError",
    "ValidationError",
]
