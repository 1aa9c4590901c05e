"""
Storage Models Package.

ORM models of the warehouse.

============================================================
MODEL ORGANIZATION
============================================================

Base (base.py)
- Base, TimestampMixin, Amount

Chain (chain.py)
- NetworkRecord
- BlockRecord, TransactionRecord
- TxInputRecord, TxOutputRecord
- LinkRecord
- AddressRecord, LabelRecord
- TipMarkerRecord, SkippedBlockRecord, ReorgEventRecord

============================================================
"""

from storage.models.base import Amount, Base, TimestampMixin
from storage.models.chain import (
    AddressRecord,
    BlockRecord,
    LabelRecord,
    LinkRecord,
    NetworkRecord,
    ReorgEventRecord,
    SkippedBlockRecord,
    TipMarkerRecord,
    TransactionRecord,
    TxInputRecord,
    TxOutputRecord,
)


__all__ = [
    "Amount",
    "Base",
    "TimestampMixin",
    "AddressRecord",
    "BlockRecord",
    "LabelRecord",
    "LinkRecord",
    "NetworkRecord",
    "ReorgEventRecord",
    "SkippedBlockRecord",
    "TipMarkerRecord",
    "TransactionRecord",
    "TxInputRecord",
    "TxOutputRecord",
]
