"""
Label Repository.

============================================================
PURPOSE
============================================================
Manage named labels and their assignment to addresses.

Labels and address assignments are the only records that
can change from outside the scan loop. They never affect
ingestion: blocks, transactions and links do not reference
them.

============================================================
RULES
============================================================
- Label names are unique among live labels (case-insensitive)
- Deletion is soft (is_deleted), both for labels and for
  addresses on the label surface
- Locked labels and locked addresses cannot be changed or
  deleted

============================================================
"""

import uuid
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storage.models.chain import AddressRecord, LabelRecord
from storage.repositories.base import BaseRepository, chunked
from storage.repositories.exceptions import (
    DuplicateRecordError,
    LockedRecordError,
    RecordNotFoundError,
    ValidationError,
)
from storage.types import LabelInfo, LabeledAddress


MAX_LABEL_NAME_LENGTH = 128


def _to_info(record: LabelRecord) -> LabelInfo:
    return LabelInfo(
        label_id=record.label_id,
        name=record.name,
        description=record.description or "",
        is_locked=bool(record.is_locked),
        created_at=record.created_at,
    )


class LabelRepository(BaseRepository[LabelRecord]):
    """
    Repository for labels and address label assignment.

    ============================================================
    MODELS MANAGED
    ============================================================
    - LabelRecord: named label, soft-deletable, lockable
    - AddressRecord: label assignment and soft deletion only

    ============================================================
    """

    def __init__(self, session: Session) -> None:
        super().__init__(session, LabelRecord, "LabelRepository")

    # =========================================================
    # LABEL OPERATIONS
    # =========================================================

    def create_label(
        self,
        name: str,
        description: str = "",
        is_locked: bool = False,
    ) -> LabelInfo:
        """
        Create a label.

        Raises:
            ValidationError: If the name is empty or too long
            DuplicateRecordError: If a live label has the same name
        """
        name = self._validate_name(name, "create_label")
        self._ensure_unique_name(name)

        record = LabelRecord(
            label_id=f"lbl_{uuid.uuid4().hex[:16]}",
            name=name,
            description=description or "",
            is_locked=is_locked,
            is_deleted=False,
        )
        self._add(record)
        self._logger.info(f"Created label {record.label_id} ({name})")
        return _to_info(record)

    def get_label(self, label_id: str) -> LabelInfo:
        return _to_info(self._live_label(label_id))

    def list_labels(self, limit: int = 1000, offset: int = 0) -> List[LabelInfo]:
        stmt = (
            select(LabelRecord)
            .where(LabelRecord.is_deleted.is_(False))
            .order_by(LabelRecord.id)
            .offset(offset)
            .limit(limit)
        )
        return [_to_info(r) for r in self._execute_query(stmt, "list_labels")]

    def update_label(
        self,
        label_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        is_locked: Optional[bool] = None,
    ) -> LabelInfo:
        """
        Update a label.

        A locked label accepts only ``is_locked=False``; unlock it
        first to change anything else.
        """
        record = self._live_label(label_id)

        if record.is_locked:
            if is_locked is False and name is None and description is None:
                record.is_locked = False
                self._session.flush()
                return _to_info(record)
            raise LockedRecordError(self._repository_name, label_id, "update")

        if name is not None:
            name = self._validate_name(name, "update_label")
            if name.lower() != record.name.lower():
                self._ensure_unique_name(name, exclude_pk=record.id)
            record.name = name
        if description is not None:
            record.description = description
        if is_locked is not None:
            record.is_locked = is_locked

        try:
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "update_label", {"field": "name", "value": name})
            raise
        return _to_info(record)

    def delete_label(self, label_id: str) -> None:
        """Soft-delete a label and detach it from its addresses."""
        record = self._live_label(label_id)
        if record.is_locked:
            raise LockedRecordError(self._repository_name, label_id, "delete")

        record.is_deleted = True
        try:
            self._session.execute(
                update(AddressRecord)
                .where(AddressRecord.label_pk == record.id)
                .values(label_pk=None)
                .execution_options(synchronize_session=False)
            )
            self._session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "delete_label", {"label_id": label_id})
            raise
        self._logger.info(f"Deleted label {label_id}")

    # =========================================================
    # ADDRESS OPERATIONS
    # =========================================================

    def assign_label(self, network_id: str, address: str, label_id: str) -> LabeledAddress:
        """Attach a label to an address; the address row is created if unseen."""
        label = self._live_label(label_id)
        record = self._session.get(AddressRecord, (network_id, address))
        if record is None:
            record = AddressRecord(network_id=network_id, address=address, is_deleted=False)
            self._session.add(record)
        elif record.is_locked:
            raise LockedRecordError(self._repository_name, address, "assign label to")

        record.label_pk = label.id
        record.is_deleted = False
        self._session.flush()
        return LabeledAddress(
            network_id=network_id,
            address=address,
            label=_to_info(label),
            is_locked=bool(record.is_locked),
        )

    def unassign_label(self, network_id: str, address: str) -> None:
        record = self._live_address(network_id, address)
        if record.is_locked:
            raise LockedRecordError(self._repository_name, address, "unassign label from")
        record.label_pk = None
        self._session.flush()

    def delete_addresses(self, network_id: str, addresses: Sequence[str]) -> int:
        """
        Soft-delete addresses from the label surface.

        All-or-nothing: if any address is locked nothing is deleted.

        Returns:
            Number of addresses marked deleted
        """
        records = []
        for chunk in chunked(list(dict.fromkeys(addresses))):
            stmt = select(AddressRecord).where(
                AddressRecord.network_id == network_id,
                AddressRecord.address.in_(chunk),
                AddressRecord.is_deleted.is_(False),
            )
            records.extend(self._execute_query(stmt, "delete_addresses"))

        locked = sorted(r.address for r in records if r.is_locked)
        if locked:
            raise LockedRecordError(self._repository_name, locked, "delete")

        for record in records:
            record.is_deleted = True
            record.label_pk = None
        self._session.flush()
        return len(records)

    def set_address_locked(self, network_id: str, address: str, is_locked: bool) -> None:
        record = self._live_address(network_id, address)
        record.is_locked = is_locked
        self._session.flush()

    def labels_for(self, network_id: str, addresses: Sequence[str]) -> Dict[str, LabelInfo]:
        """Live labels of the given addresses; unlabelled ones are absent."""
        found: Dict[str, LabelInfo] = {}
        for chunk in chunked(sorted(set(addresses))):
            stmt = (
                select(AddressRecord.address, LabelRecord)
                .join(LabelRecord, AddressRecord.label_pk == LabelRecord.id)
                .where(
                    AddressRecord.network_id == network_id,
                    AddressRecord.address.in_(chunk),
                    AddressRecord.is_deleted.is_(False),
                    LabelRecord.is_deleted.is_(False),
                )
            )
            try:
                rows = self._session.execute(stmt).all()
            except SQLAlchemyError as e:
                self._handle_db_error(e, "labels_for")
                raise
            for address, label in rows:
                found[address] = _to_info(label)
        return found

    def addresses_with_label(self, label_id: str, network_id: Optional[str] = None) -> List[str]:
        label = self._live_label(label_id)
        stmt = select(AddressRecord.address).where(
            AddressRecord.label_pk == label.id,
            AddressRecord.is_deleted.is_(False),
        )
        if network_id is not None:
            stmt = stmt.where(AddressRecord.network_id == network_id)
        return self._execute_query(stmt.order_by(AddressRecord.address), "addresses_with_label")

    # =========================================================
    # HELPERS
    # =========================================================

    def _live_label(self, label_id: str) -> LabelRecord:
        stmt = select(LabelRecord).where(
            LabelRecord.label_id == label_id,
            LabelRecord.is_deleted.is_(False),
        )
        record = self._execute_scalar(stmt, "get_label")
        if record is None:
            raise RecordNotFoundError(self._repository_name, label_id, "label_id")
        return record

    def _live_address(self, network_id: str, address: str) -> AddressRecord:
        record = self._session.get(AddressRecord, (network_id, address))
        if record is None or record.is_deleted:
            raise RecordNotFoundError(self._repository_name, f"{network_id}:{address}", "address")
        return record

    def _validate_name(self, name: str, operation: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValidationError(self._repository_name, operation, "name", "must not be empty")
        if len(name) > MAX_LABEL_NAME_LENGTH:
            raise ValidationError(
                self._repository_name,
                operation,
                "name",
                f"longer than {MAX_LABEL_NAME_LENGTH} characters",
            )
        return name

    def _ensure_unique_name(self, name: str, exclude_pk: Optional[int] = None) -> None:
        criteria = [
            func.lower(LabelRecord.name) == name.lower(),
            LabelRecord.is_deleted.is_(False),
        ]
        if exclude_pk is not None:
            criteria.append(LabelRecord.id != exclude_pk)
        if self._count(*criteria):
            raise DuplicateRecordError(self._repository_name, "name", name)
