from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from ..models.appointment import Appointment


class AppointmentRepository:
    """Direct reads and writes against the appointments table.

    Soft-deleted rows are hidden unless ``include_deleted`` or
    ``only_deleted`` is passed.
    """

    def __init__(self, db: Session):
        self.db = db

    def query(self, *criteria, include_deleted: bool = False, only_deleted: bool = False) -> Query:
        query = self.db.query(Appointment)
        if only_deleted:
            query = query.filter(Appointment.deleted_at.isnot(None))
        elif not include_deleted:
            query = query.filter(Appointment.deleted_at.is_(None))
        if criteria:
            query = query.filter(*criteria)
        return query

    def find(
        self,
        *criteria,
        order_by=None,
        skip: int = 0,
        limit: Optional[int] = None,
        include_deleted: bool = False,
        only_deleted: bool = False,
    ) -> List[Appointment]:
        query = self.query(*criteria, include_deleted=include_deleted, only_deleted=only_deleted)
        if order_by is not None:
            query = query.order_by(*order_by) if isinstance(order_by, (list, tuple)) else query.order_by(order_by)
        if skip:
            query = query.offset(skip)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def find_one(self, appointment_id: str, include_deleted: bool = True) -> Optional[Appointment]:
        return self.query(
            Appointment.id == appointment_id,
            include_deleted=include_deleted,
        ).first()

    def insert_one(self, appointment: Appointment) -> Appointment:
        self.db.add(appointment)
        self._commit()
        self.db.refresh(appointment)
        return appointment

    def replace_one(self, appointment: Appointment) -> Appointment:
        """Persist every pending change on an already loaded appointment."""
        self._commit()
        self.db.refresh(appointment)
        return appointment

    def update_one(self, appointment_id: str, fields: Dict[str, Any]) -> int:
        """Field-level set on a single row; returns the number of rows matched."""
        updated = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).update(fields, synchronize_session="fetch")
        self._commit()
        return updated

    def delete_one(self, appointment_id: str) -> int:
        deleted = self.db.query(Appointment).filter(
            Appointment.id == appointment_id
        ).delete(synchronize_session="fetch")
        self._commit()
        return deleted

    def count(self, *criteria, include_deleted: bool = False, only_deleted: bool = False) -> int:
        return self.query(*criteria, include_deleted=include_deleted, only_deleted=only_deleted).count()

    def count_by(self, column, *criteria, include_deleted: bool = False) -> Dict[Any, int]:
        query = self.db.query(column, func.count(Appointment.id))
        if not include_deleted:
            query = query.filter(Appointment.deleted_at.is_(None))
        if criteria:
            query = query.filter(*criteria)
        return {key: total for key, total in query.group_by(column).all()}

    def count_distinct(self, column, *criteria, include_deleted: bool = False) -> int:
        query = self.db.query(func.count(func.distinct(column)))
        if not include_deleted:
            query = query.filter(Appointment.deleted_at.is_(None))
        if criteria:
            query = query.filter(*criteria)
        return query.scalar() or 0

    def _commit(self):
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise
