import re
from typing import Any, Dict, List, Optional

from sqlalchemy import or_, true
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.sql.elements import ColumnElement

from models.order import Order
from repositories.base import CRUDBase

ORDER_ID_PREFIX = "PMTO"
ORDER_ID_START = 1000


class OrderRepository(CRUDBase[Order]):
    def __init__(self, db: Session):
        super().__init__(Order, db)

    def _query(self, predicate: Optional[ColumnElement] = None, with_people: bool = False):
        query = self.db.query(Order)
        if with_people:
            query = query.options(joinedload(Order.creator), joinedload(Order.assignee))
        if predicate is not None:
            query = query.filter(predicate)
        return query

    def get_with_people(self, order_id: int) -> Optional[Order]:
        return self._query(Order.id == order_id, with_people=True).first()

    def find(self, predicate: Optional[ColumnElement] = None, with_people: bool = True) -> List[Order]:
        """Orders matching the predicate, newest first."""
        return self._query(predicate, with_people).order_by(Order.so_date.desc(), Order.id.desc()).all()

    def find_page(self, predicate: ColumnElement, page: int, per_page: int, search: Optional[str] = None) -> Dict[str, Any]:
        query = self._query(predicate, with_people=True)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Order.customername.ilike(pattern),
                Order.order_id.ilike(pattern),
                Order.name.ilike(pattern),
                Order.city.ilike(pattern),
            ))
        query = query.order_by(Order.so_date.desc(), Order.id.desc())
        return self.paginate(query, page=page, per_page=per_page)

    def count(self, predicate: Optional[ColumnElement] = None) -> int:
        return self.db.query(Order).filter(predicate if predicate is not None else true()).count()

    def next_order_ids(self, count: int = 1) -> List[str]:
        """Reserve the next human-facing order identifiers."""
        last = (
            self.db.query(Order.order_id)
            .filter(Order.order_id.like(f"{ORDER_ID_PREFIX}%"))
            .order_by(Order.id.desc())
            .first()
        )
        current = ORDER_ID_START
        if last:
            match = re.search(r"(\d+)$", last[0])
            if match:
                current = max(current, int(match.group(1)))
        return [f"{ORDER_ID_PREFIX}{current + i}" for i in range(1, count + 1)]
