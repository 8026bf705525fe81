from typing import Any, Dict, Generic, List, Optional, Type, TypeVar
import math

from sqlalchemy.orm import Query, Session

from models.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class CRUDBase(Generic[ModelType]):
    def __init__(self, model: Type[ModelType], db: Session):
        """
        Repository with default methods to Create, Read, Update, Delete (CRUD).
        """
        self.model = model
        self.db = db

    def get(self, id: Any) -> Optional[ModelType]:
        """Get a single record by ID"""
        return self.db.get(self.model, id)

    def paginate(self, query: Query, *, page: int = 1, per_page: int = 20) -> Dict[str, Any]:
        """Apply offset pagination to a query and return items with metadata"""
        total = query.order_by(None).count()
        items = query.offset((page - 1) * per_page).limit(per_page).all()
        total_pages = math.ceil(total / per_page) if per_page > 0 else 1

        return {
            "items": items,
            "total": total,
            "page": page,
            "pages": total_pages,
            "per_page": per_page,
            "has_next": page < total_pages,
            "has_prev": page > 1
        }

    def create(self, obj_in: Dict[str, Any], commit: bool = True) -> ModelType:
        """Create a new record"""
        db_obj = self.model(**obj_in)
        self.db.add(db_obj)
        if commit:
            self.db.commit()
            self.db.refresh(db_obj)
        else:
            self.db.flush()
        return db_obj

    def create_bulk(self, objs_in: List[Dict[str, Any]]) -> List[ModelType]:
        """Create multiple records in one transaction"""
        db_objs = [self.model(**obj_in) for obj_in in objs_in]
        self.db.add_all(db_objs)
        self.db.commit()
        for db_obj in db_objs:
            self.db.refresh(db_obj)
        return db_objs

    def update(self, db_obj: ModelType, obj_in: Dict[str, Any]) -> ModelType:
        """Set the given attributes and commit them as one UPDATE"""
        for field, value in obj_in.items():
            if hasattr(db_obj, field):
                setattr(db_obj, field, value)

        self.db.add(db_obj)
        self.db.commit()
        self.db.refresh(db_obj)
        return db_obj

    def remove(self, db_obj: ModelType) -> ModelType:
        """Delete a record"""
        self.db.delete(db_obj)
        self.db.commit()
        return db_obj
