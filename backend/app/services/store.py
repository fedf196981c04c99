"""
Ownership-checked record access.

Every read and mutation of a user-owned row goes through here so the
"<Kind> not found or unauthorized" check lives in one place.
"""
from typing import List, Type, TypeVar
from sqlalchemy.orm import Session
import logging

from app.database import Base
from app.exceptions import NotFoundOrUnauthorized

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


def _kind(model) -> str:
    return model.__name__


def insert(db: Session, record: ModelT) -> ModelT:
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def get(db: Session, model: Type[ModelT], record_id: str, user_id: str) -> ModelT:
    record = db.query(model).filter(model.id == record_id).first()
    if record is None or record.user_id != user_id:
        raise NotFoundOrUnauthorized(_kind(model))
    return record


def patch(db: Session, record: ModelT, **fields) -> ModelT:
    for name, value in fields.items():
        if not hasattr(record, name):
            raise AttributeError(f"{type(record).__name__} has no field {name}")
        setattr(record, name, value)
    db.commit()
    db.refresh(record)
    return record


def delete(db: Session, record: ModelT):
    db.delete(record)
    db.commit()
    logger.info(f"Deleted {type(record).__name__} {record.id}")


def query_by_index(db: Session, model: Type[ModelT], user_id: str, **filters) -> List[ModelT]:
    """All rows owned by user_id matching the equality filters, oldest first"""
    query = db.query(model).filter(model.user_id == user_id)
    for name, value in filters.items():
        query = query.filter(getattr(model, name) == value)
    return query.order_by(model.created_at).all()
