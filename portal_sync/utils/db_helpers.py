"""
Database Helper Utilities for Concurrency Control

Provides:
- Database dialect detection (PostgreSQL vs SQLite)
- Row locking helpers
- Read/write access to LocalStateEntry documents
"""

import logging
from typing import Optional, TypeVar, Type
from sqlalchemy.orm import Session

from ..models.local_state import LocalStateEntry

logger = logging.getLogger(__name__)

T = TypeVar('T')


def is_postgres(db: Session) -> bool:
    """Check if the database is PostgreSQL"""
    try:
        return db.bind.dialect.name == 'postgresql'
    except AttributeError:
        return False


def acquire_row_lock(
    db: Session,
    model: Type[T],
    filter_condition,
    nowait: bool = False
) -> Optional[T]:
    """
    Acquire a row-level lock on a database record.

    Locking is applied on PostgreSQL only; SQLite serializes writers itself.

    Example:
        entry = acquire_row_lock(db, LocalStateEntry, LocalStateEntry.key == "portalSyncQueue")
    """
    query = db.query(model).filter(filter_condition)

    if is_postgres(db):
        query = query.with_for_update(nowait=nowait)

    return query.first()


def read_state(db: Session, key: str, for_update: bool = False) -> Optional[str]:
    """Read a LocalStateEntry value, optionally locking the row"""
    if for_update:
        entry = acquire_row_lock(db, LocalStateEntry, LocalStateEntry.key == key)
    else:
        entry = db.query(LocalStateEntry).filter(LocalStateEntry.key == key).first()
    return entry.value if entry else None


def write_state(db: Session, key: str, value: Optional[str], commit: bool = True) -> None:
    """Insert or overwrite a LocalStateEntry value"""
    entry = db.query(LocalStateEntry).filter(LocalStateEntry.key == key).first()
    if entry:
        entry.value = value
    else:
        db.add(LocalStateEntry(key=key, value=value))
    if commit:
        db.commit()


def delete_state(db: Session, key: str, commit: bool = True) -> None:
    db.query(LocalStateEntry).filter(LocalStateEntry.key == key).delete()
    if commit:
        db.commit()
