"""Dialect-aware INSERT ... ON CONFLICT helpers.

Row creation that can race (rate counters, policy rows, feedback) goes through
these helpers instead of SAVEPOINT + IntegrityError, which pysqlite does not
handle reliably.
"""
from __future__ import annotations

from typing import Any, Iterable, Mapping

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def _insert_for(db: Session, table):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"ON CONFLICT is not supported for dialect {dialect!r}")


def insert_ignore(
    db: Session,
    model,
    values: Mapping[str, Any],
    conflict_columns: Iterable[str],
) -> bool:
    """Insert a row unless one already exists; return True when this call created it."""
    stmt = (
        _insert_for(db, model.__table__)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(conflict_columns))
    )
    result = db.execute(stmt)
    return result.rowcount == 1


def upsert(
    db: Session,
    model,
    values: Mapping[str, Any],
    conflict_columns: Iterable[str],
    update_columns: Iterable[str],
) -> None:
    """Insert a row or overwrite ``update_columns`` on the existing one."""
    stmt = _insert_for(db, model.__table__).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={column: stmt.excluded[column] for column in update_columns},
    )
    db.execute(stmt)
