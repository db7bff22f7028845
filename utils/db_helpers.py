"""Dialect-aware SQL helpers.

``insert_ignore`` gives every supported backend an INSERT that silently skips
rows violating a unique constraint, so "ensure this row exists" never needs a
read-then-write race or a rolled-back transaction.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import insert, update
from sqlalchemy.dialects import mysql, postgresql, sqlite

from extensions import db


def insert_ignore(model, values: dict[str, Any]) -> int:
    """INSERT ``values`` into ``model``'s table unless a unique key already exists.

    Returns the number of rows inserted (0 or 1).
    """
    dialect = db.session.get_bind().dialect.name
    table = model.__table__

    if dialect == 'postgresql':
        stmt = postgresql.insert(table).values(**values).on_conflict_do_nothing()
    elif dialect == 'sqlite':
        stmt = sqlite.insert(table).values(**values).on_conflict_do_nothing()
    elif dialect in {'mysql', 'mariadb'}:
        stmt = mysql.insert(table).values(**values).prefix_with('IGNORE')
    else:
        stmt = insert(table).values(**values)

    result = db.session.execute(stmt)
    return int(result.rowcount or 0)


def conditional_update(model, where: list, values: dict[str, Any]) -> int:
    """Single guarded UPDATE; returns the affected-row count."""
    stmt = (
        update(model)
        .where(*where)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    return int(result.rowcount or 0)
