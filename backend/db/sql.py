"""
SQL execution helpers with enforced parameter style.

Rules:
1. Use :name param style only (SQLAlchemy bind params)
2. Never use percent-paren pyformat style
3. Never interpolate values into SQL text; bind them

Usage:
    from db.sql import run_sql, run_sql_scalar

    rows = run_sql(
        session,
        '''
        SELECT id, part_number FROM parts
        WHERE diagram_id = :diagram_id
        ORDER BY id
        ''',
        diagram_id='engine/oil-pump'
    )
"""
import re
from typing import Any, List, Optional, Tuple

from sqlalchemy import text


# Regex patterns for validation
PYFORMAT_PARAM_PATTERN = re.compile(r'%\([a-zA-Z_][a-zA-Z0-9_]*\)s')


class SQLParamStyleError(Exception):
    """Raised when SQL uses incorrect parameter style."""
    pass


def validate_sql_text(sql: str) -> None:
    """
    Validate that SQL text uses correct :name param style.

    Raises SQLParamStyleError if pyformat percent-paren style is detected.
    """
    matches = PYFORMAT_PARAM_PATTERN.findall(sql)
    if matches:
        raise SQLParamStyleError(
            f"SQL contains pyformat-style params: {matches}. "
            f"Use SQLAlchemy :name style instead."
        )


def _session(db):
    # Accept both a session and an object carrying one (db.session)
    return getattr(db, 'session', db)


def run_sql(
    db,
    sql: str,
    validate: bool = True,
    **params
) -> List[Tuple]:
    """
    Execute a query and return all rows.

    Args:
        db: SQLAlchemy session (or object with .session)
        sql: SQL text using :name param style
        validate: Whether to validate the SQL text (default True)
        **params: Named parameters to pass to the query

    Raises:
        SQLParamStyleError: If SQL uses pyformat percent-paren style
    """
    if validate:
        validate_sql_text(sql)
    result = _session(db).execute(text(sql), params)
    return result.fetchall()


def run_sql_scalar(
    db,
    sql: str,
    validate: bool = True,
    **params
) -> Any:
    """
    Execute SQL and return a single scalar value.

    Useful for COUNT(*), MAX(), etc.
    """
    if validate:
        validate_sql_text(sql)
    row = _session(db).execute(text(sql), params).fetchone()
    return row[0] if row else None


def run_sql_one(
    db,
    sql: str,
    validate: bool = True,
    **params
) -> Optional[Tuple]:
    """
    Execute SQL and return a single row or None.
    """
    if validate:
        validate_sql_text(sql)
    return _session(db).execute(text(sql), params).fetchone()


def execute_sql(
    db,
    sql: str,
    validate: bool = True,
    **params
) -> int:
    """
    Execute a write statement and return the affected row count.
    """
    if validate:
        validate_sql_text(sql)
    result = _session(db).execute(text(sql), params)
    return result.rowcount
