"""
SQL Guardrail Tests

These tests prevent SQL parameter style regressions:
1. No %(name)s pyformat params anywhere in backend SQL
2. :name SQLAlchemy style is the only allowed param format
3. The run_sql helpers refuse pyformat text before it reaches the driver

Run with: pytest tests/test_sql_guardrails.py -v
"""
import re
from pathlib import Path

import pytest

from db.sql import (
    SQLParamStyleError,
    execute_sql,
    run_sql,
    run_sql_one,
    run_sql_scalar,
    validate_sql_text,
)


# =============================================================================
# GUARDRAIL: No pyformat %(name)s params in backend code
# =============================================================================

class TestNoLegacyParamStyle:
    """Ensure no %(name)s style params exist in backend SQL."""

    PYFORMAT_PATTERN = re.compile(r'%\([a-zA-Z_][a-zA-Z0-9_]*\)s')

    BACKEND_ROOT = Path(__file__).parent.parent

    SCAN_DIRS = ['db', 'scrapers', 'services']

    def get_python_files(self):
        files = []
        for scan_dir in self.SCAN_DIRS:
            dir_path = self.BACKEND_ROOT / scan_dir
            if dir_path.exists():
                files.extend(dir_path.rglob('*.py'))
        return files

    def test_no_pyformat_params_in_backend(self):
        """
        GUARDRAIL: Detect and fail if %(name)s style params are used.

        All SQL should use :name SQLAlchemy bind params.
        """
        violations = []

        for filepath in self.get_python_files():
            # db/sql.py documents the banned style
            if filepath.name == 'sql.py':
                continue
            lines = filepath.read_text(encoding='utf-8').split('\n')
            for i, line in enumerate(lines, 1):
                if self.PYFORMAT_PATTERN.search(line):
                    violations.append(
                        f"  {filepath.relative_to(self.BACKEND_ROOT)}:{i}\n    {line.strip()[:100]}"
                    )

        if violations:
            pytest.fail(
                "GUARDRAIL VIOLATION: Found pyformat %(name)s params!\n\n"
                + "\n".join(violations)
                + "\n\nFix by replacing %(name)s with :name in SQL text."
            )


# =============================================================================
# SQL HELPER VALIDATION TESTS
# =============================================================================

class TestSqlTextValidation:
    """Test SQL text validation catches bad param styles."""

    def test_valid_sqlalchemy_params(self):
        sql = """
            SELECT * FROM parts
            WHERE diagram_id = :diagram_id
              AND detail_page_id = :detail_page_id
        """
        validate_sql_text(sql)

    def test_rejects_pyformat_params(self):
        sql = "SELECT * FROM parts WHERE part_number = %(part_number)s"
        with pytest.raises(SQLParamStyleError) as exc:
            validate_sql_text(sql)

        assert '%(part_number)s' in str(exc.value)

    def test_rejects_mixed_params(self):
        sql = """
            SELECT * FROM parts
            WHERE diagram_id = :diagram_id
              AND part_number = %(part_number)s
        """
        with pytest.raises(SQLParamStyleError):
            validate_sql_text(sql)


class TestHelpers:
    """The helpers run against a real store and enforce validation."""

    def test_round_trip(self, session):
        assert execute_sql(session, "INSERT INTO groups (id, name) VALUES (:id, :name)",
                           id='engine', name='Engine') == 1
        assert run_sql_scalar(session, "SELECT name FROM groups WHERE id = :id", id='engine') == 'Engine'
        assert run_sql_one(session, "SELECT id FROM groups WHERE id = :id", id='nope') is None
        assert [tuple(r) for r in run_sql(session, "SELECT id, name FROM groups")] == [('engine', 'Engine')]

    def test_helpers_refuse_pyformat(self, session):
        with pytest.raises(SQLParamStyleError):
            run_sql(session, "SELECT * FROM groups WHERE id = %(id)s", id='engine')

    def test_accepts_object_carrying_session(self, session):
        class Holder:
            pass

        holder = Holder()
        holder.session = session
        assert run_sql_scalar(holder, "SELECT COUNT(*) FROM groups") == 0
