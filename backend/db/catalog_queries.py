"""
Entity upsert layer and reporting queries for the catalog store.

Write semantics (all idempotent):
    groups, subgroups  INSERT OR IGNORE           first writer wins
    diagrams           INSERT ... ON CONFLICT     latest write wins
    parts              INSERT OR IGNORE           (detail_page_id, part_number, diagram_id)

Functions here never commit; the caller owns the transaction boundary.

Usage:
    from db.catalog_queries import insert_subgroup, insert_diagram, insert_parts

    insert_subgroup(session, Subgroup(id=..., name=..., group_id=..., path=...))
    insert_diagram(session, Diagram(...))
    inserted = insert_parts(session, parts)
    session.commit()
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from constants import STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING
from models.catalog import Diagram, Group, Part, Subgroup

from .crawl_ledger import CrawlLedger
from .sql import execute_sql, run_sql, run_sql_scalar

logger = logging.getLogger(__name__)


class QueryError(Exception):
    """Raised when an ad hoc or search query cannot be executed."""
    pass


# =============================================================================
# Groups / subgroups
# =============================================================================

def insert_group(session, group: Group) -> bool:
    """Insert a group unless one with the same id exists. Returns True if inserted."""
    return execute_sql(
        session,
        "INSERT OR IGNORE INTO groups (id, name) VALUES (:id, :name)",
        id=group.id, name=group.name,
    ) > 0


def ensure_group(session, group_id: str, name: Optional[str] = None) -> bool:
    """
    Make sure ``group_id`` exists before anything references it.

    An unseen group is created with ``name`` or, when no name is known,
    with its own id as a placeholder name. An existing group is untouched.
    """
    created = insert_group(session, Group(id=group_id, name=name or group_id))
    if created:
        logger.debug(f"Created group {group_id!r}")
    return created


def insert_subgroup(session, subgroup: Subgroup) -> bool:
    """Insert a subgroup (and its parent group, if unseen). First writer wins."""
    ensure_group(session, subgroup.group_id)
    return execute_sql(
        session,
        """
        INSERT OR IGNORE INTO subgroups (id, name, group_id, path)
        VALUES (:id, :name, :group_id, :path)
        """,
        id=subgroup.id, name=subgroup.name,
        group_id=subgroup.group_id, path=subgroup.path,
    ) > 0


# =============================================================================
# Diagrams
# =============================================================================

def insert_diagram(session, diagram: Diagram) -> None:
    """
    Insert or overwrite a diagram.

    The row is updated in place on conflict so parts that reference it stay
    attached. A stored image_path is never cleared by a write that carries
    none: it is set once, after a successful download.
    """
    ensure_group(session, diagram.group_id)
    execute_sql(
        session,
        """
        INSERT INTO diagrams (id, group_id, subgroup_id, name, image_url, image_path, source_url)
        VALUES (:id, :group_id, :subgroup_id, :name, :image_url, :image_path, :source_url)
        ON CONFLICT(id) DO UPDATE SET
            group_id = excluded.group_id,
            subgroup_id = excluded.subgroup_id,
            name = excluded.name,
            image_url = excluded.image_url,
            image_path = COALESCE(excluded.image_path, diagrams.image_path),
            source_url = excluded.source_url
        """,
        id=diagram.id, group_id=diagram.group_id, subgroup_id=diagram.subgroup_id,
        name=diagram.name, image_url=diagram.image_url,
        image_path=diagram.image_path, source_url=diagram.source_url,
    )


def update_diagram_image_path(session, diagram_id: str, image_path: str) -> None:
    execute_sql(
        session,
        "UPDATE diagrams SET image_path = :image_path WHERE id = :id",
        image_path=image_path, id=diagram_id,
    )


def get_image_path_for_url(session, image_url: str) -> Optional[str]:
    """Stored path of an image already downloaded from ``image_url``, if any."""
    return run_sql_scalar(
        session,
        """
        SELECT image_path FROM diagrams
        WHERE image_url = :image_url AND image_path IS NOT NULL
        ORDER BY id
        LIMIT 1
        """,
        image_url=image_url,
    )


def get_diagrams_without_images(session) -> List[Diagram]:
    """Diagrams with a remote image that has not been downloaded yet."""
    rows = run_sql(
        session,
        """
        SELECT id, group_id, subgroup_id, name, image_url, source_url, image_path
        FROM diagrams
        WHERE image_url IS NOT NULL AND image_path IS NULL
        ORDER BY id
        """,
    )
    return [Diagram(*row) for row in rows]


# =============================================================================
# Parts
# =============================================================================

INSERT_PART_SQL = """
    INSERT OR IGNORE INTO parts (
        detail_page_id, part_number, pnc, description, ref_number, quantity,
        spec, notes, color, model_date_range, diagram_id, group_id,
        subgroup_id, replacement_part_number
    ) VALUES (
        :detail_page_id, :part_number, :pnc, :description, :ref_number, :quantity,
        :spec, :notes, :color, :model_date_range, :diagram_id, :group_id,
        :subgroup_id, :replacement_part_number
    )
"""


def insert_parts(session, parts: Iterable[Part]) -> int:
    """
    Insert parts, skipping exact duplicates.

    Each row runs in its own SAVEPOINT so one rejected row (for example a
    dangling diagram reference) does not undo or block the others.

    Returns:
        Number of rows actually inserted.
    """
    inserted = 0
    for part in parts:
        try:
            with session.begin_nested():
                inserted += execute_sql(session, INSERT_PART_SQL, **part.to_params())
        except IntegrityError as e:
            logger.warning(
                f"  Rejected part {part.part_number} "
                f"(detail {part.detail_page_id}, diagram {part.diagram_id}): {e.orig}"
            )
    return inserted


def insert_part(session, part: Part) -> bool:
    return insert_parts(session, [part]) == 1


def count_parts_for_detail_page(session, detail_page_id: str) -> int:
    return run_sql_scalar(
        session,
        "SELECT COUNT(*) FROM parts WHERE detail_page_id = :detail_page_id",
        detail_page_id=detail_page_id,
    ) or 0


def delete_page_data(session, base_path: str) -> Dict[str, int]:
    """
    Delete everything harvested from one listing page.

    Covers subgroups whose path is ``base_path`` as well as a legacy
    single-section subgroup whose id is ``base_path``, in child-first order.
    """
    owned = "SELECT id FROM subgroups WHERE path = :base_path OR id = :base_path"
    counts = {
        "tag_links": execute_sql(
            session,
            f"DELETE FROM tags_to_parts WHERE part_id IN "
            f"(SELECT id FROM parts WHERE subgroup_id IN ({owned}))",
            base_path=base_path,
        ),
        "parts": execute_sql(
            session,
            f"DELETE FROM parts WHERE subgroup_id IN ({owned})",
            base_path=base_path,
        ),
    }
    # Diagrams that still hold parts from elsewhere (after consolidation) are kept
    counts["diagrams"] = execute_sql(
        session,
        f"""
        DELETE FROM diagrams
        WHERE subgroup_id IN ({owned})
          AND NOT EXISTS (SELECT 1 FROM parts p WHERE p.diagram_id = diagrams.id)
        """,
        base_path=base_path,
    )
    execute_sql(
        session,
        f"UPDATE diagrams SET subgroup_id = NULL WHERE subgroup_id IN ({owned})",
        base_path=base_path,
    )
    counts["subgroups"] = execute_sql(
        session,
        "DELETE FROM subgroups WHERE path = :base_path OR id = :base_path",
        base_path=base_path,
    )
    return counts


def search_parts(session, term: str, limit: int = 50) -> List[Part]:
    """
    Full-text search over part number, pnc, description and notes.

    Raises:
        QueryError: If ``term`` is not a valid FTS5 query
    """
    try:
        rows = run_sql(
            session,
            """
            SELECT p.* FROM parts p
            JOIN parts_fts ON p.id = parts_fts.rowid
            WHERE parts_fts MATCH :term
            ORDER BY rank
            LIMIT :limit
            """,
            term=term, limit=limit,
        )
    except SQLAlchemyError as e:
        raise QueryError(f"Search failed for {term!r}: {e}") from e
    return [Part.from_row(row) for row in rows]


# =============================================================================
# Reporting surface
# =============================================================================

@dataclass
class QueryResult:
    columns: List[str] = field(default_factory=list)
    rows: List[List[Any]] = field(default_factory=list)


def execute_query(session, sql: str) -> QueryResult:
    """
    Run an ad hoc SQL statement and return its columns and rows.

    The statement is passed to the driver verbatim (no bind-parameter
    parsing). Statements that return no rows yield an empty result.

    Raises:
        QueryError: If the statement is empty or the database rejects it
    """
    if not sql or not sql.strip():
        raise QueryError("Empty query")
    try:
        result = session.connection().exec_driver_sql(sql)
    except SQLAlchemyError as e:
        raise QueryError(str(getattr(e, "orig", e))) from e

    if not result.returns_rows:
        return QueryResult()
    return QueryResult(
        columns=list(result.keys()),
        rows=[list(row) for row in result.fetchall()],
    )


@dataclass
class CatalogStats:
    total_urls: int = 0
    completed_urls: int = 0
    failed_urls: int = 0
    pending_urls: int = 0
    total_groups: int = 0
    total_subgroups: int = 0
    total_diagrams: int = 0
    total_parts: int = 0
    images_downloaded: int = 0


def get_stats(session) -> CatalogStats:
    """URL counts by ledger status plus entity totals."""
    by_status = CrawlLedger(session).counts()

    def count(sql: str) -> int:
        return run_sql_scalar(session, sql) or 0

    return CatalogStats(
        total_urls=sum(by_status.values()),
        completed_urls=by_status[STATUS_COMPLETED],
        failed_urls=by_status[STATUS_FAILED],
        pending_urls=by_status[STATUS_PENDING],
        total_groups=count("SELECT COUNT(*) FROM groups"),
        total_subgroups=count("SELECT COUNT(*) FROM subgroups"),
        total_diagrams=count("SELECT COUNT(*) FROM diagrams"),
        total_parts=count("SELECT COUNT(*) FROM parts"),
        images_downloaded=count("SELECT COUNT(*) FROM diagrams WHERE image_path IS NOT NULL"),
    )
