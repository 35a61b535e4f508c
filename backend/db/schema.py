"""
Catalog store schema.

    groups ─< subgroups ─< diagrams ─< parts >─< tags (via tags_to_parts)
    scrape_progress (crawl ledger, standalone)

create_schema() is idempotent (CREATE ... IF NOT EXISTS) and safe to call at
every startup. run_migrations() upgrades stores created by older versions of
the harvester in place.
"""
import logging
from typing import List, Set

from sqlalchemy import text

logger = logging.getLogger(__name__)


TABLE_DDL: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS groups (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS subgroups (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        group_id TEXT NOT NULL REFERENCES groups(id),
        path TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS diagrams (
        id TEXT PRIMARY KEY,
        group_id TEXT NOT NULL REFERENCES groups(id),
        subgroup_id TEXT REFERENCES subgroups(id),
        name TEXT NOT NULL,
        image_url TEXT,
        image_path TEXT,
        source_url TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS parts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        detail_page_id TEXT,
        part_number TEXT NOT NULL,
        pnc TEXT,
        description TEXT,
        ref_number TEXT,
        quantity INTEGER,
        spec TEXT,
        notes TEXT,
        color TEXT,
        model_date_range TEXT,
        diagram_id TEXT NOT NULL REFERENCES diagrams(id),
        group_id TEXT NOT NULL REFERENCES groups(id),
        subgroup_id TEXT REFERENCES subgroups(id),
        replacement_part_number TEXT,
        UNIQUE (detail_page_id, part_number, diagram_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scrape_progress (
        url TEXT PRIMARY KEY,
        status TEXT NOT NULL DEFAULT 'pending'
            CHECK (status IN ('pending', 'completed', 'failed')),
        scraped_at TEXT,
        error TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tags (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        category TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS tags_to_parts (
        tag_id TEXT NOT NULL REFERENCES tags(id) ON DELETE CASCADE,
        part_id INTEGER NOT NULL REFERENCES parts(id) ON DELETE CASCADE,
        PRIMARY KEY (tag_id, part_id)
    )
    """,
]

INDEX_DDL: List[str] = [
    "CREATE INDEX IF NOT EXISTS idx_subgroups_group_id ON subgroups(group_id)",
    "CREATE INDEX IF NOT EXISTS idx_diagrams_group_id ON diagrams(group_id)",
    "CREATE INDEX IF NOT EXISTS idx_diagrams_subgroup_id ON diagrams(subgroup_id)",
    "CREATE INDEX IF NOT EXISTS idx_diagrams_image_path ON diagrams(image_path)",
    "CREATE INDEX IF NOT EXISTS idx_parts_diagram_id ON parts(diagram_id)",
    "CREATE INDEX IF NOT EXISTS idx_parts_group_id ON parts(group_id)",
    "CREATE INDEX IF NOT EXISTS idx_parts_subgroup_id ON parts(subgroup_id)",
    "CREATE INDEX IF NOT EXISTS idx_parts_part_number ON parts(part_number)",
    "CREATE INDEX IF NOT EXISTS idx_parts_detail_page_id ON parts(detail_page_id)",
    "CREATE INDEX IF NOT EXISTS idx_scrape_progress_status ON scrape_progress(status)",
    "CREATE INDEX IF NOT EXISTS idx_tags_to_parts_part_id ON tags_to_parts(part_id)",
]

# External-content FTS5 index over parts; triggers keep it in step with the table.
FTS_DDL: List[str] = [
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS parts_fts USING fts5(
        part_number, pnc, description, notes,
        content='parts', content_rowid='id'
    )
    """,
    """
    CREATE TRIGGER IF NOT EXISTS parts_fts_insert AFTER INSERT ON parts BEGIN
        INSERT INTO parts_fts(rowid, part_number, pnc, description, notes)
        VALUES (new.id, new.part_number, new.pnc, new.description, new.notes);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS parts_fts_delete AFTER DELETE ON parts BEGIN
        INSERT INTO parts_fts(parts_fts, rowid, part_number, pnc, description, notes)
        VALUES ('delete', old.id, old.part_number, old.pnc, old.description, old.notes);
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS parts_fts_update AFTER UPDATE ON parts BEGIN
        INSERT INTO parts_fts(parts_fts, rowid, part_number, pnc, description, notes)
        VALUES ('delete', old.id, old.part_number, old.pnc, old.description, old.notes);
        INSERT INTO parts_fts(rowid, part_number, pnc, description, notes)
        VALUES (new.id, new.part_number, new.pnc, new.description, new.notes);
    END
    """,
]

# Diagram columns from earlier layouts; part-level data now lives on parts
OBSOLETE_DIAGRAM_COLUMNS = ("diagram_group", "detail_page_id", "pnc")


def create_schema(session) -> None:
    """Create all tables, indexes and the full-text index if missing."""
    for ddl in TABLE_DDL + INDEX_DDL + FTS_DDL:
        session.execute(text(ddl))
    session.commit()
    logger.debug("Schema ensured")


def _columns(session, table: str) -> Set[str]:
    rows = session.execute(text(f"PRAGMA table_info({table})")).fetchall()
    return {row[1] for row in rows}


def run_migrations(session) -> List[str]:
    """
    Upgrade an existing store in place.

    - subgroups.path: added if missing and backfilled from the subgroup id
      (a pre-migration subgroup id is its page base path)
    - diagrams: obsolete columns and their indexes dropped

    Returns:
        Descriptions of the migrations that were applied.
    """
    create_schema(session)
    applied: List[str] = []

    if "path" not in _columns(session, "subgroups"):
        session.execute(text("ALTER TABLE subgroups ADD COLUMN path TEXT"))
        applied.append("added subgroups.path")

    backfilled = session.execute(
        text("UPDATE subgroups SET path = id WHERE path IS NULL")
    ).rowcount
    if backfilled:
        applied.append(f"backfilled path on {backfilled} subgroups")

    diagram_columns = _columns(session, "diagrams")
    for column in OBSOLETE_DIAGRAM_COLUMNS:
        if column in diagram_columns:
            session.execute(text(f"DROP INDEX IF EXISTS idx_diagrams_{column}"))
            session.execute(text(f"ALTER TABLE diagrams DROP COLUMN {column}"))
            applied.append(f"dropped diagrams.{column}")

    session.execute(
        text("CREATE INDEX IF NOT EXISTS idx_subgroups_path ON subgroups(path)")
    )
    session.commit()

    for description in applied:
        logger.info(f"  Migration: {description}")
    return applied
