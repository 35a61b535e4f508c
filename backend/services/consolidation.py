"""
Catalog Consolidation Engine - idempotent post-crawl repair passes.

Upserting alone cannot prevent duplication that spans pages: the same
illustration is served under several detail-page ids, ids carry numeric
suffixes, and the source emits supersession notes as part-shaped rows.
These passes repair that after the fact:

1. normalize_ids      strip numeric suffixes from diagram ids
2. clean_names        normalize subgroup/diagram display names
3. images             one file per derived base name on disk
4. diagrams           one diagram per distinct image_path
5. replacements       fold annotation rows into the preceding part

Every pass is safe to re-run. Each row-group (one renamed diagram, one set
of diagrams sharing an image, one annotation row) is applied in its own
transaction; a failure rolls that group back and raises ConsolidationError
so no part is ever left pointing at a deleted diagram.

Usage:
    from services.consolidation import run_all

    results = run_all(session, images_dir="images")
"""
import logging
import os
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from itertools import groupby
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from config import Config
from db.sql import execute_sql, run_sql, run_sql_scalar
from utils.identifiers import image_base_name, strip_numeric_suffix
from utils.names import clean_subgroup_name

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".webp"}


class ConsolidationError(Exception):
    """A row-group repair could not be applied; its changes were rolled back."""
    pass


@contextmanager
def _row_group(session, label: str):
    """
    Apply one row-group's statements atomically.

    Yields a list the caller can append undo callables to; they run in
    reverse order after the rollback, for side effects outside the store.
    """
    undo: List[Callable[[], None]] = []
    try:
        yield undo
        session.commit()
    except Exception as e:
        session.rollback()
        for action in reversed(undo):
            action()
        raise ConsolidationError(f"{label}: {e}") from e


def _reparent_parts(session, from_diagram: str, to_diagram: str) -> Tuple[int, int]:
    """
    Move parts from one diagram to another; the target's parts win collisions.

    Returns:
        (parts repointed, colliding parts deleted)
    """
    deleted = execute_sql(
        session,
        """
        DELETE FROM parts
        WHERE diagram_id = :from_id
          AND part_number IN (SELECT part_number FROM parts WHERE diagram_id = :to_id)
        """,
        from_id=from_diagram, to_id=to_diagram,
    )
    repointed = execute_sql(
        session,
        "UPDATE parts SET diagram_id = :to_id WHERE diagram_id = :from_id",
        from_id=from_diagram, to_id=to_diagram,
    )
    return repointed, deleted


# =============================================================================
# Pass 1: identifier normalization
# =============================================================================

@dataclass
class IdNormalizationResult:
    renamed: int = 0
    merged: int = 0
    parts_repointed: int = 0
    parts_deleted: int = 0


def normalize_diagram_ids(session) -> IdNormalizationResult:
    """
    Strip numeric suffixes from diagram ids ("engine-assy-148" -> "engine-assy").

    The renamed row is written first, its parts are re-pointed, then the old
    row is removed. When the normalized id already exists the old diagram is
    merged into it instead (existing parts win part-number collisions, and
    missing image metadata is carried over).
    """
    result = IdNormalizationResult()
    diagram_ids = [row[0] for row in run_sql(session, "SELECT id FROM diagrams ORDER BY id")]

    for old_id in diagram_ids:
        new_id = strip_numeric_suffix(old_id)
        if new_id == old_id:
            continue

        with _row_group(session, f"normalize diagram id {old_id!r}"):
            exists = run_sql_scalar(
                session, "SELECT COUNT(*) FROM diagrams WHERE id = :id", id=new_id
            )
            if exists:
                execute_sql(
                    session,
                    """
                    UPDATE diagrams SET
                        image_url = COALESCE(image_url, (SELECT image_url FROM diagrams WHERE id = :old_id)),
                        image_path = COALESCE(image_path, (SELECT image_path FROM diagrams WHERE id = :old_id))
                    WHERE id = :new_id
                    """,
                    old_id=old_id, new_id=new_id,
                )
                result.merged += 1
            else:
                execute_sql(
                    session,
                    """
                    INSERT INTO diagrams (id, group_id, subgroup_id, name, image_url, image_path, source_url)
                    SELECT :new_id, group_id, subgroup_id, name, image_url, image_path, source_url
                    FROM diagrams WHERE id = :old_id
                    """,
                    old_id=old_id, new_id=new_id,
                )
                result.renamed += 1

            repointed, deleted = _reparent_parts(session, old_id, new_id)
            execute_sql(session, "DELETE FROM diagrams WHERE id = :id", id=old_id)

        result.parts_repointed += repointed
        result.parts_deleted += deleted
        logger.debug(f"  {old_id} -> {new_id} ({repointed} parts moved, {deleted} dropped)")

    logger.info(
        f"Diagram ids: {result.renamed} renamed, {result.merged} merged, "
        f"{result.parts_repointed} parts repointed, {result.parts_deleted} duplicate parts removed"
    )
    return result


# =============================================================================
# Pass 2: name cleanup
# =============================================================================

@dataclass
class NameCleanupResult:
    subgroups_updated: int = 0
    diagrams_updated: int = 0


def clean_names(session, cleaner: Callable[[str], str] = clean_subgroup_name) -> NameCleanupResult:
    """Rewrite subgroup and diagram names that the cleaner changes."""
    result = NameCleanupResult()

    for table, attr in (("subgroups", "subgroups_updated"), ("diagrams", "diagrams_updated")):
        updated = 0
        with _row_group(session, f"clean {table} names"):
            for row_id, name in run_sql(session, f"SELECT id, name FROM {table} ORDER BY id"):
                cleaned = cleaner(name)
                if cleaned == name:
                    continue
                execute_sql(
                    session,
                    f"UPDATE {table} SET name = :name WHERE id = :id",
                    name=cleaned, id=row_id,
                )
                logger.debug(f"  {table}: {name!r} -> {cleaned!r}")
                updated += 1
        setattr(result, attr, updated)

    logger.info(
        f"Names: {result.subgroups_updated} subgroups, {result.diagrams_updated} diagrams updated"
    )
    return result


# =============================================================================
# Pass 3: image file de-duplication
# =============================================================================

@dataclass
class ImageDedupResult:
    groups: int = 0
    renamed: int = 0
    deleted: int = 0
    delete_failed: int = 0
    diagrams_updated: int = 0


def _image_files(images_dir: str) -> List[str]:
    if not os.path.isdir(images_dir):
        return []
    return sorted(
        entry.name for entry in os.scandir(images_dir)
        if entry.is_file() and os.path.splitext(entry.name)[1].lower() in IMAGE_EXTENSIONS
    )


def _canonical_file(base: str, files: Sequence[str]) -> Tuple[str, str]:
    """
    Pick (file to keep, canonical filename) for one group.

    An existing ``base.*`` file is kept as is; otherwise the first file is
    renamed to ``base`` plus its own extension.
    """
    for filename in files:
        if os.path.splitext(filename)[0] == base:
            return filename, filename
    keep = files[0]
    return keep, f"{base}{os.path.splitext(keep)[1]}"


def consolidate_images(
    session,
    images_dir: str,
    path_prefix: str = Config.IMAGE_PATH_PREFIX,
) -> ImageDedupResult:
    """
    Collapse image files that share a derived base name into one file.

    Files are grouped by name with extension and numeric suffix removed, so
    ``x-1.png`` and ``x-2.jpg`` are one group. An existing ``base.*`` file is
    kept if present, otherwise the first file (by name) is renamed to
    ``base.ext``. Diagrams pointing at any file of the group are re-pointed
    to the canonical path; the rewrite and the rename commit together, and
    the remaining duplicates are deleted afterwards. A duplicate that cannot
    be deleted is logged and left for the next run. Stored image paths have
    the form ``{path_prefix}/{name}``.
    """
    result = ImageDedupResult()

    groups: Dict[str, List[str]] = defaultdict(list)
    for filename in _image_files(images_dir):
        groups[image_base_name(filename)].append(filename)

    for base, files in sorted(groups.items()):
        keep, canonical = _canonical_file(base, files)
        if files == [canonical]:
            continue
        result.groups += 1

        canonical_path = f"{path_prefix}/{canonical}"
        keep_file = os.path.join(images_dir, keep)
        canonical_file = os.path.join(images_dir, canonical)

        with _row_group(session, f"consolidate images {canonical!r}") as undo:
            updated = 0
            for filename in files:
                if filename == canonical:
                    continue
                updated += execute_sql(
                    session,
                    "UPDATE diagrams SET image_path = :new_path WHERE image_path = :old_path",
                    new_path=canonical_path, old_path=f"{path_prefix}/{filename}",
                )

            if keep != canonical:
                os.replace(keep_file, canonical_file)
                undo.append(lambda src=canonical_file, dst=keep_file: os.replace(src, dst))
                result.renamed += 1

        result.diagrams_updated += updated

        for filename in files:
            if filename in (keep, canonical):
                continue
            try:
                os.remove(os.path.join(images_dir, filename))
                result.deleted += 1
            except OSError as e:
                logger.warning(f"  Could not delete duplicate image {filename}: {e}")
                result.delete_failed += 1

    logger.info(
        f"Images: {result.groups} groups, {result.renamed} renamed, "
        f"{result.deleted} duplicates deleted ({result.delete_failed} failed), "
        f"{result.diagrams_updated} diagrams repointed"
    )
    return result


# =============================================================================
# Pass 4: diagram de-duplication by shared image
# =============================================================================

@dataclass
class DiagramDedupResult:
    groups: int = 0
    diagrams_deleted: int = 0
    parts_repointed: int = 0
    parts_deleted: int = 0


def consolidate_diagrams(session) -> DiagramDedupResult:
    """
    Keep one diagram per image_path (the smallest id) and fold the rest into it.

    For each non-canonical diagram, parts whose part_number already exists
    under the canonical diagram are deleted, the remaining parts are
    re-pointed, and the diagram row is removed.
    """
    result = DiagramDedupResult()
    rows = run_sql(
        session,
        "SELECT image_path, id FROM diagrams WHERE image_path IS NOT NULL ORDER BY image_path",
    )

    for image_path, members in groupby(rows, key=lambda row: row[0]):
        diagram_ids = sorted(row[1] for row in members)
        if len(diagram_ids) < 2:
            continue

        keep_id, duplicates = diagram_ids[0], diagram_ids[1:]
        result.groups += 1

        with _row_group(session, f"consolidate diagrams for {image_path!r}"):
            repointed_total = deleted_total = 0
            for duplicate_id in duplicates:
                repointed, deleted = _reparent_parts(session, duplicate_id, keep_id)
                repointed_total += repointed
                deleted_total += deleted
                execute_sql(session, "DELETE FROM diagrams WHERE id = :id", id=duplicate_id)

        result.diagrams_deleted += len(duplicates)
        result.parts_repointed += repointed_total
        result.parts_deleted += deleted_total
        logger.debug(f"  {image_path}: kept {keep_id}, removed {duplicates}")

    logger.info(
        f"Diagrams: {result.groups} shared images, {result.diagrams_deleted} diagrams removed, "
        f"{result.parts_repointed} parts repointed, {result.parts_deleted} duplicate parts removed"
    )
    return result


# =============================================================================
# Pass 5: replacement-part merging
# =============================================================================

@dataclass
class MergeReport:
    merged: int = 0
    unmerged_ids: List[int] = field(default_factory=list)

    @property
    def unmerged(self) -> int:
        return len(self.unmerged_ids)


def merge_replacement_parts(session) -> MergeReport:
    """
    Fold replacement annotation rows into the part they supersede.

    An annotation row (pnc, description and ref_number all NULL) donates its
    part_number to the nearest earlier row with a pnc, as that row's
    replacement_part_number, and is then deleted. Rows with no such
    predecessor are left in place and listed in ``unmerged_ids``.
    """
    report = MergeReport()
    annotations = run_sql(
        session,
        """
        SELECT id, part_number FROM parts
        WHERE pnc IS NULL AND description IS NULL AND ref_number IS NULL
        ORDER BY id
        """,
    )

    for part_id, part_number in annotations:
        preceding_id = run_sql_scalar(
            session,
            """
            SELECT id FROM parts
            WHERE id < :id AND pnc IS NOT NULL
            ORDER BY id DESC
            LIMIT 1
            """,
            id=part_id,
        )
        if preceding_id is None:
            report.unmerged_ids.append(part_id)
            logger.warning(
                f"  Replacement row {part_id} ({part_number}) has no preceding part; left unmerged"
            )
            continue

        with _row_group(session, f"merge replacement row {part_id}"):
            execute_sql(
                session,
                "UPDATE parts SET replacement_part_number = :part_number WHERE id = :id",
                part_number=part_number, id=preceding_id,
            )
            execute_sql(session, "DELETE FROM parts WHERE id = :id", id=part_id)
        report.merged += 1

    logger.info(f"Replacements: {report.merged} merged, {report.unmerged} unmerged")
    return report


# =============================================================================
# Orchestration
# =============================================================================

PASS_ORDER: Sequence[str] = ("normalize_ids", "clean_names", "images", "diagrams", "replacements")


def run_all(
    session,
    images_dir: str,
    path_prefix: str = Config.IMAGE_PATH_PREFIX,
    only: Optional[Sequence[str]] = None,
) -> Dict[str, object]:
    """
    Run consolidation passes in dependency order.

    Diagram/image passes run before replacement merging so fewer parts are
    re-pointed after merging. ``only`` restricts the run to named passes.

    Returns:
        Pass name -> result object.
    """
    selected = list(only) if only else list(PASS_ORDER)
    unknown = set(selected) - set(PASS_ORDER)
    if unknown:
        raise ValueError(f"Unknown consolidation passes: {sorted(unknown)}")

    passes: Dict[str, Callable[[], object]] = {
        "normalize_ids": lambda: normalize_diagram_ids(session),
        "clean_names": lambda: clean_names(session),
        "images": lambda: consolidate_images(session, images_dir, path_prefix),
        "diagrams": lambda: consolidate_diagrams(session),
        "replacements": lambda: merge_replacement_parts(session),
    }

    results: Dict[str, object] = {}
    for name in PASS_ORDER:
        if name not in selected:
            continue
        logger.info("=" * 60)
        logger.info(f"Consolidation pass: {name}")
        results[name] = passes[name]()
    return results
