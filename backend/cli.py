#!/usr/bin/env python3
"""
CLI for the Parts Catalog Harvester

Commands:
    init-db          - Create the schema and run migrations
    harvest          - Re-scrape subgroup listing pages and their detail pages
    download-images  - Download diagram images not fetched yet
    reset-failed     - Move failed ledger URLs back to pending
    stats            - Show crawl and catalog counts
    query            - Run an ad hoc SQL statement
    consolidate      - Run the consolidation passes
    clean-names      - Normalize subgroup and diagram names
    generate-tags    - Rebuild part tags
    search           - Full-text search over parts

Usage:
    python cli.py init-db
    python cli.py harvest https://.../delica_space_gear/pd6w/hseue9/engine/engine-assy/
    python cli.py harvest --retry-failed
    python cli.py consolidate --only images --only diagrams
    python cli.py query "SELECT COUNT(*) FROM parts"
    python cli.py search "gasket"
"""

import logging
import sys
from contextlib import contextmanager

import click


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


@contextmanager
def get_session():
    """Session on the configured store, schema ensured."""
    from db.engine import get_session_factory
    from db.schema import create_schema

    session = get_session_factory()()
    try:
        create_schema(session)
        yield session
    finally:
        session.close()


@click.group()
@click.version_option(version="1.0.0", prog_name="catalog-cli")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose):
    """Parts Catalog Harvester CLI - crawl, consolidate and query the catalog."""
    setup_logging(verbose)


@cli.command("init-db")
def init_db():
    """Create tables, indexes and full-text index; apply migrations."""
    from db.schema import run_migrations

    with get_session() as session:
        applied = run_migrations(session)

    click.secho("Schema ready", fg="green")
    for description in applied:
        click.echo(f"  {description}")


@cli.command("harvest")
@click.argument("seed_urls", nargs=-1)
@click.option("--retry-failed", is_flag=True, help="Reset failed URLs to pending first")
def harvest(seed_urls, retry_failed):
    """
    Harvest subgroup listing pages recorded in the ledger.

    SEED_URLS: Optional listing URLs to add to the ledger first
    """
    from config import get_catalog_base_url, get_fetcher_config_path, get_frame_number, get_images_dir, log_config
    from db.crawl_ledger import CrawlLedger
    from scrapers import AdaptiveFetcher, CatalogHarvester, CatalogUrls, ConfigError

    log_config()
    base_url = get_catalog_base_url()

    with get_session() as session:
        if retry_failed:
            count = CrawlLedger(session).reset_failed()
            click.echo(f"Reset {count} failed URLs")

        try:
            fetcher = AdaptiveFetcher.for_url(base_url, config_path=get_fetcher_config_path())
        except ConfigError as e:
            click.secho(f"Error: {e}", fg="red")
            sys.exit(1)

        with fetcher:
            harvester = CatalogHarvester(
                session,
                fetcher,
                CatalogUrls(base_url, get_frame_number()),
                images_dir=get_images_dir(),
            )
            stats = harvester.harvest(list(seed_urls))

    click.echo("=" * 60)
    click.secho("HARVEST SUMMARY", fg="cyan", bold=True)
    click.echo("=" * 60)
    click.echo(f"  Pages processed:       {stats.pages_processed}")
    click.echo(f"  Pages failed:          {stats.pages_failed}")
    click.echo(f"  Detail pages fetched:  {stats.detail_pages_fetched}")
    click.echo(f"  Detail pages skipped:  {stats.detail_pages_skipped}")
    click.echo(f"  Detail pages failed:   {stats.detail_pages_failed}")
    click.echo(f"  Parts inserted:        {stats.parts_inserted}")
    click.echo(f"  Replacements merged:   {stats.replacements_merged}")
    if stats.replacements_unmerged:
        click.secho(f"  Replacements unmerged: {stats.replacements_unmerged}", fg="yellow")


@cli.command("download-images")
def download_images():
    """Download images for diagrams that do not have one yet."""
    from config import get_catalog_base_url, get_fetcher_config_path, get_frame_number, get_images_dir
    from scrapers import AdaptiveFetcher, CatalogHarvester, CatalogUrls

    base_url = get_catalog_base_url()
    with get_session() as session:
        with AdaptiveFetcher.for_url(base_url, config_path=get_fetcher_config_path()) as fetcher:
            harvester = CatalogHarvester(
                session, fetcher, CatalogUrls(base_url, get_frame_number()), images_dir=get_images_dir()
            )
            stats = harvester.download_images()

    color = "green" if stats.failed == 0 else "yellow"
    click.secho(f"Downloaded: {stats.downloaded}, Reused: {stats.reused}, Failed: {stats.failed}", fg=color)


@cli.command("reset-failed")
def reset_failed():
    """Move every failed URL back to pending."""
    from db.crawl_ledger import CrawlLedger

    with get_session() as session:
        count = CrawlLedger(session).reset_failed()
    click.echo(f"Reset {count} failed URLs to pending")


@cli.command("stats")
def stats():
    """Show crawl progress and catalog totals."""
    from db.catalog_queries import get_stats

    with get_session() as session:
        s = get_stats(session)

    click.echo("=" * 60)
    click.secho("CATALOG STATS", fg="cyan", bold=True)
    click.echo("=" * 60)
    click.echo(f"  URLs:       {s.total_urls} "
               f"(completed {s.completed_urls}, pending {s.pending_urls}, failed {s.failed_urls})")
    click.echo(f"  Groups:     {s.total_groups}")
    click.echo(f"  Subgroups:  {s.total_subgroups}")
    click.echo(f"  Diagrams:   {s.total_diagrams} ({s.images_downloaded} with images)")
    click.echo(f"  Parts:      {s.total_parts}")


@cli.command("query")
@click.argument("sql")
def query(sql):
    """Run an ad hoc SQL statement and print the result."""
    from db.catalog_queries import QueryError, execute_query

    with get_session() as session:
        try:
            result = execute_query(session, sql)
            session.commit()
        except QueryError as e:
            session.rollback()
            click.secho(f"Error: {e}", fg="red")
            sys.exit(1)

    if not result.columns:
        click.echo("OK")
        return
    click.echo(" | ".join(result.columns))
    click.echo("-" * 60)
    for row in result.rows:
        click.echo(" | ".join("" if v is None else str(v) for v in row))
    click.echo(f"({len(result.rows)} rows)")


@cli.command("consolidate")
@click.option(
    "--only",
    multiple=True,
    type=click.Choice(["normalize_ids", "clean_names", "images", "diagrams", "replacements"]),
    help="Run only the named pass (repeatable)",
)
def consolidate(only):
    """Run consolidation passes (all of them by default, in dependency order)."""
    from config import get_images_dir
    from services.consolidation import ConsolidationError, run_all

    with get_session() as session:
        try:
            results = run_all(session, images_dir=get_images_dir(), only=only or None)
        except ConsolidationError as e:
            click.secho(f"Error: {e}", fg="red")
            sys.exit(1)

    click.echo("=" * 60)
    click.secho("CONSOLIDATION SUMMARY", fg="cyan", bold=True)
    click.echo("=" * 60)
    for name, result in results.items():
        click.echo(f"  {name}: {result}")

    report = results.get("replacements")
    if report is not None and report.unmerged:
        click.secho(
            f"  {report.unmerged} replacement rows had no preceding part: {report.unmerged_ids}",
            fg="yellow",
        )


@cli.command("clean-names")
def clean_names_command():
    """Normalize subgroup and diagram names."""
    from services.consolidation import clean_names

    with get_session() as session:
        result = clean_names(session)
    click.echo(f"Updated {result.subgroups_updated} subgroup names, "
               f"{result.diagrams_updated} diagram names")


@cli.command("generate-tags")
def generate_tags():
    """Wipe and rebuild part tags from part descriptions."""
    from services.tagging import regenerate_tags

    with get_session() as session:
        counts = regenerate_tags(session)
    click.echo(f"Tagged parts with {len(counts)} tags "
               f"({sum(counts.values())} assignments)")


@cli.command("search")
@click.argument("term")
@click.option("--limit", default=50, show_default=True, help="Maximum results")
def search(term, limit):
    """Full-text search over part number, pnc, description and notes."""
    from db.catalog_queries import QueryError, search_parts

    with get_session() as session:
        try:
            parts = search_parts(session, term, limit=limit)
        except QueryError as e:
            click.secho(f"Error: {e}", fg="red")
            sys.exit(1)

    if not parts:
        click.echo("No parts found")
        return
    for part in parts:
        line = f"{part.part_number:<16} {part.description or '':<40} {part.diagram_id}"
        if part.replacement_part_number:
            line += f"  -> {part.replacement_part_number}"
        click.echo(line)


if __name__ == "__main__":
    cli()
