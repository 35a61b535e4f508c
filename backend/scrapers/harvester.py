"""
Catalog Harvester - crawl loop from listing pages to parts.

Pipeline per subgroup listing page:
1. Ledger: mark pending, fetch, mark completed/failed
2. Parse td.detail-list sections
3. Upsert subgroup(s) + diagram(s)
   - one section:   subgroup id = diagram id = "{group}/{subgroup}"
   - many sections: "{group}/{subgroup}/{section-slug}" each, named
                    "{page title} - {heading}", all sharing path "{group}/{subgroup}"
4. For each detail page without parts yet: fetch, parse, insert parts
After all pages: merge replacement rows into the parts they supersede.

One harvester owns one AdaptiveFetcher; requests are issued strictly one
after another. A failed page or detail page is logged and counted, and the
crawl moves on to the next one.

Usage:
    with AdaptiveFetcher.for_url(base_url) as fetcher:
        harvester = CatalogHarvester(session, fetcher, CatalogUrls(base_url, frame_no),
                                     images_dir="images")
        stats = harvester.harvest()
        harvester.download_images()
"""
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from config import Config
from db.catalog_queries import (
    count_parts_for_detail_page,
    delete_page_data,
    get_diagrams_without_images,
    get_image_path_for_url,
    insert_diagram,
    insert_parts,
    insert_subgroup,
    update_diagram_image_path,
)
from db.crawl_ledger import CrawlLedger
from models.catalog import Diagram, Part, Subgroup
from services.consolidation import merge_replacement_parts
from utils.identifiers import safe_file_id
from utils.names import clean_subgroup_name

from .fetcher import AdaptiveFetcher
from .parser import ParsedSection, extract_page_title, parse_parts_page, parse_sections
from .urls import CatalogUrls, ListingPage, is_subgroup_listing, parse_listing_url

logger = logging.getLogger(__name__)

IMAGE_EXTENSION_PATTERN = re.compile(r"\.([a-z]+)(?:\?|$)", re.IGNORECASE)
DEFAULT_IMAGE_EXTENSION = "png"

# detail page id -> (diagram id, subgroup id)
DetailTargets = Dict[str, Tuple[str, str]]


@dataclass
class HarvestStats:
    """Counters for one harvest run."""
    pages_processed: int = 0
    pages_failed: int = 0
    pages_without_sections: int = 0
    subgroups_written: int = 0
    diagrams_written: int = 0
    detail_pages_fetched: int = 0
    detail_pages_skipped: int = 0
    detail_pages_failed: int = 0
    parts_inserted: int = 0
    replacements_merged: int = 0
    replacements_unmerged: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class ImageDownloadStats:
    downloaded: int = 0
    failed: int = 0
    reused: int = 0


def image_extension(image_url: str) -> str:
    """File extension taken from the image URL, "png" if it has none."""
    match = IMAGE_EXTENSION_PATTERN.search(image_url)
    return match.group(1).lower() if match else DEFAULT_IMAGE_EXTENSION


class CatalogHarvester:
    """Drives listing and detail page fetches into the catalog store."""

    def __init__(
        self,
        session,
        fetcher: AdaptiveFetcher,
        urls: CatalogUrls,
        images_dir: str,
        path_prefix: str = Config.IMAGE_PATH_PREFIX,
    ):
        """
        Args:
            session: SQLAlchemy session for the catalog store
            fetcher: Fetcher owned by this harvester for the whole run
            urls: URL builder for the harvested vehicle
            images_dir: Directory diagram images are written to
            path_prefix: Prefix of stored image_path values
        """
        self.session = session
        self.fetcher = fetcher
        self.urls = urls
        self.images_dir = images_dir
        self.path_prefix = path_prefix
        self.ledger = CrawlLedger(session)
        self.stats = HarvestStats()

    # =========================================================================
    # Listing pages
    # =========================================================================

    def listing_urls(self) -> List[str]:
        """
        Subgroup listing URLs to (re)visit: completed and pending ledger URLs
        below the catalog root, filtered to listing depth.
        """
        like = self.urls.like_pattern()
        candidates = self.ledger.completed_urls(like) + self.ledger.pending_urls(like)
        return [url for url in dict.fromkeys(candidates) if is_subgroup_listing(url)]

    def harvest(self, seed_urls: Optional[List[str]] = None) -> HarvestStats:
        """
        Harvest every listing page, then merge replacement rows.

        Args:
            seed_urls: Listing URLs to add to the ledger before the run
        """
        for url in seed_urls or []:
            self.ledger.mark_pending(url)

        urls = self.listing_urls()
        logger.info(f"Harvesting {len(urls)} subgroup listing pages")

        for url in urls:
            try:
                self.harvest_page(url)
            except Exception as e:
                self.session.rollback()
                self.stats.errors.append(f"{url}: {e}")
                logger.error(f"Error processing {self.urls.shorten(url)}: {e}")

        report = merge_replacement_parts(self.session)
        self.stats.replacements_merged = report.merged
        self.stats.replacements_unmerged = report.unmerged

        logger.info(
            f"Harvest complete: {self.stats.pages_processed} pages, "
            f"{self.stats.parts_inserted} parts inserted, "
            f"{self.stats.pages_failed} pages failed, "
            f"{self.stats.detail_pages_failed} detail pages failed"
        )
        return self.stats

    def harvest_page(self, url: str) -> bool:
        """
        Fetch one listing page and everything below it.

        Returns:
            True if the page was fetched and had at least one section.
        """
        page = parse_listing_url(url)
        if page is None:
            logger.warning(f"Not a subgroup listing URL, skipping: {url}")
            return False

        self.ledger.mark_pending(url)
        result = self.fetcher.fetch(url)
        if not result.ok:
            error = result.error or f"HTTP {result.status}"
            self.ledger.mark_failed(url, error)
            self.stats.pages_failed += 1
            self.stats.errors.append(f"{url}: {error}")
            logger.warning(f"  Skipping {self.urls.shorten(url)}: {error}")
            return False
        self.ledger.mark_completed(url)

        sections = parse_sections(result.html, url)
        if not sections:
            self.stats.pages_without_sections += 1
            logger.info(f"  No sections on {self.urls.shorten(url)}")
            return False

        logger.info(f"Processing: {page.base_path} ({len(sections)} section(s))")
        title = clean_subgroup_name(extract_page_title(result.html) or page.fallback_title)
        targets = self._write_page(page, title, sections)
        self.session.commit()
        self.stats.pages_processed += 1

        for detail_id, target in targets.items():
            try:
                self._harvest_detail(page, detail_id, target)
            except Exception as e:
                self.session.rollback()
                self.stats.detail_pages_failed += 1
                self.stats.errors.append(f"{page.base_path}/{detail_id}: {e}")
                logger.error(f"    Error processing detail {detail_id}: {e}")
        return True

    def _write_page(self, page: ListingPage, title: str, sections: List[ParsedSection]) -> DetailTargets:
        targets: DetailTargets = {}

        for section in sections:
            if len(sections) == 1:
                subgroup_id = page.base_path
                subgroup_name = diagram_name = title
            else:
                subgroup_id = f"{page.base_path}/{section.slug}"
                diagram_name = clean_subgroup_name(section.heading)
                subgroup_name = f"{title} - {diagram_name}"

            insert_subgroup(self.session, Subgroup(
                id=subgroup_id,
                name=subgroup_name,
                group_id=page.group_slug,
                path=page.base_path,
            ))
            insert_diagram(self.session, Diagram(
                id=subgroup_id,
                group_id=page.group_slug,
                subgroup_id=subgroup_id,
                name=diagram_name,
                image_url=section.image_url,
                source_url=page.url,
            ))
            self.stats.subgroups_written += 1
            self.stats.diagrams_written += 1

            for detail_id in section.detail_page_ids:
                targets[detail_id] = (subgroup_id, subgroup_id)
        return targets

    # =========================================================================
    # Detail pages
    # =========================================================================

    def _harvest_detail(self, page: ListingPage, detail_id: str, target: Tuple[str, str]) -> None:
        if count_parts_for_detail_page(self.session, detail_id) > 0:
            self.stats.detail_pages_skipped += 1
            return

        diagram_id, subgroup_id = target
        url = self.urls.detail_url(page.base_path, detail_id)
        result = self.fetcher.fetch(url)
        if not result.ok:
            self.stats.detail_pages_failed += 1
            self.stats.errors.append(f"{url}: {result.error}")
            logger.warning(f"    Skipping detail {detail_id}: {result.error}")
            return
        self.stats.detail_pages_fetched += 1

        parsed = parse_parts_page(result.html)
        if not parsed:
            logger.debug(f"    Detail {detail_id}: no parts")
            return

        records = [
            Part(
                detail_page_id=detail_id,
                part_number=p.part_number,
                pnc=p.pnc,
                description=p.description,
                ref_number=p.ref_number,
                quantity=p.quantity,
                spec=p.spec,
                notes=p.notes,
                color=p.color,
                model_date_range=p.model_date_range,
                diagram_id=diagram_id,
                group_id=page.group_slug,
                subgroup_id=subgroup_id,
            )
            for p in parsed
        ]
        inserted = insert_parts(self.session, records)
        self.session.commit()
        self.stats.parts_inserted += inserted
        logger.info(f"    Detail {detail_id}: {inserted}/{len(records)} parts")

    # =========================================================================
    # Page rebuild
    # =========================================================================

    def rebuild_page(self, base_path: str) -> bool:
        """
        Delete all data harvested from one listing page and harvest it again.

        Used when a page is found to hold several sections but was stored as
        a single subgroup. The delete runs as one transaction before the
        page is re-fetched.
        """
        counts = delete_page_data(self.session, base_path)
        self.session.commit()
        logger.info(
            f"Deleted {base_path}: {counts['subgroups']} subgroups, "
            f"{counts['diagrams']} diagrams, {counts['parts']} parts"
        )
        return self.harvest_page(self.urls.listing_url(base_path))

    # =========================================================================
    # Images
    # =========================================================================

    def download_images(self) -> ImageDownloadStats:
        """
        Download images for diagrams that have an image_url but no image_path.

        image_path is recorded only after the file has been written. A
        diagram whose image_url was already downloaded for another diagram
        is pointed at that file instead of fetching a second copy, so
        diagram consolidation can later fold the two together.
        """
        stats = ImageDownloadStats()
        diagrams = get_diagrams_without_images(self.session)
        if not diagrams:
            logger.info("No new images to download")
            return stats

        os.makedirs(self.images_dir, exist_ok=True)
        logger.info(f"Downloading {len(diagrams)} images...")

        for diagram in diagrams:
            # Sections sharing one image URL share one file
            existing = get_image_path_for_url(self.session, diagram.image_url)
            if existing:
                update_diagram_image_path(self.session, diagram.id, existing)
                self.session.commit()
                stats.reused += 1
                continue

            filename = f"{safe_file_id(diagram.id)}.{image_extension(diagram.image_url)}"
            result = self.fetcher.fetch_image(diagram.image_url)
            if not result.ok or not result.data:
                stats.failed += 1
                logger.warning(f"  Image failed for {diagram.id}: {result.error}")
                continue

            try:
                with open(os.path.join(self.images_dir, filename), "wb") as f:
                    f.write(result.data)
            except OSError as e:
                stats.failed += 1
                logger.error(f"  Could not write {filename}: {e}")
                continue

            update_diagram_image_path(self.session, diagram.id, f"{self.path_prefix}/{filename}")
            self.session.commit()
            stats.downloaded += 1

        logger.info(f"Downloaded: {stats.downloaded}, Reused: {stats.reused}, Failed: {stats.failed}")
        return stats
