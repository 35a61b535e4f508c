"""
Crawl Progress Ledger - persisted URL state machine.

    (absent) -> pending -> completed
                        -> failed -> pending (reset_failed)

The ledger records whether a URL was *fetched*, not whether its content was
fully ingested. Re-scrape passes therefore also check the store for existing
data instead of trusting 'completed' alone.

Every method commits, so progress survives an interrupted crawl.
"""
import logging
from typing import Dict, List, Optional

from constants import PROGRESS_STATUSES, REFETCH_STATUSES, STATUS_COMPLETED, STATUS_FAILED, STATUS_PENDING

from .sql import execute_sql, run_sql, run_sql_one

logger = logging.getLogger(__name__)


class CrawlLedger:
    """URL -> status ledger backed by the scrape_progress table."""

    def __init__(self, session):
        self.session = session

    def mark_pending(self, url: str) -> bool:
        """Record ``url`` as pending unless it is already known. Returns True if new."""
        created = execute_sql(
            self.session,
            "INSERT OR IGNORE INTO scrape_progress (url, status) VALUES (:url, :status)",
            url=url, status=STATUS_PENDING,
        ) > 0
        self.session.commit()
        return created

    def mark_completed(self, url: str) -> None:
        execute_sql(
            self.session,
            """
            UPDATE scrape_progress
            SET status = :status, scraped_at = datetime('now'), error = NULL
            WHERE url = :url
            """,
            status=STATUS_COMPLETED, url=url,
        )
        self.session.commit()

    def mark_failed(self, url: str, error: str) -> None:
        execute_sql(
            self.session,
            """
            UPDATE scrape_progress
            SET status = :status, scraped_at = datetime('now'), error = :error
            WHERE url = :url
            """,
            status=STATUS_FAILED, error=error, url=url,
        )
        self.session.commit()

    def reset_failed(self) -> int:
        """Move every failed URL back to pending. Returns the number reset."""
        count = execute_sql(
            self.session,
            "UPDATE scrape_progress SET status = :pending, error = NULL WHERE status = :failed",
            pending=STATUS_PENDING, failed=STATUS_FAILED,
        )
        self.session.commit()
        if count:
            logger.info(f"Reset {count} failed URLs to pending")
        return count

    def _urls_with_status(self, status: str, like: Optional[str] = None) -> List[str]:
        if like is None:
            rows = run_sql(
                self.session,
                "SELECT url FROM scrape_progress WHERE status = :status ORDER BY url",
                status=status,
            )
        else:
            rows = run_sql(
                self.session,
                """
                SELECT url FROM scrape_progress
                WHERE status = :status AND url LIKE :like
                ORDER BY url
                """,
                status=status, like=like,
            )
        return [row[0] for row in rows]

    def pending_urls(self, like: Optional[str] = None) -> List[str]:
        return self._urls_with_status(STATUS_PENDING, like)

    def failed_urls(self, like: Optional[str] = None) -> List[str]:
        return self._urls_with_status(STATUS_FAILED, like)

    def completed_urls(self, like: Optional[str] = None) -> List[str]:
        return self._urls_with_status(STATUS_COMPLETED, like)

    def get_status(self, url: str) -> Optional[Dict[str, Optional[str]]]:
        """Ledger entry for ``url`` (status, scraped_at, error), or None if unknown."""
        row = run_sql_one(
            self.session,
            "SELECT status, scraped_at, error FROM scrape_progress WHERE url = :url",
            url=url,
        )
        if row is None:
            return None
        return {"status": row[0], "scraped_at": row[1], "error": row[2]}

    def counts(self) -> Dict[str, int]:
        counts = {status: 0 for status in PROGRESS_STATUSES}
        for status, count in run_sql(
            self.session, "SELECT status, COUNT(*) FROM scrape_progress GROUP BY status"
        ):
            counts[status] = count
        return counts

    def needs_fetch(self, url: str) -> bool:
        """True if ``url`` is absent from the ledger or pending/failed."""
        entry = self.get_status(url)
        return entry is None or entry["status"] in REFETCH_STATUSES
