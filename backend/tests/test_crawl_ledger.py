"""
Tests for the crawl progress ledger (scrape_progress state machine).
"""

import pytest

from db.crawl_ledger import CrawlLedger

URL_A = "https://mitsubishi.epc-data.com/delica_space_gear/pd6w/hseue9/engine/engine-assy/"
URL_B = "https://mitsubishi.epc-data.com/delica_space_gear/pd6w/hseue9/engine/oil-pump/"


@pytest.fixture
def ledger(session):
    return CrawlLedger(session)


class TestTransitions:

    def test_mark_pending_inserts_once(self, ledger):
        assert ledger.mark_pending(URL_A) is True
        assert ledger.mark_pending(URL_A) is False
        assert ledger.pending_urls() == [URL_A]

    def test_mark_pending_does_not_downgrade_completed(self, ledger):
        ledger.mark_pending(URL_A)
        ledger.mark_completed(URL_A)
        ledger.mark_pending(URL_A)
        assert ledger.get_status(URL_A)["status"] == "completed"

    def test_completed_excluded_from_pending(self, ledger):
        ledger.mark_pending(URL_A)
        ledger.mark_pending(URL_B)
        ledger.mark_completed(URL_A)

        assert ledger.pending_urls() == [URL_B]
        assert ledger.completed_urls() == [URL_A]

        entry = ledger.get_status(URL_A)
        assert entry["scraped_at"] is not None
        assert entry["error"] is None

    def test_failed_records_error(self, ledger):
        ledger.mark_pending(URL_A)
        ledger.mark_failed(URL_A, "HTTP 404: Not Found")

        entry = ledger.get_status(URL_A)
        assert entry["status"] == "failed"
        assert entry["error"] == "HTTP 404: Not Found"
        assert entry["scraped_at"] is not None
        assert ledger.failed_urls() == [URL_A]

    def test_reset_failed_returns_to_pending(self, ledger):
        ledger.mark_pending(URL_A)
        ledger.mark_pending(URL_B)
        ledger.mark_failed(URL_A, "timeout")
        ledger.mark_completed(URL_B)

        assert ledger.reset_failed() == 1

        assert ledger.pending_urls() == [URL_A]
        assert ledger.failed_urls() == []
        assert ledger.get_status(URL_A)["error"] is None
        assert ledger.get_status(URL_B)["status"] == "completed"

    def test_reset_failed_with_nothing_failed(self, ledger):
        assert ledger.reset_failed() == 0


class TestQueries:

    def test_unknown_url(self, ledger):
        assert ledger.get_status(URL_A) is None
        assert ledger.needs_fetch(URL_A) is True

    def test_needs_fetch(self, ledger):
        ledger.mark_pending(URL_A)
        assert ledger.needs_fetch(URL_A) is True
        ledger.mark_failed(URL_A, "x")
        assert ledger.needs_fetch(URL_A) is True
        ledger.mark_completed(URL_A)
        assert ledger.needs_fetch(URL_A) is False

    def test_like_filter(self, ledger):
        ledger.mark_pending(URL_A)
        ledger.mark_pending("https://other.example.com/a/")
        assert ledger.pending_urls(like="%/pd6w/hseue9/%") == [URL_A]

    def test_counts(self, ledger):
        ledger.mark_pending(URL_A)
        ledger.mark_pending(URL_B)
        ledger.mark_completed(URL_B)
        assert ledger.counts() == {"pending": 1, "completed": 1, "failed": 0}

    def test_state_survives_new_session(self, ledger, engine):
        from db.engine import get_session_factory

        ledger.mark_pending(URL_A)
        ledger.mark_failed(URL_A, "boom")

        other = get_session_factory(engine)()
        try:
            assert CrawlLedger(other).failed_urls() == [URL_A]
        finally:
            other.close()
