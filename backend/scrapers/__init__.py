"""
Catalog Scraping Package

Polite, resumable harvesting of the parts catalog:
- Adaptive request delay with quiet-period reset
- Cookie/referer session chaining
- Config-driven fetcher tuning (YAML)
- Listing/detail page parsing and the crawl loop
"""

from .fetch_config import ConfigError, FetcherConfig, load_fetcher_config
from .delay_controller import DelayController
from .session_state import SessionState
from .fetcher import AdaptiveFetcher, ConcurrentUseError, FetchResult, ImageResult
from .urls import CatalogUrls, is_subgroup_listing, parse_listing_url
from .harvester import CatalogHarvester, HarvestStats, ImageDownloadStats

__all__ = [
    "ConfigError",
    "FetcherConfig",
    "load_fetcher_config",
    "DelayController",
    "SessionState",
    "AdaptiveFetcher",
    "ConcurrentUseError",
    "FetchResult",
    "ImageResult",
    "CatalogUrls",
    "is_subgroup_listing",
    "parse_listing_url",
    "CatalogHarvester",
    "HarvestStats",
    "ImageDownloadStats",
]
