"""
Catalog URL scheme.

    {origin}/{model}/{frame}/{trim}/{group}/{subgroup}/             listing page
    {origin}/{model}/{frame}/{trim}/{group}/{subgroup}/{detail}/?frame_no=...

The "base path" of a listing page is "{group}/{subgroup}"; every subgroup
created from that page carries it in subgroups.path.
"""
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlsplit

from constants import GROUP_SEGMENT, SUBGROUP_LISTING_DEPTH, SUBGROUP_SEGMENT


def path_segments(url: str) -> List[str]:
    return [segment for segment in urlsplit(url).path.split("/") if segment]


def is_subgroup_listing(url: str) -> bool:
    """True if ``url`` is a subgroup listing page (exactly five path segments)."""
    return len(path_segments(url)) == SUBGROUP_LISTING_DEPTH


@dataclass(frozen=True)
class ListingPage:
    """Identifiers derived from a subgroup listing URL."""
    url: str
    group_slug: str
    subgroup_slug: str

    @property
    def base_path(self) -> str:
        return f"{self.group_slug}/{self.subgroup_slug}"

    @property
    def fallback_title(self) -> str:
        return self.subgroup_slug.replace("-", " ")


def parse_listing_url(url: str) -> Optional[ListingPage]:
    """Decompose a subgroup listing URL, or None if it has a different shape."""
    segments = path_segments(url)
    if len(segments) != SUBGROUP_LISTING_DEPTH:
        return None
    return ListingPage(
        url=url,
        group_slug=segments[GROUP_SEGMENT],
        subgroup_slug=segments[SUBGROUP_SEGMENT],
    )


@dataclass(frozen=True)
class CatalogUrls:
    """URL builder bound to one vehicle's catalog root."""
    base_url: str
    frame_number: str = ""

    def __post_init__(self):
        if not self.base_url.endswith("/"):
            object.__setattr__(self, "base_url", self.base_url + "/")

    def listing_url(self, base_path: str) -> str:
        return f"{self.base_url}{base_path.strip('/')}/"

    def detail_url(self, base_path: str, detail_id: str) -> str:
        url = f"{self.base_url}{base_path.strip('/')}/{detail_id}/"
        if self.frame_number:
            url += f"?frame_no={self.frame_number}"
        return url

    def shorten(self, url: str) -> str:
        """Strip the catalog root for compact log lines."""
        if url.startswith(self.base_url):
            return "/" + url[len(self.base_url):]
        return url

    def like_pattern(self) -> str:
        """SQL LIKE pattern matching every URL below the catalog root."""
        return f"%{urlsplit(self.base_url).path}%"
