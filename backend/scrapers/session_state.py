"""
Session State - cookie table and referer chain for one crawl stream.

Cookies are keyed by name only (last write wins); the catalog site is a
single origin so domain/path scoping is recorded but not used for matching.
The referer of each request is the last successfully fetched page, which
only makes sense when requests are issued strictly one after another.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Dict, Iterable, Optional
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Cookie:
    name: str
    value: str
    domain: Optional[str] = None
    path: Optional[str] = None
    expires: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires is not None and self.expires < now


def _parse_expires(value: str) -> Optional[datetime]:
    """Parse an HTTP date; unparseable values mean "no expiry"."""
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SessionState:
    """Cookie jar + last-visited-URL tracker supplying per-request headers."""

    def __init__(self, now: Callable[[], datetime] = _utcnow):
        self._now = now
        self.cookies: Dict[str, Cookie] = {}
        self.last_url: Optional[str] = None

    def absorb(self, set_cookie_headers: Iterable[str]) -> None:
        """
        Store cookies from Set-Cookie header values.

        Cookies whose Expires (or Max-Age) is already in the past are evicted
        instead of stored, which is how servers delete cookies.
        """
        now = self._now()
        for header in set_cookie_headers:
            cookie = self._parse_set_cookie(header, now)
            if cookie is None:
                continue
            if cookie.is_expired(now):
                self.cookies.pop(cookie.name, None)
            else:
                self.cookies[cookie.name] = cookie

    def _parse_set_cookie(self, header: str, now: datetime) -> Optional[Cookie]:
        parts = [p.strip() for p in header.split(";")]
        name_value, attributes = parts[0], parts[1:]
        if "=" not in name_value:
            return None
        name, value = name_value.split("=", 1)
        name = name.strip()
        if not name:
            return None

        cookie = Cookie(name=name, value=value.strip())
        for attr in attributes:
            attr_name, _, attr_value = attr.partition("=")
            key = attr_name.strip().lower()
            if key == "domain":
                cookie.domain = attr_value
            elif key == "path":
                cookie.path = attr_value
            elif key == "expires":
                cookie.expires = _parse_expires(attr_value)
            elif key == "max-age":
                try:
                    cookie.expires = now + timedelta(seconds=int(attr_value))
                except ValueError:
                    logger.debug(f"Ignoring invalid Max-Age on cookie {name}: {attr_value!r}")
        return cookie

    def cookie_header(self) -> str:
        """Serialize live cookies as "a=1; b=2", evicting any that have expired."""
        now = self._now()
        for name in [n for n, c in self.cookies.items() if c.is_expired(now)]:
            del self.cookies[name]
        return "; ".join(f"{c.name}={c.value}" for c in self.cookies.values())

    def referer_for(self, url: str) -> str:
        """
        Referer to send with a request for ``url``.

        The last successfully fetched page if there is one, otherwise the
        origin of ``url`` itself ("https://host/").
        """
        if self.last_url:
            return self.last_url
        parsed = urlsplit(url)
        if not parsed.scheme or not parsed.netloc:
            return ""
        return f"{parsed.scheme}://{parsed.netloc}/"

    def record_visit(self, url: str) -> None:
        """Make ``url`` the referer anchor for the next request."""
        self.last_url = url

    @property
    def has_history(self) -> bool:
        return self.last_url is not None
