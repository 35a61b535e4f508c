"""
Catalog page parser.

Listing pages hold one or more ``td.detail-list`` cells, each with a heading,
an optional diagram image and links to detail pages. A link's final path
segment may carry several comma-separated detail ids ("12,13/").

Detail pages hold a parts table; columns are located by fuzzy header
matching because the column order differs between catalog sections.
"""
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup

from utils.normalize import ValidationError, to_int, to_str

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"[^a-z0-9]+")
DETAIL_ID_PATTERN = re.compile(r"^[\w-]+$")


@dataclass
class ParsedSection:
    """One diagram section of a listing page."""
    heading: str
    slug: str
    image_url: Optional[str]
    detail_page_ids: List[str] = field(default_factory=list)


@dataclass
class ParsedPart:
    """One part row of a detail page (no identifiers attached yet)."""
    part_number: str
    pnc: Optional[str] = None
    description: Optional[str] = None
    ref_number: Optional[str] = None
    quantity: Optional[int] = None
    spec: Optional[str] = None
    notes: Optional[str] = None
    color: Optional[str] = None
    model_date_range: Optional[str] = None


def slugify(text: str) -> str:
    return SLUG_PATTERN.sub("-", text.lower()).strip("-")


def _letter_suffix(n: int) -> str:
    """1 -> 'a', 2 -> 'b', ..., 27 -> 'aa'."""
    letters = ""
    while n > 0:
        n, remainder = divmod(n - 1, 26)
        letters = chr(ord('a') + remainder) + letters
    return letters


# =============================================================================
# Listing pages
# =============================================================================

def extract_page_title(html: str) -> Optional[str]:
    """Page heading (h1), falling back to the first part of <title>."""
    soup = BeautifulSoup(html, 'html.parser')
    heading = soup.find('h1')
    if heading:
        text = to_str(heading.get_text(" ", strip=True))
        if text:
            return text
    if soup.title and soup.title.string:
        return to_str(soup.title.string.split("|")[0])
    return None


def _section_heading(cell) -> Optional[str]:
    for tag in cell.find_all(['h2', 'h3', 'h4', 'strong', 'b']):
        text = to_str(tag.get_text(" ", strip=True))
        if text:
            return text
    image = cell.find('img')
    if image is not None:
        return to_str(image.get('alt'))
    return None


def _detail_ids_from_href(href: str) -> List[str]:
    segments = [s for s in urlsplit(href).path.split("/") if s]
    if not segments:
        return []
    return [i.strip() for i in segments[-1].split(",") if DETAIL_ID_PATTERN.match(i.strip())]


def parse_sections(html: str, url: str) -> List[ParsedSection]:
    """
    Extract diagram sections from a subgroup listing page.

    Args:
        html: Page content
        url: Page URL (image and link URLs are resolved against it)

    Returns:
        Sections in page order; empty list if the page has none.
    """
    soup = BeautifulSoup(html, 'html.parser')
    sections: List[ParsedSection] = []
    used_slugs: Dict[str, int] = {}

    for index, cell in enumerate(soup.select('td.detail-list'), start=1):
        heading = _section_heading(cell)
        slug = slugify(heading) if heading else ""
        if not slug:
            heading = heading or f"Section {index}"
            slug = f"section-{_letter_suffix(index)}"

        # Letter suffixes: a numeric tail would be stripped by id normalization
        if slug in used_slugs:
            used_slugs[slug] += 1
            slug = f"{slug}-{_letter_suffix(used_slugs[slug])}"
        else:
            used_slugs[slug] = 1

        image = cell.find('img', src=True)
        image_url = urljoin(url, image['src']) if image is not None else None

        detail_ids: List[str] = []
        for link in cell.find_all('a', href=True):
            for detail_id in _detail_ids_from_href(link['href']):
                if detail_id not in detail_ids:
                    detail_ids.append(detail_id)

        sections.append(ParsedSection(
            heading=heading,
            slug=slug,
            image_url=image_url,
            detail_page_ids=detail_ids,
        ))

    return sections


# =============================================================================
# Detail pages
# =============================================================================

# Header keywords per field, checked in order; first match wins.
COLUMN_KEYWORDS = {
    'part_number': ['part number', 'part no', 'part #', 'parts number'],
    'pnc': ['pnc'],
    'description': ['description', 'part name', 'name'],
    'ref_number': ['ref', 'ref no', 'reference'],
    'quantity': ['qty', 'quantity', 'q-ty'],
    'spec': ['spec', 'specification'],
    'notes': ['note', 'remark', 'comment'],
    'color': ['color', 'colour'],
    'model_date_range': ['date', 'period', 'production'],
}


def map_table_columns(headers: List[str]) -> Dict[str, int]:
    """Map part fields to column indices using fuzzy header matching."""
    col_map: Dict[str, int] = {}
    for field_name, keywords in COLUMN_KEYWORDS.items():
        for index, header in enumerate(headers):
            if index in col_map.values():
                continue
            if any(keyword in header for keyword in keywords):
                col_map[field_name] = index
                break
    return col_map


def _cell_text(cells, col_map: Dict[str, int], field_name: str) -> Optional[str]:
    index = col_map.get(field_name)
    if index is None or index >= len(cells):
        return None
    return to_str(cells[index].get_text(" ", strip=True))


def parse_parts_page(html: str) -> List[ParsedPart]:
    """
    Extract part rows from a detail page.

    Rows without a part number are skipped. Rows with a part number but no
    pnc/description/ref are kept: they are replacement annotations that the
    consolidation engine later folds into the preceding part.
    """
    soup = BeautifulSoup(html, 'html.parser')

    for table in soup.find_all('table'):
        rows = table.find_all('tr')
        if len(rows) < 2:
            continue

        headers = [c.get_text(" ", strip=True).lower() for c in rows[0].find_all(['th', 'td'])]
        col_map = map_table_columns(headers)
        if 'part_number' not in col_map:
            continue

        parts: List[ParsedPart] = []
        for row in rows[1:]:
            cells = row.find_all(['th', 'td'])
            part_number = _cell_text(cells, col_map, 'part_number')
            if not part_number:
                continue

            quantity_text = _cell_text(cells, col_map, 'quantity')
            try:
                quantity = to_int(quantity_text, field='quantity')
            except ValidationError:
                logger.debug(f"Non-numeric quantity {quantity_text!r} for {part_number}")
                quantity = None

            parts.append(ParsedPart(
                part_number=part_number,
                pnc=_cell_text(cells, col_map, 'pnc'),
                description=_cell_text(cells, col_map, 'description'),
                ref_number=_cell_text(cells, col_map, 'ref_number'),
                quantity=quantity,
                spec=_cell_text(cells, col_map, 'spec'),
                notes=_cell_text(cells, col_map, 'notes'),
                color=_cell_text(cells, col_map, 'color'),
                model_date_range=_cell_text(cells, col_map, 'model_date_range'),
            ))
        return parts

    return []
