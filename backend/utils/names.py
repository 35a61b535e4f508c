"""
Display-name cleanup for subgroups and diagrams.

Catalog page titles carry layout noise: repeated whitespace, trailing frame
codes such as "(PD6W)", and headings that repeat the page title
("ENGINE ASSY - ENGINE ASSY"). The same normalizer is applied to subgroup
and diagram names, both at ingestion time and by the name cleanup pass.
"""
import re

WHITESPACE_PATTERN = re.compile(r"\s+")
# Parenthesised model/frame code containing at least one digit, e.g. "(PD6W)"
TRAILING_CODE_PATTERN = re.compile(r"\s*\((?=[A-Z0-9-]*\d)[A-Z0-9-]+\)$")
EDGE_PUNCTUATION = " -:;,."
SEPARATOR = " - "


def clean_subgroup_name(raw: str) -> str:
    """
    Normalize a free-text subgroup or diagram name.

    Idempotent: clean_subgroup_name(clean_subgroup_name(x)) == clean_subgroup_name(x).

    Examples:
        >>> clean_subgroup_name("  ENGINE   ASSY (PD6W) ")
        'ENGINE ASSY'
        >>> clean_subgroup_name("Rocker Cover - Rocker Cover")
        'Rocker Cover'
    """
    if not raw:
        return raw

    name = raw
    while True:
        cleaned = _clean_once(name)
        if cleaned == name:
            return cleaned
        name = cleaned


def _clean_once(name: str) -> str:
    name = WHITESPACE_PATTERN.sub(" ", name).strip()
    name = TRAILING_CODE_PATTERN.sub("", name)
    name = name.strip(EDGE_PUNCTUATION)

    if SEPARATOR in name:
        head, _, tail = name.partition(SEPARATOR)
        if head.strip().lower() == tail.strip().lower():
            name = head.strip()
    return name
