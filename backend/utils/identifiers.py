"""
Catalog identifier helpers.

The source site appends numeric detail-page ids to otherwise semantic slugs
("engine-engine-assy-148", "a-t-brake-67980_67981"). These helpers strip the
suffix so that ids and image filenames converge on one canonical spelling.
"""
import re
from pathlib import PurePosixPath

# Repeated suffixes ("foo-1-2") are removed in one pass so re-running is a no-op.
NUMERIC_SUFFIX_PATTERN = re.compile(r"(?:-[\d_]+)+$")

SAFE_ID_PATTERN = re.compile(r"[^a-zA-Z0-9_-]")
SAFE_ID_MAX_LENGTH = 100


def strip_numeric_suffix(identifier: str) -> str:
    """
    Remove a trailing ``-digits`` / ``-digits_digits`` suffix.

    Examples:
        >>> strip_numeric_suffix("engine-engine-assy-148")
        'engine-engine-assy'
        >>> strip_numeric_suffix("automatic-transmission-a-t-brake-67980_67981")
        'automatic-transmission-a-t-brake'
        >>> strip_numeric_suffix("engine")
        'engine'
    """
    stripped = NUMERIC_SUFFIX_PATTERN.sub("", identifier)
    return stripped or identifier


def image_base_name(filename: str) -> str:
    """
    Derive the grouping key for an image file: extension and numeric suffix removed.

    Examples:
        >>> image_base_name("engine-rocker-cover-12159.png")
        'engine-rocker-cover'
    """
    return strip_numeric_suffix(PurePosixPath(filename).stem)


def safe_file_id(identifier: str) -> str:
    """Make an entity id usable as a filename (slashes and symbols become '_')."""
    return SAFE_ID_PATTERN.sub("_", identifier)[:SAFE_ID_MAX_LENGTH]
