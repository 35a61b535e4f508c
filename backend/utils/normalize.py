"""
Input Normalization Utilities
=============================

Single source of truth for parsing external inputs (environment variables,
CLI options, YAML values) into typed Python values.

Usage:
    from utils.normalize import to_int, to_float, ValidationError

    try:
        retries = to_int(os.environ.get("FETCH_RETRIES"), default=5, field="FETCH_RETRIES")
    except ValidationError as e:
        raise ConfigError(str(e))
"""

from typing import Optional


class ValidationError(ValueError):
    """Raised when input cannot be normalized to expected type."""

    def __init__(self, message: str, field: str = None, received_value=None):
        super().__init__(message)
        self.field = field
        self.received_value = received_value


def to_int(
    value: Optional[str],
    *,
    default: Optional[int] = None,
    field: str = None
) -> Optional[int]:
    """
    Convert string to int, with explicit None handling.

    Args:
        value: Input string (typically from os.environ.get())
        default: Value to return if input is None or empty
        field: Field name for error messages

    Returns:
        Parsed integer or default

    Raises:
        ValidationError: If value cannot be converted to int
    """
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (ValueError, TypeError):
        raise ValidationError(
            f"Expected int, got {type(value).__name__}: {value!r}",
            field=field,
            received_value=value
        )


def to_float(
    value: Optional[str],
    *,
    default: Optional[float] = None,
    field: str = None
) -> Optional[float]:
    """
    Convert string to float, with explicit None handling.

    Raises:
        ValidationError: If value cannot be converted to float
    """
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (ValueError, TypeError):
        raise ValidationError(
            f"Expected float, got {type(value).__name__}: {value!r}",
            field=field,
            received_value=value
        )


def to_str(
    value: Optional[str],
    *,
    default: Optional[str] = None,
    strip: bool = True,
) -> Optional[str]:
    """
    Normalize string input, optionally stripping whitespace.

    Whitespace-only input is treated as empty and returns the default.
    """
    if value is None or value == "":
        return default
    result = str(value)
    if strip:
        result = result.strip()
    if result == "":
        return default
    return result
