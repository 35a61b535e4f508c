"""
Unit tests for utils/normalize.py

Tests the input normalization functions used for env vars, YAML values and
scraped table cells:
- Correct type conversion
- Proper None/empty string handling
- Clear ValidationError messages
"""

import pytest

from utils.normalize import (
    ValidationError,
    to_int,
    to_float,
    to_str,
)


class TestToInt:
    """Tests for to_int()"""

    def test_valid_int_string(self):
        assert to_int("123") == 123
        assert to_int("-456") == -456
        assert to_int("0") == 0

    def test_none_returns_none(self):
        assert to_int(None) is None

    def test_empty_string_returns_none(self):
        assert to_int("") is None

    def test_none_with_default(self):
        assert to_int(None, default=100) == 100

    def test_invalid_string_raises(self):
        with pytest.raises(ValidationError) as exc:
            to_int("abc")
        assert "Expected int" in str(exc.value)
        assert "abc" in str(exc.value)

    def test_float_string_raises(self):
        with pytest.raises(ValidationError):
            to_int("3.14")

    def test_field_in_error(self):
        with pytest.raises(ValidationError) as exc:
            to_int("x", field="retries")
        assert exc.value.field == "retries"
        assert exc.value.received_value == "x"


class TestToFloat:
    """Tests for to_float()"""

    def test_valid_float_string(self):
        assert to_float("1.5") == 1.5
        assert to_float("2") == 2.0

    def test_yaml_numbers_pass_through(self):
        assert to_float(0.85) == 0.85
        assert to_float(60) == 60.0

    def test_with_default(self):
        assert to_float(None, default=30.0) == 30.0

    def test_invalid_string_raises(self):
        with pytest.raises(ValidationError) as exc:
            to_float("fast")
        assert "Expected float" in str(exc.value)


class TestToStr:
    """Tests for to_str()"""

    def test_strips_whitespace(self):
        assert to_str("  GASKET  ") == "GASKET"

    def test_whitespace_only_returns_default(self):
        assert to_str("   ") is None
        assert to_str("   ", default="n/a") == "n/a"

    def test_no_strip(self):
        assert to_str("  a ", strip=False) == "  a "
