"""
Tests for the primitive OCL field readers and the station byte budget.
"""

import io
import math

import pytest

from ocl_format import (
    STANDARD_DEPTHS,
    FieldFormatError,
    FieldReader,
    TruncatedStreamError,
)


def reader_for(text):
    return FieldReader(io.StringIO(text))


class TestReadDigits:
    """Fixed-width digit fields."""

    def test_plain_digits(self):
        assert reader_for('1987').read_digits(4) == 1987

    def test_line_breaks_are_not_content(self):
        r = reader_for('1\n9\r\n87')
        assert r.read_digits(4) == 1987
        assert r.consumed == 4

    def test_no_value_marker(self):
        """A lone '-' is an empty field, not an error."""
        assert reader_for('-').read_digits(1) is None

    def test_zero_width(self):
        r = reader_for('5')
        assert r.read_digits(0) is None
        assert r.read_digits(1) == 5

    def test_leading_blank_and_sign(self):
        assert reader_for(' 7').read_digits(2) == 7
        assert reader_for('-305').read_digits(4) == -305

    def test_non_digit_terminal(self):
        with pytest.raises(FieldFormatError):
            reader_for('1x').read_digits(2)

    def test_dash_only_marks_single_digit_fields(self):
        with pytest.raises(FieldFormatError):
            reader_for('--').read_digits(2)

    def test_end_of_stream_mid_field(self):
        with pytest.raises(TruncatedStreamError):
            reader_for('12').read_digits(3)

    def test_binary_stream(self):
        assert FieldReader(io.BytesIO(b'42')).read_digits(2) == 42


class TestVarlenInt:
    """Self-length-prefixed integers and budget initialisation."""

    def test_first_field_sets_budget(self):
        r = reader_for('3120')
        assert r.bytes_left is None
        assert r.read_varlen_int() == 120
        assert r.bytes_left == 116

    def test_later_fields_decrement_budget(self):
        r = reader_for('3120' + '45678')
        r.read_varlen_int()
        assert r.read_varlen_int() == 5678
        assert r.bytes_left == 116 - 5

    def test_zero_length_returns_missing(self):
        r = reader_for('3120' + '0')
        r.read_varlen_int()
        assert r.read_varlen_int(missing=-1) == -1
        assert r.bytes_left == 115

    def test_dash_length(self):
        assert reader_for('-').read_varlen_int(missing=-1) == -1

    def test_fixed_fields_spend_budget(self):
        r = reader_for('3120' + '31')
        r.read_varlen_int()
        assert r.read_fixed(2) == 31
        assert r.bytes_left == 114


class TestVarlenFloat:
    """Self-describing floats with implied decimal point."""

    def test_implied_decimal(self):
        r = reader_for('3120' + '132123')
        r.read_varlen_int()
        assert r.read_varlen_float() == pytest.approx(1.23)
        assert r.bytes_left == 116 - 6

    def test_negative_value(self):
        assert reader_for('563-30500').read_varlen_float() == pytest.approx(-30.5)

    def test_zero_precision(self):
        assert reader_for('430250').read_varlen_float() == pytest.approx(250.0)

    def test_missing_consumes_one_byte(self):
        r = reader_for('-5')
        assert math.isnan(r.read_varlen_float())
        assert r.consumed == 1
        assert r.read_digits(1) == 5

    def test_missing_sentinel_is_configurable(self):
        assert reader_for('-').read_varlen_float(missing=None) is None


class TestSkipping:
    """Opaque skips and realignment on the next station."""

    def test_skip_to_next_station(self):
        r = reader_for('17' + 'ab\ncde   \n' + '9')
        assert r.read_varlen_int() == 7
        assert r.bytes_left == 5
        assert r.skip_to_next_station() == 5
        assert r.consumed == 7
        assert r.bytes_left == 0
        assert r.read_digits(1) == 9

    def test_unset_budget_only_realigns(self):
        r = reader_for('  \n5')
        assert r.skip_to_next_station() == 0
        assert r.read_digits(1) == 5

    def test_skip_stops_at_end_of_stream(self):
        r = reader_for('ab')
        assert r.skip(5) == 2

    def test_strict_skip_raises_at_end_of_stream(self):
        with pytest.raises(TruncatedStreamError):
            reader_for('ab').skip(5, strict=True)

    def test_begin_station_resets_budget(self):
        r = reader_for('3120')
        r.read_varlen_int()
        r.begin_station()
        assert r.bytes_left is None
        assert r.consumed == 0

    def test_at_end(self):
        assert reader_for('  \n\n').at_end()
        r = reader_for('\n 7')
        assert not r.at_end()
        assert r.read_digits(1) == 7


def test_standard_depth_table():
    assert len(STANDARD_DEPTHS) == 40
    assert STANDARD_DEPTHS[:5] == (0, 10, 20, 30, 50)
    assert STANDARD_DEPTHS[-1] == 9000
    assert list(STANDARD_DEPTHS) == sorted(STANDARD_DEPTHS)
