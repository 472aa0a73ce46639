"""Tests for the LINEAR, DIRECT and VOUT_MODE numeric codec."""

import pytest

from pmbus_peek.codec import (
    decode_by_format,
    decode_direct,
    decode_linear11,
    decode_vout,
    encode_direct,
    encode_linear11,
    encode_vout,
    format_label,
    vout_exponent,
    vout_mode_is_linear,
)
from pmbus_peek.errors import CodecError
from pmbus_peek.types import Coefficients, CommandType, NumericFormat, Units


class TestLinear11:
    """LINEAR: 11-bit signed mantissa, 5-bit signed exponent."""

    def test_positive_exponent_zero(self) -> None:
        assert decode_linear11(0x0190) == 400.0

    def test_negative_exponent(self) -> None:
        # exponent -4, mantissa 871
        assert decode_linear11(0xE367) == 54.4375

    def test_negative_mantissa(self) -> None:
        # exponent 0, mantissa -1
        assert decode_linear11(0x07FF) == -1.0

    def test_positive_exponent(self) -> None:
        # exponent 2, mantissa 3
        assert decode_linear11((2 << 11) | 3) == 12.0

    def test_extremes(self) -> None:
        # exponent 15 and -16
        assert decode_linear11((15 << 11) | 1) == 32768.0
        assert decode_linear11((0x10 << 11) | 1) == 2.0**-16

    def test_encode_with_fixed_exponent(self) -> None:
        assert encode_linear11(54.4375, exponent=-4) == 0xE367
        assert encode_linear11(400, exponent=0) == 0x0190

    def test_encode_picks_finest_exponent(self) -> None:
        word = encode_linear11(12.5)
        assert decode_linear11(word) == 12.5

    def test_encode_zero(self) -> None:
        assert encode_linear11(0) == 0

    def test_encode_out_of_range(self) -> None:
        with pytest.raises(CodecError):
            encode_linear11(1e12)
        with pytest.raises(CodecError):
            encode_linear11(5000, exponent=0)
        with pytest.raises(CodecError):
            encode_linear11(1.0, exponent=16)

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf"), 1e308])
    def test_encode_rejects_non_finite_or_huge(self, value: float) -> None:
        with pytest.raises(CodecError):
            encode_linear11(value)
        with pytest.raises(CodecError):
            encode_linear11(value, exponent=-16)

    def test_every_word_round_trips_at_its_own_exponent(self) -> None:
        for word in range(0x10000):
            exponent = ((word >> 11) ^ 0x10) - 0x10
            assert encode_linear11(decode_linear11(word), exponent=exponent) == word


class TestDirect:
    """DIRECT: X = (Y * 10**-R - b) / m."""

    def test_decode_slope_only(self) -> None:
        assert decode_direct(0x0006, Coefficients(slope=2, valid=True)) == 3.0

    def test_decode_intercept_and_exponent(self) -> None:
        c = Coefficients(slope=5, intercept=10, scale_exponent=-1, valid=True)
        # Y = 100 -> 100 * 10 = 1000; (1000 - 10) / 5 = 198
        assert decode_direct(100, c) == 198.0

    def test_decode_negative_raw(self) -> None:
        assert decode_direct(0xFFFE, Coefficients(slope=1, valid=True)) == -2.0

    def test_decode_requires_valid_coefficients(self) -> None:
        with pytest.raises(CodecError, match="valid read coefficients"):
            decode_direct(6, Coefficients())

    def test_decode_rejects_zero_slope(self) -> None:
        with pytest.raises(CodecError, match="zero slope"):
            decode_direct(6, Coefficients(slope=0, valid=True))

    def test_encode(self) -> None:
        assert encode_direct(3.0, Coefficients(slope=2, valid=True)) == 6
        c = Coefficients(slope=5, intercept=10, scale_exponent=-1, valid=True)
        assert encode_direct(198.0, c) == 100

    def test_encode_out_of_range(self) -> None:
        with pytest.raises(CodecError, match="16-bit range"):
            encode_direct(40000, Coefficients(slope=1, valid=True))

    def test_encode_requires_valid_coefficients(self) -> None:
        with pytest.raises(CodecError):
            encode_direct(1.0, Coefficients(slope=1))

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), 1e308])
    def test_encode_rejects_non_finite_or_huge(self, value: float) -> None:
        with pytest.raises(CodecError):
            encode_direct(value, Coefficients(slope=1000, scale_exponent=3, valid=True))

    @pytest.mark.parametrize(
        "slope, intercept, scale_exponent",
        [
            (3, -7, 2),
            (1, 0, 0),
            (-300, 1200, -2),
            (25, 5000, -3),
            (2, -100, 3),
            (-1, 1, 1),
        ],
    )
    def test_every_signed_value_round_trips(self, slope: int, intercept: int, scale_exponent: int) -> None:
        c = Coefficients(slope=slope, intercept=intercept, scale_exponent=scale_exponent, valid=True)
        for raw in range(-32768, 32768, 7):
            assert encode_direct(decode_direct(raw & 0xFFFF, c), c) == raw


class TestVoutMode:
    """VOUT_MODE linear scaling."""

    def test_mode_classification(self) -> None:
        assert vout_mode_is_linear(0x11)
        assert vout_mode_is_linear(0x00)
        assert not vout_mode_is_linear(0x20)  # VID
        assert not vout_mode_is_linear(0x40)  # DIRECT

    def test_exponent(self) -> None:
        assert vout_exponent(0x11) == -15
        assert vout_exponent(0x17) == -9
        assert vout_exponent(0x03) == 3

    def test_decode(self) -> None:
        assert decode_vout(0x2000, 0x11) == 0.25
        assert decode_vout(0x0600, 0x17) == 3.0

    def test_encode(self) -> None:
        assert encode_vout(0.25, 0x11) == 0x2000
        assert encode_vout(3.3, 0x17) == 1690

    def test_encode_out_of_range(self) -> None:
        with pytest.raises(CodecError):
            encode_vout(2.0, 0x11)

    @pytest.mark.parametrize("value", [float("nan"), float("-inf"), 1e308])
    def test_encode_rejects_non_finite_or_huge(self, value: float) -> None:
        with pytest.raises(CodecError):
            encode_vout(value, 0x0F)


class TestDecodeByFormat:
    def test_linear(self) -> None:
        assert decode_by_format(0x0190, NumericFormat.LINEAR, Units.AMPERES, Coefficients()) == 400.0

    def test_bitmask_stays_raw(self) -> None:
        assert decode_by_format(0x0190, NumericFormat.LINEAR, Units.BITS, Coefficients()) == 0x0190

    def test_unsigned(self) -> None:
        assert decode_by_format(0xFFFF, NumericFormat.UNSIGNED16, Units.NONE, Coefficients()) == 0xFFFF
        assert decode_by_format(0x1234, NumericFormat.UNSIGNED8, Units.NONE, Coefficients()) == 0x34

    def test_direct(self) -> None:
        c = Coefficients(slope=2, valid=True)
        assert decode_by_format(6, NumericFormat.DIRECT, Units.DEGREES_C, c) == 3.0

    def test_opaque_families(self) -> None:
        assert decode_by_format(0x1234, NumericFormat.VID, Units.VOLTS, Coefficients()) is None
        assert decode_by_format(0x1234, NumericFormat.MANUFACTURER, Units.NONE, Coefficients()) is None
        assert decode_by_format(0x1234, 7, Units.NONE, Coefficients()) is None


class TestFormatLabel:
    def test_labels(self) -> None:
        assert format_label(CommandType.W0, 0, Units.NONE) == "nodata"
        assert format_label(CommandType.RW1, 0, Units.NONE) == "u8 (bitmask)"
        assert format_label(CommandType.R2, NumericFormat.LINEAR, Units.VOLTS) == "s16 (LINEAR)"
        assert format_label(CommandType.R2, NumericFormat.LINEAR, Units.BITS) == "u16 (bitmask)"
        assert format_label(CommandType.R2, NumericFormat.DIRECT, Units.VOLTS) == "s16 (DIRECT)"
        assert format_label(CommandType.RW2, NumericFormat.VID, Units.VOLTS) == "u16 (VID)"
        assert format_label(CommandType.RW2, NumericFormat.MANUFACTURER, Units.NONE) == "x16 (MFR)"
        assert format_label(CommandType.RW2, 7, Units.NONE) == "x16 (UNKNOWN)"
        assert format_label(CommandType.RW2, 0, Units.VOLTS, vout_linear=True) == "x16 (VOUT_MODE)"
        assert format_label(CommandType.RWB, 0, Units.STRING) == "block"
        assert format_label(CommandType.QUERY_CALL, 0, Units.NONE) == "process_call"
        assert format_label(CommandType.APP_PROFILE, 0, Units.NONE) == "(Application Profile)"
        assert format_label(CommandType.OPAQUE, 0, Units.NONE) == "(UNKNOWN call syntax)"
