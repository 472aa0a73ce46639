"""
Numeric codec for PMBus register values.

Three encodings are handled:

- LINEAR (format family 0): 16-bit word with an 11-bit two's-complement
  mantissa in bits 10:0 and a 5-bit two's-complement exponent in bits 15:11.
  X = mantissa * 2**exponent.
- DIRECT (format family 3): X = (Y * 10**-R - b) / m, using coefficients the
  device reports through COEFFICIENTS (read direction to decode, write
  direction to encode).
- VOUT_MODE linear: the output-voltage commands share one 5-bit exponent
  held in the low bits of VOUT_MODE. X = Y * 2**exponent.

Powers are applied by repeated multiplication or division by 2 or 10, so
results do not depend on the platform's pow().
"""

import math

from .errors import CodecError
from .types import CommandType, Coefficients, NumericFormat, Units

_VOUT_MODE_LINEAR_MASK = 0xE0
_LINEAR_MAX = 1024 * 2**15


def _to_signed(value: int, bits: int) -> int:
    sign = 1 << (bits - 1)
    value &= (1 << bits) - 1
    return value - (1 << bits) if value & sign else value


def _scale(value: float, base: float, exponent: int) -> float:
    """value * base**exponent, one multiply or divide per unit of exponent."""
    result = float(value)
    if exponent > 0:
        for _ in range(exponent):
            result *= base
    else:
        for _ in range(-exponent):
            result /= base
    return result


def _check_raw16(raw: int, what: str) -> int:
    if not -32768 <= raw <= 32767:
        raise CodecError(f"{what} value out of 16-bit range: {raw}")
    return raw


def _check_finite(value: float, what: str) -> None:
    if not math.isfinite(value):
        raise CodecError(f"{what} cannot encode non-finite value {value!r}")


def _round16(y: float, what: str) -> int:
    _check_finite(y, what)
    return _check_raw16(round(y), what)


# ---------------------------------------------------------------------------
# LINEAR
# ---------------------------------------------------------------------------


def decode_linear11(word: int) -> float:
    """
    Decode a LINEAR word.

    >>> decode_linear11(0x0190)
    400.0
    >>> decode_linear11(0xE367)
    54.4375
    """
    word &= 0xFFFF
    mantissa = _to_signed(word & 0x7FF, 11)
    exponent = _to_signed(word >> 11, 5)
    return _scale(mantissa, 2.0, exponent)


def encode_linear11(value: float, exponent: int | None = None) -> int:
    """
    Encode `value` as a LINEAR word.

    With `exponent` given the mantissa is rounded at that exponent; otherwise
    the smallest exponent whose mantissa fits 11 signed bits is used.
    """
    _check_finite(value, "LINEAR")
    if abs(value) > _LINEAR_MAX:
        raise CodecError(f"{value!r} is too large for LINEAR")
    if exponent is None:
        if value == 0:
            return 0
        exponent = -16
        while exponent < 15 and not -1024 <= round(_scale(value, 2.0, -exponent)) <= 1023:
            exponent += 1
    if not -16 <= exponent <= 15:
        raise CodecError(f"LINEAR exponent out of range -16..15: {exponent}")
    mantissa = round(_scale(value, 2.0, -exponent))
    if not -1024 <= mantissa <= 1023:
        raise CodecError(f"{value!r} does not fit LINEAR with exponent {exponent}")
    return ((exponent & 0x1F) << 11) | (mantissa & 0x7FF)


# ---------------------------------------------------------------------------
# DIRECT
# ---------------------------------------------------------------------------


def decode_direct(word: int, coefficients: Coefficients) -> float:
    """Decode a DIRECT word with the read-direction coefficients."""
    if not coefficients.valid:
        raise CodecError("DIRECT decode needs valid read coefficients")
    if coefficients.slope == 0:
        raise CodecError("DIRECT coefficients have zero slope")
    y = _scale(_to_signed(word, 16), 10.0, -coefficients.scale_exponent)
    return (y - coefficients.intercept) / coefficients.slope


def encode_direct(value: float, coefficients: Coefficients) -> int:
    """Encode a physical value with the write-direction coefficients; returns signed 16-bit."""
    if not coefficients.valid:
        raise CodecError("DIRECT encode needs valid write coefficients")
    _check_finite(value, "DIRECT")
    y = _scale(value * coefficients.slope + coefficients.intercept, 10.0, coefficients.scale_exponent)
    return _round16(y, "DIRECT")


# ---------------------------------------------------------------------------
# VOUT_MODE
# ---------------------------------------------------------------------------


def vout_mode_is_linear(mode: int) -> bool:
    """True when VOUT_MODE bits 7:5 select the linear mode."""
    return (mode & _VOUT_MODE_LINEAR_MASK) == 0


def vout_exponent(mode: int) -> int:
    """Signed exponent from VOUT_MODE bits 4:0 (bit 4 is the sign)."""
    return _to_signed(mode & 0x1F, 5)


def decode_vout(word: int, mode: int) -> float:
    """
    Decode an output-voltage word using the VOUT_MODE exponent.

    >>> decode_vout(0x2000, 0x11)
    0.25
    """
    return _scale(_to_signed(word, 16), 2.0, vout_exponent(mode))


def encode_vout(value: float, mode: int) -> int:
    _check_finite(value, "VOUT")
    return _round16(_scale(value, 2.0, -vout_exponent(mode)), "VOUT")


# ---------------------------------------------------------------------------
# Dispatch by format family
# ---------------------------------------------------------------------------


def decode_by_format(word: int, family: int, units: Units, coefficients: Coefficients) -> float | int | None:
    """
    Decode a word by QUERY format family.

    Bitmask words stay integers; VID, manufacturer-specific and unknown
    families return None.
    """
    if family == NumericFormat.LINEAR:
        if units == Units.BITS:
            return word
        return decode_linear11(word)
    if family == NumericFormat.UNSIGNED16:
        return word & 0xFFFF
    if family == NumericFormat.DIRECT:
        return decode_direct(word, coefficients)
    if family == NumericFormat.UNSIGNED8:
        return word & 0xFF
    return None


def format_label(command_type: CommandType, family: int, units: Units, vout_linear: bool = False) -> str:
    """Short name of the wire format a command uses on this device."""
    if command_type == CommandType.W0:
        return "nodata"
    if command_type.is_byte:
        return "u8 (bitmask)"
    if command_type.is_word:
        if vout_linear:
            return "x16 (VOUT_MODE)"
        if family == NumericFormat.LINEAR:
            return "u16 (bitmask)" if units == Units.BITS else "s16 (LINEAR)"
        return {
            NumericFormat.UNSIGNED16: "u16",
            NumericFormat.DIRECT: "s16 (DIRECT)",
            NumericFormat.UNSIGNED8: "u8",
            NumericFormat.VID: "u16 (VID)",
            NumericFormat.MANUFACTURER: "x16 (MFR)",
        }.get(family, "x16 (UNKNOWN)")
    if command_type in (CommandType.RWB, CommandType.RWB14):
        return "block"
    if command_type.is_process_call:
        return "process_call"
    if command_type == CommandType.APP_PROFILE:
        return "(Application Profile)"
    return "(UNKNOWN call syntax)"
