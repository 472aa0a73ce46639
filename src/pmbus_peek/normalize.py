"""Classify and validate PMBus opcodes and SMBus device addresses."""

import re

from .errors import InvalidCommandError
from .types import MFR_SPECIFIC_COUNT, CommandCode

# Hex (0x88, 0xfe12) or decimal (136)
_OPCODE_PATTERN = re.compile(r"^(0x[0-9a-f]{1,4}|\d{1,5})$", re.IGNORECASE)

# SMBus 2.0 table 4 reserved addresses inside the general range
_RESERVED_ADDRESSES = frozenset({0x0C, 0x28, 0x37, 0x61})
_MIN_ADDRESS = 0x09
_MAX_ADDRESS = 0x77


def is_standard_command(opcode: int) -> bool:
    """Plain 8-bit command (not one of the two extension prefix bytes)."""
    return (opcode & 0xFF00) == 0 and (opcode & 0xFE) != 0xFE


def is_extended_command(opcode: int) -> bool:
    """16-bit command carried behind the 0xfe or 0xff prefix byte."""
    return (opcode & 0xFE00) == 0xFE00


def mfr_extended(index: int) -> int:
    if not 0 <= index <= 0xFF:
        raise InvalidCommandError(index, f"Extended command index out of range 0-255: {index}")
    return (CommandCode.MFR_SPECIFIC_COMMAND_EXT << 8) | index


def pmbus_extended(index: int) -> int:
    if not 0 <= index <= 0xFF:
        raise InvalidCommandError(index, f"Extended command index out of range 0-255: {index}")
    return (CommandCode.PMBUS_COMMAND_EXT << 8) | index


def user_data(index: int) -> int:
    if not 0 <= index <= 15:
        raise InvalidCommandError(index, f"USER_DATA index out of range 0-15: {index}")
    return CommandCode.USER_DATA_00 + index


def mfr_specific(index: int) -> int:
    if not 0 <= index < MFR_SPECIFIC_COUNT:
        raise InvalidCommandError(index, f"MFR_SPECIFIC index out of range 0-{MFR_SPECIFIC_COUNT - 1}: {index}")
    return CommandCode.MFR_SPECIFIC_00 + index


def normalize_opcode(raw: str | int) -> int:
    """
    Parse an opcode given as an int, a hex string (0x8b) or a decimal string.

    Accepts 8-bit commands (including the two prefix bytes) and 16-bit
    extended commands 0xfe00-0xffff. Raises InvalidCommandError otherwise.
    """
    if isinstance(raw, bool):
        raise InvalidCommandError(raw)
    if isinstance(raw, int):
        value = raw
    else:
        s = raw.strip()
        if not s:
            raise InvalidCommandError(raw, "Command cannot be empty")
        if not _OPCODE_PATTERN.match(s):
            raise InvalidCommandError(raw, f"Malformed opcode: {raw!r}")
        value = int(s, 16) if s.lower().startswith("0x") else int(s, 10)

    if value < 0 or value > 0xFFFF:
        raise InvalidCommandError(raw, f"Opcode out of range 0-0xffff: {value}")
    if value > 0xFF and not is_extended_command(value):
        raise InvalidCommandError(raw, f"Opcode {value:#06x} is neither 8-bit nor extended")
    return value


def normalize_address(raw: str | int) -> int:
    """
    Parse a 7-bit SMBus address (hex, octal with 0o, or decimal).

    Valid addresses are 0x09-0x77, except the reserved 0x0c, 0x28, 0x37, 0x61.
    """
    if isinstance(raw, int):
        addr = raw
    else:
        try:
            addr = int(raw.strip(), 0)
        except ValueError:
            raise ValueError(f"{raw!r} is not a device address") from None
    if addr < _MIN_ADDRESS or addr > _MAX_ADDRESS or addr in _RESERVED_ADDRESSES:
        raise ValueError(f"{addr:#04x} is a reserved device address")
    return addr
