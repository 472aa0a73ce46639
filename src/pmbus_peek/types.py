"""Core data model: command kinds, units, descriptors and per-device capability state."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum, IntFlag

# QUERY reply bits
QUERY_SUPPORTED = 1 << 7
QUERY_WRITABLE = 1 << 6
QUERY_READABLE = 1 << 5
QUERY_FORMAT_SHIFT = 2
QUERY_FORMAT_MASK = 0x07


class CommandType(str, Enum):
    """Transaction shape of a command, per the PMBus command summary table."""

    RW1 = "rw1"  # read/write one byte
    RW2 = "rw2"  # read/write two byte "word"
    RWB = "rwb"  # read/write block, up to 255 bytes
    RWB14 = "rwb14"  # read/write block of 14 bytes
    QUERY_CALL = "rwp_query"  # block write/read process call for QUERY
    COEFF_CALL = "rwp_coeff"  # block write/read process call for COEFFICIENTS
    APP_PROFILE = "rwb_app_profile"  # block read with embedded byte count
    W0 = "w0"  # send byte, command only
    W1 = "w1"  # write one byte
    R1 = "r1"  # read one byte
    R2 = "r2"  # read word
    OPAQUE = "opaque"  # manufacturer-defined syntax

    @property
    def is_byte(self) -> bool:
        return self in (CommandType.RW1, CommandType.W1, CommandType.R1)

    @property
    def is_word(self) -> bool:
        return self in (CommandType.RW2, CommandType.R2)

    @property
    def is_block(self) -> bool:
        return self in (CommandType.RWB, CommandType.RWB14, CommandType.APP_PROFILE)

    @property
    def is_process_call(self) -> bool:
        return self in (CommandType.QUERY_CALL, CommandType.COEFF_CALL)

    @property
    def is_readable(self) -> bool:
        return self in (
            CommandType.RW1,
            CommandType.R1,
            CommandType.RW2,
            CommandType.R2,
            CommandType.RWB,
            CommandType.RWB14,
            CommandType.APP_PROFILE,
        )

    @property
    def is_writable(self) -> bool:
        return self in (
            CommandType.RW1,
            CommandType.W1,
            CommandType.RW2,
            CommandType.RWB,
            CommandType.RWB14,
        )


class Units(str, Enum):
    """Engineering unit of a command's value."""

    NONE = "none"
    VOLTS = "volts"
    AMPERES = "amperes"
    MILLISECONDS = "milliseconds"
    DEGREES_C = "degrees_c"
    WATTS = "watts"
    BITS = "bits"
    STRING = "string"

    @property
    def label(self) -> str | None:
        return _UNIT_LABELS.get(self)


_UNIT_LABELS: dict[Units, str] = {
    Units.VOLTS: "Volts",
    Units.AMPERES: "Amperes",
    Units.MILLISECONDS: "milliseconds",
    Units.DEGREES_C: "degrees Celsius",
    Units.WATTS: "Watts",
    Units.STRING: "ISO 8859/1 string",
}


class CommandFlag(IntFlag):
    """Static per-command flags used by discovery and reporting."""

    NONE = 0
    SUMMARY = 1 << 0  # shown in the device summary, not as an attribute value
    STATUS = 1 << 1  # a status register
    FORMAT_VOUT = 1 << 2  # uses the device-wide VOUT_MODE scale


class CommandCode(IntEnum):
    """Command codes this package treats specially."""

    PAGE = 0x00
    OPERATION = 0x01
    CLEAR_FAULTS = 0x03
    CAPABILITY = 0x19
    QUERY = 0x1A
    VOUT_MODE = 0x20
    COEFFICIENTS = 0x30

    STATUS_BYTE = 0x78
    STATUS_WORD = 0x79
    STATUS_VOUT = 0x7A
    STATUS_IOUT = 0x7B
    STATUS_INPUT = 0x7C
    STATUS_TEMPERATURE = 0x7D
    STATUS_CML = 0x7E
    STATUS_OTHER = 0x7F
    STATUS_MFR_SPECIFIC = 0x80
    STATUS_FANS_1_2 = 0x81
    STATUS_FANS_3_4 = 0x82

    PMBUS_REVISION = 0x98
    MFR_ID = 0x99
    MFR_MODEL = 0x9A
    MFR_REVISION = 0x9B
    MFR_LOCATION = 0x9C
    MFR_DATE = 0x9D
    MFR_SERIAL = 0x9E
    APP_PROFILE_SUPPORT = 0x9F
    IC_DEVICE_ID = 0xAD
    IC_DEVICE_REV = 0xAE

    USER_DATA_00 = 0xB0
    MFR_SPECIFIC_00 = 0xD0
    MFR_SPECIFIC_COMMAND_EXT = 0xFE
    PMBUS_COMMAND_EXT = 0xFF


MFR_SPECIFIC_COUNT = 46


class NumericFormat(IntEnum):
    """Numeric format family reported in QUERY bits 4:2."""

    LINEAR = 0
    UNSIGNED16 = 1
    DIRECT = 3
    UNSIGNED8 = 4
    VID = 5
    MANUFACTURER = 6


class Direction(IntEnum):
    """COEFFICIENTS direction byte; also the index into DeviceCapability.coefficients."""

    WRITE = 0
    READ = 1


class DiscoveryState(str, Enum):
    """Per-command discovery state."""

    UNKNOWN = "unknown"
    UNSUPPORTED = "unsupported"
    SUPPORTED = "supported"


class Support(str, Enum):
    """Answer to "may this command be issued?"."""

    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"
    INDETERMINATE = "indeterminate"


@dataclass(frozen=True)
class CommandDescriptor:
    """Static description of one PMBus command; never mutated by discovery."""

    opcode: int
    tag: str
    type: CommandType
    units: Units = Units.NONE
    flags: CommandFlag = CommandFlag.NONE

    def __post_init__(self) -> None:
        if not 0 <= self.opcode <= 0xFFFF:
            raise ValueError(f"opcode must be 0..0xffff, got {self.opcode:#x}")
        if not self.tag:
            raise ValueError("tag must not be empty")

    @property
    def is_status(self) -> bool:
        return bool(self.flags & CommandFlag.STATUS)

    @property
    def is_summary(self) -> bool:
        return bool(self.flags & CommandFlag.SUMMARY)

    @property
    def uses_vout_mode(self) -> bool:
        return bool(self.flags & CommandFlag.FORMAT_VOUT)


@dataclass(frozen=True)
class Coefficients:
    """DIRECT format coefficients: X = (Y * 10**-R - b) / m."""

    slope: int = 0
    intercept: int = 0
    scale_exponent: int = 0
    valid: bool = False


@dataclass
class DeviceCapability:
    """What discovery learned about one command on one device."""

    opcode: int
    state: DiscoveryState = DiscoveryState.UNKNOWN
    query: int = 0
    coefficients: list[Coefficients] = field(default_factory=lambda: [Coefficients(), Coefficients()])

    @property
    def readable(self) -> bool:
        return bool(self.query & QUERY_READABLE)

    @property
    def writable(self) -> bool:
        return bool(self.query & QUERY_WRITABLE)

    @property
    def format_family(self) -> int:
        return (self.query >> QUERY_FORMAT_SHIFT) & QUERY_FORMAT_MASK

    @property
    def read_coefficients(self) -> Coefficients:
        return self.coefficients[Direction.READ]

    @property
    def write_coefficients(self) -> Coefficients:
        return self.coefficients[Direction.WRITE]


@dataclass(frozen=True)
class BlockRead:
    """Result of a block read; data is cut to the caller's buffer when the device sent more."""

    data: bytes
    declared_length: int

    @property
    def truncated(self) -> bool:
        return self.declared_length > len(self.data)


@dataclass(frozen=True)
class Reading:
    """A command value read from the device and decoded into engineering units."""

    command: CommandDescriptor
    raw: int
    value: float | int | None
    format: str

    @property
    def units(self) -> Units:
        return self.command.units
