"""pmbus-peek: PMBus device discovery, status and telemetry over smbus2."""

__version__ = "0.1.0"

from .codec import decode_direct, decode_linear11, decode_vout, encode_direct, encode_linear11, encode_vout
from .discovery import CapabilityProbe
from .errors import (
    AdapterError,
    BusIOError,
    CodecError,
    ExtendedCommandError,
    InvalidCommandError,
    MalformedReplyError,
    PMBusError,
    ProtocolMismatchError,
    UnknownCommandError,
)
from .normalize import normalize_address, normalize_opcode
from .registry import CommandRegistry, get_default_registry
from .session import DeviceSession
from .transport import PMBusTransport
from .types import (
    BlockRead,
    Coefficients,
    CommandCode,
    CommandDescriptor,
    CommandType,
    DeviceCapability,
    DiscoveryState,
    NumericFormat,
    Reading,
    Support,
    Units,
)

__all__ = [
    "__version__",
    "DeviceSession",
    "PMBusTransport",
    "CapabilityProbe",
    "CommandRegistry",
    "get_default_registry",
    "normalize_address",
    "normalize_opcode",
    "decode_direct",
    "decode_linear11",
    "decode_vout",
    "encode_direct",
    "encode_linear11",
    "encode_vout",
    "AdapterError",
    "BusIOError",
    "CodecError",
    "ExtendedCommandError",
    "InvalidCommandError",
    "MalformedReplyError",
    "PMBusError",
    "ProtocolMismatchError",
    "UnknownCommandError",
    "BlockRead",
    "Coefficients",
    "CommandCode",
    "CommandDescriptor",
    "CommandType",
    "DeviceCapability",
    "DiscoveryState",
    "NumericFormat",
    "Reading",
    "Support",
    "Units",
]
