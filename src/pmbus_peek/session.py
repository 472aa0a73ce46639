"""DeviceSession: one PMBus device on one bus, its discovery table and decoded reads/writes."""

import logging
from typing import Any, Callable, TypeVar

from smbus2 import I2cFunc, SMBus

from . import codec
from .discovery import CapabilityProbe
from .errors import BusIOError, CodecError, ProtocolMismatchError
from .normalize import mfr_specific
from .registry import CommandRegistry
from .transport import PMBUS_BLOCK_MAX, PMBusTransport, check_adapter
from .types import (
    QUERY_READABLE,
    QUERY_WRITABLE,
    BlockRead,
    CommandCode,
    CommandDescriptor,
    CommandType,
    DeviceCapability,
    NumericFormat,
    Reading,
    Support,
    Units,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# CAPABILITY bits
CAPABILITY_PEC = 1 << 7
CAPABILITY_SMBALERT = 1 << 4

INVENTORY_COMMANDS: tuple[CommandCode, ...] = (
    CommandCode.MFR_ID,
    CommandCode.MFR_MODEL,
    CommandCode.MFR_REVISION,
    CommandCode.MFR_LOCATION,
    CommandCode.MFR_DATE,
    CommandCode.MFR_SERIAL,
    CommandCode.IC_DEVICE_ID,
    CommandCode.IC_DEVICE_REV,
)

# Detail registers and the STATUS_WORD bits that point at them
STATUS_DETAILS: tuple[tuple[CommandCode, int], ...] = (
    (CommandCode.STATUS_VOUT, (1 << 15) | (1 << 5)),
    (CommandCode.STATUS_IOUT, (1 << 14) | (1 << 4)),
    (CommandCode.STATUS_INPUT, (1 << 13) | (1 << 3)),
    (CommandCode.STATUS_MFR_SPECIFIC, 1 << 12),
    (CommandCode.STATUS_FANS_1_2, 1 << 10),
    (CommandCode.STATUS_FANS_3_4, 1 << 10),
    (CommandCode.STATUS_OTHER, 1 << 9),
    (CommandCode.STATUS_TEMPERATURE, 1 << 2),
    (CommandCode.STATUS_CML, 1 << 1),
)

_REVISIONS = {0: "1.0", 1: "1.1", 2: "1.2"}
_BUS_SPEEDS = {0: "100 KHz", 1: "400 KHz"}


class DeviceSession:
    """
    Everything known about one PMBus device during this process.

    Owns the transport and the capability table for the device; the command
    registry it reads is shared and never modified. Use `DeviceSession.open`
    to attach to a bus by number or device path, or pass an already open
    smbus2 handle.
    """

    def __init__(
        self,
        bus: SMBus,
        address: int,
        *,
        registry: CommandRegistry | None = None,
        funcs: int | None = None,
        enable_pec: bool = False,
        bus_name: str | None = None,
        owns_bus: bool = False,
    ) -> None:
        self._bus = bus
        self._owns_bus = owns_bus
        self._transport = PMBusTransport(bus, address, funcs)
        self._probe = CapabilityProbe(self._transport, registry)
        self._enable_pec = enable_pec
        self.bus_name = bus_name
        self.capability: int | None = None
        self.revision: int | None = None
        self._fallback_vout_mode: int | None = None
        self._fallback_vout_mode_read = False

    @classmethod
    def open(
        cls,
        bus: int | str,
        address: int,
        *,
        force: bool = False,
        enable_pec: bool = False,
        registry: CommandRegistry | None = None,
    ) -> "DeviceSession":
        """Open the I2C bus, check the adapter can speak PMBus, and bind to `address`."""
        try:
            handle = SMBus(bus, force=force)
        except OSError as e:
            raise BusIOError(f"Couldn't connect to I2C bus {bus}: {e}", address=address, cause=e) from e
        try:
            check_adapter(handle.funcs)
        except Exception:
            handle.close()
            raise
        if enable_pec and not handle.funcs & I2cFunc.SMBUS_PEC:
            logger.warning("%s: no PEC support", bus)
            enable_pec = False
        return cls(
            handle,
            address,
            registry=registry,
            enable_pec=enable_pec,
            bus_name=str(bus),
            owns_bus=True,
        )

    def close(self) -> None:
        if self._owns_bus and self._bus is not None:
            try:
                self._bus.close()
            except OSError as e:
                logger.warning("Error closing I2C bus: %s", e)
            self._owns_bus = False

    def __enter__(self) -> "DeviceSession":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def address(self) -> int:
        return self._transport.address

    @property
    def transport(self) -> PMBusTransport:
        return self._transport

    @property
    def registry(self) -> CommandRegistry:
        return self._probe.registry

    @property
    def discovery_disabled(self) -> bool:
        return self._probe.discovery_disabled

    @property
    def pec_enabled(self) -> bool:
        return self._transport.pec_enabled

    def probe(self, opcode: int) -> Support:
        return self._probe.probe(opcode)

    def check_support(self, opcode: int) -> Support:
        return self._probe.check_support(opcode)

    def capability_of(self, opcode: int) -> DeviceCapability:
        return self._probe.capability(opcode)

    def discover_all(self) -> list[CommandDescriptor]:
        return self._probe.probe_all()

    def supported_commands(self) -> list[CommandDescriptor]:
        return self._probe.supported()

    # ------------------------------------------------------------------
    # Device scan
    # ------------------------------------------------------------------

    def scan(self) -> None:
        """
        Confirm the device answers, then learn what it can tell us about itself.

        A failed quick check is fatal (BusIOError). Missing CAPABILITY or
        PMBUS_REVISION only leaves the matching attribute at None.
        """
        # SMBus (hence PMBus) devices must always ack their address
        if self._transport.supports(I2cFunc.SMBUS_QUICK):
            self._transport.quick()

        # QUERY lets us skip calls we know will fail; some devices raise SMBALERT# on those
        self._probe.check_support(CommandCode.QUERY)

        self.capability = self._attempt(
            CommandCode.CAPABILITY, lambda: self._transport.read_byte(CommandCode.CAPABILITY), soft=True
        )
        if self.capability is None:
            logger.info("No PMBus capability support; assuming no PEC")
        elif self.capability & CAPABILITY_PEC and self._enable_pec:
            try:
                self._transport.pec_enabled = True
            except BusIOError as e:
                logger.warning("Couldn't enable PEC: %s", e)

        self.revision = self._attempt(
            CommandCode.PMBUS_REVISION, lambda: self._transport.read_byte(CommandCode.PMBUS_REVISION), soft=True
        )
        if self.revision is None:
            logger.info("No PMBUS_REVISION support; assuming 1.0")

    def capability_info(self) -> dict[str, Any] | None:
        """Decoded CAPABILITY byte, or None when the device did not report one."""
        if self.capability is None:
            return None
        return {
            "raw": self.capability,
            "pec": bool(self.capability & CAPABILITY_PEC),
            "smbalert": bool(self.capability & CAPABILITY_SMBALERT),
            "bus_speed": _BUS_SPEEDS.get((self.capability >> 5) & 0x03, "?speed?"),
        }

    def revision_info(self) -> tuple[str, str] | None:
        """(part I, part II) PMBus revisions. Part I is bits 7:5, part II bits 4:0."""
        if self.revision is None:
            return None
        return (
            _REVISIONS.get((self.revision >> 5) & 0x07, "?"),
            _REVISIONS.get(self.revision & 0x1F, "?"),
        )

    # ------------------------------------------------------------------
    # Support-aware exchange
    # ------------------------------------------------------------------

    def _attempt(self, opcode: int, action: Callable[[], T], *, soft: bool = False) -> T | None:
        """
        Run `action` if `opcode` may be issued.

        Unsupported commands return None without touching the bus. When
        support is indeterminate (or `soft`), a bus failure also returns None.
        """
        support = self.check_support(opcode)
        if support is Support.UNSUPPORTED:
            return None
        try:
            return action()
        except BusIOError as e:
            if support is Support.INDETERMINATE or soft:
                logger.debug("%#04x: no value (%s)", opcode, e)
                return None
            raise

    def _descriptor(self, opcode: int) -> CommandDescriptor:
        return self.registry.lookup(opcode)

    @staticmethod
    def _require(desc: CommandDescriptor, ok: bool, what: str) -> None:
        if not ok:
            raise ProtocolMismatchError(f"{desc.tag} ({desc.opcode:#04x}) is a {desc.type.value} command, not {what}")

    # ------------------------------------------------------------------
    # Raw reads and writes, checked against the command's encoding
    # ------------------------------------------------------------------

    def read_raw(self, opcode: int, max_len: int = PMBUS_BLOCK_MAX) -> int | BlockRead | None:
        """Read a command's raw payload (int for byte/word, BlockRead for blocks)."""
        desc = self._descriptor(opcode)
        ctype = desc.type
        self._require(desc, ctype.is_readable, "readable")
        if ctype.is_byte:
            return self._attempt(opcode, lambda: self._transport.read_byte(opcode))
        if ctype.is_word:
            return self._attempt(opcode, lambda: self._transport.read_word(opcode))
        return self._attempt(opcode, lambda: self._transport.read_block(opcode, max_len))

    def write_raw(self, opcode: int, value: int | bytes | None = None) -> bool:
        """
        Write a command's raw payload. Returns False when the device lacks it.

        W0 commands take no value; byte/word commands take an int; block
        commands take bytes.
        """
        desc = self._descriptor(opcode)
        ctype = desc.type
        self._require(desc, ctype.is_writable or ctype == CommandType.W0, "writable")
        if self.check_support(opcode) is Support.UNSUPPORTED:
            return False
        if ctype == CommandType.W0:
            self._transport.send_byte(opcode)
        elif ctype.is_byte:
            self._require(desc, isinstance(value, int), "given an integer")
            self._transport.write_byte(opcode, value)  # type: ignore[arg-type]
        elif ctype.is_word:
            self._require(desc, isinstance(value, int), "given an integer")
            self._transport.write_word(opcode, value)  # type: ignore[arg-type]
        else:
            self._require(desc, isinstance(value, (bytes, bytearray)), "given bytes")
            self._transport.write_block(opcode, bytes(value))  # type: ignore[arg-type]
        return True

    # ------------------------------------------------------------------
    # Decoded values
    # ------------------------------------------------------------------

    def vout_mode(self) -> int | None:
        """
        The VOUT_MODE byte: from discovery when available, else read once.
        """
        support = self.check_support(CommandCode.VOUT_MODE)
        if support is Support.UNSUPPORTED:
            return None
        if support is Support.SUPPORTED:
            coefficients = self._probe.capability(CommandCode.VOUT_MODE).read_coefficients
            return coefficients.scale_exponent if coefficients.valid else None
        if not self._fallback_vout_mode_read:
            self._fallback_vout_mode_read = True
            try:
                self._fallback_vout_mode = self._transport.read_byte(CommandCode.VOUT_MODE)
            except BusIOError as e:
                logger.debug("VOUT_MODE unreadable: %s", e)
        return self._fallback_vout_mode

    def vout_mode_is_linear(self) -> bool:
        mode = self.vout_mode()
        return mode is not None and codec.vout_mode_is_linear(mode)

    def _decode_word(self, desc: CommandDescriptor, raw: int) -> tuple[float | int | None, str]:
        if desc.uses_vout_mode and self.vout_mode_is_linear():
            mode = self.vout_mode()
            return codec.decode_vout(raw, mode), codec.format_label(desc.type, 0, desc.units, vout_linear=True)  # type: ignore[arg-type]
        cap = self._probe.capability(desc.opcode)
        family = cap.format_family
        label = codec.format_label(desc.type, family, desc.units)
        return codec.decode_by_format(raw, family, desc.units, cap.read_coefficients), label

    def read_value(self, opcode: int) -> Reading | None:
        """
        Read a byte or word command and decode it into engineering units.

        Returns None when the device lacks the command (or support is
        indeterminate and the read failed). Raises CodecError for DIRECT
        values without read coefficients.
        """
        desc = self._descriptor(opcode)
        ctype = desc.type
        self._require(desc, ctype.is_readable and (ctype.is_byte or ctype.is_word), "a byte or word read")
        if ctype.is_byte:
            raw = self._attempt(opcode, lambda: self._transport.read_byte(opcode))
            if raw is None:
                return None
            return Reading(command=desc, raw=raw, value=raw, format=codec.format_label(ctype, 0, desc.units))
        raw = self._attempt(opcode, lambda: self._transport.read_word(opcode))
        if raw is None:
            return None
        try:
            value, label = self._decode_word(desc, raw)
        except CodecError as e:
            raise CodecError(f"{desc.tag}: {e} (raw {raw:#06x})") from e
        return Reading(command=desc, raw=raw, value=value, format=label)

    def read_values(self) -> list[Reading]:
        """
        Readings for every attribute-style command (not summary or status).

        Commands the device is known to lack are left out; without discovery
        every table command is tried and failures are skipped.
        """
        readings: list[Reading] = []
        for desc in self.registry:
            ctype = desc.type
            if desc.is_summary or desc.is_status:
                continue
            if not (ctype.is_readable and (ctype.is_byte or ctype.is_word)):
                continue
            if self.check_support(desc.opcode) is Support.UNSUPPORTED:
                continue
            try:
                reading = self.read_value(desc.opcode)
            except CodecError as e:
                logger.warning("%s", e)
                continue
            except BusIOError as e:
                logger.warning("Device failed read of %s: %s", desc.tag, e)
                continue
            if reading is not None:
                readings.append(reading)
        return readings

    def write_value(self, opcode: int, value: float) -> bool:
        """
        Encode a physical value for a word command and write it.

        Returns False when the device lacks the command.
        """
        desc = self._descriptor(opcode)
        self._require(desc, desc.type.is_word and desc.type.is_writable, "a writable word")
        if self.check_support(opcode) is Support.UNSUPPORTED:
            return False

        if desc.uses_vout_mode and self.vout_mode_is_linear():
            raw = codec.encode_vout(value, self.vout_mode())  # type: ignore[arg-type]
        else:
            cap = self._probe.capability(opcode)
            family = cap.format_family
            if family == NumericFormat.LINEAR:
                raw = int(value) if desc.units == Units.BITS else codec.encode_linear11(value)
            elif family == NumericFormat.DIRECT:
                raw = codec.encode_direct(value, cap.write_coefficients)
            elif family == NumericFormat.UNSIGNED16:
                raw = int(value)
                if not 0 <= raw <= 0xFFFF:
                    raise CodecError(f"{desc.tag}: {raw} does not fit 16 bits")
            else:
                raise CodecError(f"{desc.tag}: cannot encode format family {family}")

        self._transport.write_word(opcode, raw & 0xFFFF)
        return True

    def describe(self, opcode: int) -> dict[str, Any]:
        """What discovery knows about a command: access, wire format, units, coefficients."""
        desc = self._descriptor(opcode)
        cap = self._probe.capability(desc.opcode)
        vout_linear = desc.type.is_word and desc.uses_vout_mode and self.vout_mode_is_linear()
        info: dict[str, Any] = {
            "opcode": desc.opcode,
            "tag": desc.tag,
            "state": cap.state.value,
            "read": bool(cap.query & QUERY_READABLE),
            "write": bool(cap.query & QUERY_WRITABLE),
            "format": codec.format_label(desc.type, cap.format_family, desc.units, vout_linear=vout_linear),
            "units": desc.units.label,
        }
        if cap.format_family == NumericFormat.DIRECT and desc.opcode != CommandCode.VOUT_MODE:
            coefficients = {}
            for name, c in (("read", cap.read_coefficients), ("write", cap.write_coefficients)):
                if c.valid:
                    coefficients[name] = {"m": c.slope, "b": c.intercept, "R": c.scale_exponent}
            if coefficients:
                info["coefficients"] = coefficients
        return info

    # ------------------------------------------------------------------
    # Inventory, status and actions
    # ------------------------------------------------------------------

    def read_string(self, opcode: int) -> str | None:
        """
        Inventory text from a block command, decoded as ISO 8859-1.

        Devices without QUERY are still asked; that is harmless and often
        the only identification they offer.
        """
        result = self._attempt(opcode, lambda: self._transport.read_block(opcode, PMBUS_BLOCK_MAX))
        if result is None or not result.data:
            return None
        if result.truncated:
            logger.debug("%#04x: string truncated to %d bytes", opcode, len(result.data))
        return result.data.decode("iso-8859-1").split("\x00", 1)[0]

    def read_inventory(self) -> dict[str, str]:
        inventory: dict[str, str] = {}
        for opcode in INVENTORY_COMMANDS:
            try:
                text = self.read_string(opcode)
            except BusIOError as e:
                logger.warning("Device failed read of %s: %s", opcode.name, e)
                continue
            if text is not None:
                inventory[self._descriptor(opcode).tag] = text
        return inventory

    def read_app_profiles(self) -> list[tuple[int, int, int]] | None:
        """(profile id, major, minor) pairs from APP_PROFILE_SUPPORT; only asked when QUERY says so."""
        if self.check_support(CommandCode.APP_PROFILE_SUPPORT) is not Support.SUPPORTED:
            return None
        try:
            result = self._transport.read_block(CommandCode.APP_PROFILE_SUPPORT, PMBUS_BLOCK_MAX)
        except BusIOError as e:
            logger.warning("Device failed read of APP_PROFILE_SUPPORT: %s", e)
            return None
        data = result.data
        return [(data[i], data[i + 1] >> 4, data[i + 1] & 0x0F) for i in range(0, len(data) - 1, 2)]

    def read_status(self) -> int | None:
        """STATUS_WORD when available, else STATUS_BYTE; None if neither answers."""
        for opcode, read in (
            (CommandCode.STATUS_WORD, self._transport.read_word),
            (CommandCode.STATUS_BYTE, self._transport.read_byte),
        ):
            try:
                value = self._attempt(opcode, lambda: read(opcode))
            except BusIOError as e:
                logger.warning("Device failed read of %s: %s", opcode.name, e)
                continue
            if value is not None:
                return value
        return None

    def read_status_details(self, status: int) -> dict[CommandCode, int]:
        """Read the detail status registers that the summary bits in `status` point at."""
        details: dict[CommandCode, int] = {}
        for opcode, bits in STATUS_DETAILS:
            if not status & bits:
                continue
            try:
                value = self._attempt(opcode, lambda: self._transport.read_byte(opcode))
            except BusIOError as e:
                logger.warning("Device failed read of %s: %s", opcode.name, e)
                continue
            if value is not None:
                details[opcode] = value
        return details

    def clear_faults(self) -> bool:
        """Send CLEAR_FAULTS unless the device is known not to support it."""
        def send() -> bool:
            self._transport.send_byte(CommandCode.CLEAR_FAULTS)
            return True

        return self._attempt(CommandCode.CLEAR_FAULTS, send) is True

    def set_page(self, page: int) -> None:
        if not 0 <= page <= 0xFF:
            raise ValueError(f"PAGE must be 0-255, got {page}")
        self._transport.write_byte(CommandCode.PAGE, page)

    def send_mfr_specific(self, index: int) -> bool:
        """
        Issue MFR_SPECIFIC_<index> as a no-data command.

        Manufacturer commands have arbitrary syntax; this only covers the
        command-only kind. Returns False when the device lacks it.
        """
        opcode = mfr_specific(index)
        if self.check_support(opcode) is Support.UNSUPPORTED:
            return False
        self._transport.send_byte(opcode)
        return True
