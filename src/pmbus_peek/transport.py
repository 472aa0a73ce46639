"""PMBusTransport: SMBus exchanges for one device address, with raw I2C fallbacks for blocks."""

import logging
from contextlib import contextmanager
from typing import Iterator

from smbus2 import I2cFunc, SMBus, i2c_msg

from .errors import AdapterError, BusIOError, ExtendedCommandError, InvalidCommandError, MalformedReplyError
from .normalize import is_extended_command, is_standard_command
from .types import BlockRead, CommandCode, Coefficients, Direction

logger = logging.getLogger(__name__)

SMBUS_BLOCK_MAX = 32  # largest block one SMBus transaction may carry
PMBUS_BLOCK_MAX = 255

# COEFFICIENTS reply: count (5), m lo/hi, b lo/hi, R
_COEFF_REPLY_LEN = 6
_COEFF_COUNT = 5

# Byte/word data plus process call, and some way to do block reads and block process calls
PMBUS_MIN_FUNCS = I2cFunc.SMBUS_BYTE_DATA | I2cFunc.SMBUS_WORD_DATA | I2cFunc.SMBUS_PROC_CALL


def check_adapter(funcs: int) -> None:
    """Raise AdapterError unless the adapter can carry every core PMBus exchange."""
    if (
        (funcs & PMBUS_MIN_FUNCS) != PMBUS_MIN_FUNCS
        or not funcs & (I2cFunc.SMBUS_READ_BLOCK_DATA | I2cFunc.I2C)
        or not funcs & (I2cFunc.SMBUS_BLOCK_PROC_CALL | I2cFunc.I2C)
    ):
        raise AdapterError(f"Adapter functions {funcs:#010x} don't support PMBus")


class _SMBusStrategy:
    """One-shot SMBus block primitives; replies are returned with their count byte."""

    name = "smbus"

    def read_block(self, bus: SMBus, address: int, command: int, length: int) -> bytes:
        data = bus.read_block_data(address, command)
        return bytes([len(data)]) + bytes(data)

    def write_block(self, bus: SMBus, address: int, command: int, data: bytes) -> None:
        bus.write_block_data(address, command, list(data))

    def coefficients(self, bus: SMBus, address: int, target: int, direction: int) -> bytes:
        data = bus.block_process_call(address, CommandCode.COEFFICIENTS, [target, direction])
        return bytes([len(data)]) + bytes(data)


class _RawI2CStrategy:
    """Two-message I2C exchanges laid out exactly like the SMBus frames they stand in for."""

    name = "i2c"

    def read_block(self, bus: SMBus, address: int, command: int, length: int) -> bytes:
        write = i2c_msg.write(address, [command])
        read = i2c_msg.read(address, length + 1)
        bus.i2c_rdwr(write, read)
        return bytes(read)

    def write_block(self, bus: SMBus, address: int, command: int, data: bytes) -> None:
        bus.i2c_rdwr(i2c_msg.write(address, [command, len(data), *data]))

    def coefficients(self, bus: SMBus, address: int, target: int, direction: int) -> bytes:
        write = i2c_msg.write(address, [CommandCode.COEFFICIENTS, 2, target, direction])
        read = i2c_msg.read(address, _COEFF_REPLY_LEN)
        bus.i2c_rdwr(write, read)
        return bytes(read)


_SMBUS = _SMBusStrategy()
_RAW_I2C = _RawI2CStrategy()


class PMBusTransport:
    """
    PMBus exchanges with one device on an smbus2 bus handle.

    Byte, word and block primitives accept 8-bit commands only; extended
    (0xfe/0xff prefixed) commands raise ExtendedCommandError. Failures are
    raised as BusIOError straight away; nothing is retried.
    """

    def __init__(self, bus: SMBus, address: int, funcs: int | None = None) -> None:
        self._bus = bus
        self._address = address
        self._funcs = int(funcs if funcs is not None else bus.funcs)
        self._pec = False

    @property
    def address(self) -> int:
        return self._address

    @property
    def funcs(self) -> int:
        return self._funcs

    def supports(self, func: I2cFunc) -> bool:
        return bool(self._funcs & func)

    @property
    def pec_enabled(self) -> bool:
        return self._pec

    @pec_enabled.setter
    def pec_enabled(self, enable: bool) -> None:
        with self._io("PEC toggle", None):
            self._bus.pec = int(bool(enable))
        self._pec = bool(enable)

    @contextmanager
    def _io(self, operation: str, command: int | None) -> Iterator[None]:
        try:
            yield
        except OSError as e:
            where = f" {command:#04x}" if command is not None else ""
            raise BusIOError(
                f"{operation}{where} failed on device {self._address:#04x}: {e}",
                command=command,
                address=self._address,
                cause=e,
            ) from e

    def _check_command(self, command: int) -> None:
        if is_extended_command(command):
            raise ExtendedCommandError(command)
        if not is_standard_command(command):
            raise InvalidCommandError(command, f"Not an 8-bit command: {command:#x}")

    # ------------------------------------------------------------------
    # Simple exchanges
    # ------------------------------------------------------------------

    def quick(self) -> None:
        """Address-only write; PMBus forbids starting a transaction with the read bit."""
        with self._io("quick", None):
            self._bus.write_quick(self._address)

    def send_byte(self, command: int) -> None:
        self._check_command(command)
        with self._io("send byte", command):
            self._bus.write_byte(self._address, command)

    def read_byte(self, command: int) -> int:
        self._check_command(command)
        with self._io("read byte", command):
            return self._bus.read_byte_data(self._address, command)

    def write_byte(self, command: int, value: int) -> None:
        self._check_command(command)
        with self._io("write byte", command):
            self._bus.write_byte_data(self._address, command, value & 0xFF)

    def read_word(self, command: int) -> int:
        self._check_command(command)
        with self._io("read word", command):
            return self._bus.read_word_data(self._address, command)

    def write_word(self, command: int, value: int) -> None:
        self._check_command(command)
        with self._io("write word", command):
            self._bus.write_word_data(self._address, command, value & 0xFFFF)

    # ------------------------------------------------------------------
    # Block transfers
    # ------------------------------------------------------------------

    def _read_block_length(self, command: int) -> int:
        # Only the count byte is read here, so the device's PEC byte would not match
        restore_pec = self._pec
        if restore_pec:
            self._set_pec_quietly(False)
        try:
            return self.read_byte(command)
        finally:
            if restore_pec:
                self._set_pec_quietly(True)

    def _set_pec_quietly(self, enable: bool) -> None:
        try:
            self._bus.pec = int(enable)
        except OSError as e:
            logger.warning("Cannot %s PEC: %s", "re-enable" if enable else "temporarily disable", e)

    def _block_read_plan(self, length: int) -> list:
        plan: list = []
        if length <= SMBUS_BLOCK_MAX and self.supports(I2cFunc.SMBUS_READ_BLOCK_DATA):
            plan.append(_SMBUS)
        if self.supports(I2cFunc.I2C):
            plan.append(_RAW_I2C)
        return plan

    def read_block(self, command: int, max_len: int = PMBUS_BLOCK_MAX) -> BlockRead:
        """
        Read a length-prefixed block of at most `max_len` bytes.

        The count byte is read first; blocks larger than one SMBus transaction,
        or adapters without SMBus block reads, go through a raw I2C exchange.
        A block longer than `max_len` comes back cut to `max_len` with
        `truncated` set.
        """
        if max_len <= 0:
            raise ValueError(f"max_len must be positive, got {max_len}")
        self._check_command(command)
        length = self._read_block_length(command)

        plan = self._block_read_plan(length)
        if not plan:
            raise BusIOError(
                f"No adapter transfer for a {length}-byte block from {command:#04x}",
                command=command,
                address=self._address,
            )

        last_error: OSError | None = None
        for strategy in plan:
            try:
                reply = strategy.read_block(self._bus, self._address, command, length)
            except OSError as e:
                # SMBus cannot say why it failed; "block too big" is one possibility
                logger.debug("%s block read of %#04x failed: %s", strategy.name, command, e)
                last_error = e
                continue
            logger.debug("%s block read of %#04x: declared %d bytes", strategy.name, command, length)
            return _block_result(reply, max_len)

        raise BusIOError(
            f"read block {command:#04x} failed on device {self._address:#04x}: {last_error}",
            command=command,
            address=self._address,
            cause=last_error,
        )

    def write_block(self, command: int, data: bytes) -> None:
        if not data or len(data) > PMBUS_BLOCK_MAX:
            raise ValueError(f"Block must be 1-{PMBUS_BLOCK_MAX} bytes, got {len(data)}")
        self._check_command(command)
        if len(data) <= SMBUS_BLOCK_MAX and self.supports(I2cFunc.SMBUS_WRITE_BLOCK_DATA):
            strategy = _SMBUS
        elif self.supports(I2cFunc.I2C):
            strategy = _RAW_I2C
        else:
            raise BusIOError(
                f"No adapter transfer for a {len(data)}-byte block to {command:#04x}",
                command=command,
                address=self._address,
            )
        with self._io("write block", command):
            strategy.write_block(self._bus, self._address, command, bytes(data))

    # ------------------------------------------------------------------
    # Discovery process calls
    # ------------------------------------------------------------------

    def query_process_call(self, target: int) -> int:
        """
        Ask QUERY about `target`; returns the raw QUERY byte.

        QUERY is a block process call with one byte each way. A plain process
        call carries the same bytes (count 1 in the low byte, data in the
        high byte) and is far more widely supported by adapters.
        """
        if target > 0xFF:
            raise ExtendedCommandError(target)
        with self._io("QUERY", target):
            reply = self._bus.process_call(self._address, CommandCode.QUERY, (target << 8) | 1)
        if (reply & 0xFF) != 1:
            raise MalformedReplyError(
                f"QUERY reply for {target:#04x} has count {reply & 0xFF}, expected 1",
                command=target,
                address=self._address,
            )
        return (reply >> 8) & 0xFF

    def coefficients_process_call(self, target: int, direction: Direction) -> Coefficients:
        """Fetch DIRECT coefficients for `target` in the given direction."""
        if target > 0xFF:
            raise ExtendedCommandError(target)
        if self.supports(I2cFunc.SMBUS_BLOCK_PROC_CALL):
            strategy = _SMBUS
        elif self.supports(I2cFunc.I2C):
            strategy = _RAW_I2C
        else:
            raise BusIOError(
                "Adapter has no block process call", command=CommandCode.COEFFICIENTS, address=self._address
            )
        with self._io("COEFFICIENTS", target):
            reply = strategy.coefficients(self._bus, self._address, target, int(direction))
        if len(reply) < _COEFF_REPLY_LEN or reply[0] != _COEFF_COUNT:
            raise MalformedReplyError(
                f"COEFFICIENTS reply for {target:#04x} is malformed: {reply.hex()}",
                command=target,
                address=self._address,
            )
        return Coefficients(
            slope=int.from_bytes(reply[1:3], "little", signed=True),
            intercept=int.from_bytes(reply[3:5], "little", signed=True),
            scale_exponent=int.from_bytes(reply[5:6], "little", signed=True),
            valid=True,
        )


def _block_result(reply: bytes, max_len: int) -> BlockRead:
    declared = reply[0] if reply else 0
    data = reply[1 : 1 + declared][:max_len]
    return BlockRead(data=bytes(data), declared_length=declared)
