"""Shared fixtures: a simulated PMBus device behind an smbus2-shaped bus handle."""

import errno
from typing import Any

import pytest
from smbus2 import I2cFunc

QUERY = 0x1A
COEFFICIENTS = 0x30

ALL_FUNCS = int(
    I2cFunc.I2C
    | I2cFunc.SMBUS_PEC
    | I2cFunc.SMBUS_QUICK
    | I2cFunc.SMBUS_BYTE
    | I2cFunc.SMBUS_BYTE_DATA
    | I2cFunc.SMBUS_WORD_DATA
    | I2cFunc.SMBUS_PROC_CALL
    | I2cFunc.SMBUS_BLOCK_PROC_CALL
    | I2cFunc.SMBUS_READ_BLOCK_DATA
    | I2cFunc.SMBUS_WRITE_BLOCK_DATA
)
SMBUS_ONLY_FUNCS = ALL_FUNCS & ~int(I2cFunc.I2C)
I2C_ONLY_BLOCK_FUNCS = ALL_FUNCS & ~int(
    I2cFunc.SMBUS_READ_BLOCK_DATA | I2cFunc.SMBUS_WRITE_BLOCK_DATA | I2cFunc.SMBUS_BLOCK_PROC_CALL
)


def query_byte(read: bool = True, write: bool = False, fmt: int = 0) -> int:
    """QUERY reply byte for a supported command."""
    return 0x80 | (0x20 if read else 0) | (0x40 if write else 0) | (fmt << 2)


def nak(what: str) -> OSError:
    return OSError(errno.EREMOTEIO, f"Remote I/O error ({what})")


class FakeI2cMsg:
    """Stand-in for smbus2.i2c_msg that keeps its payload as bytes."""

    def __init__(self, addr: int, is_read: bool, data: bytes, length: int) -> None:
        self.addr = addr
        self.is_read = is_read
        self.data = data
        self.len = length

    @classmethod
    def write(cls, address: int, buf: Any) -> "FakeI2cMsg":
        data = bytes(buf)
        return cls(address, False, data, len(data))

    @classmethod
    def read(cls, address: int, length: int) -> "FakeI2cMsg":
        return cls(address, True, bytes(length), length)

    def __bytes__(self) -> bytes:
        return self.data


class FakePMBusBus:
    """
    An smbus2.SMBus look-alike with one PMBus device attached.

    `queries` maps command -> QUERY byte (missing commands answer "unsupported");
    with `query_supported=False` the QUERY process call itself fails.
    `coefficients` maps (command, direction) -> (m, b, R). Every exchange is
    recorded in `calls` as (method, command).
    """

    def __init__(
        self,
        address: int = 0x58,
        *,
        funcs: int = ALL_FUNCS,
        queries: dict[int, int] | None = None,
        query_supported: bool = True,
        byte_regs: dict[int, int] | None = None,
        word_regs: dict[int, int] | None = None,
        blocks: dict[int, bytes] | None = None,
        coefficients: dict[tuple[int, int], tuple[int, int, int]] | None = None,
        present: bool = True,
    ) -> None:
        self.address = address
        self.funcs = int(funcs)
        self.queries = dict(queries or {})
        self.query_supported = query_supported
        self.byte_regs = dict(byte_regs or {})
        self.word_regs = dict(word_regs or {})
        self.blocks = {k: bytes(v) for k, v in (blocks or {}).items()}
        self.coefficients = dict(coefficients or {})
        self.present = present
        self.failing: set[tuple[str, int]] = set()
        self.calls: list[tuple[str, int | None]] = []
        self.sent: list[int] = []
        self.block_writes: dict[int, bytes] = {}
        self.pec_history: list[int] = []
        self._pec = 0
        self.closed = False

    # -- helpers --------------------------------------------------------

    def count(self, method: str, command: int | None = None) -> int:
        return sum(1 for m, c in self.calls if m == method and (command is None or c == command))

    def fail(self, method: str, command: int) -> None:
        """Make `method` on `command` NAK from now on."""
        self.failing.add((method, command))

    def _exchange(self, method: str, addr: int, command: int | None) -> None:
        self.calls.append((method, command))
        if addr != self.address or not self.present:
            raise OSError(errno.ENXIO, "No such device or address")
        if command is not None and (method, command) in self.failing:
            raise nak(f"{method} {command:#04x}")

    def _coefficients_reply(self, target: int, direction: int) -> bytes:
        if (target, direction) not in self.coefficients:
            raise nak(f"coefficients {target:#04x}")
        m, b, r = self.coefficients[(target, direction)]
        return (
            bytes([5])
            + m.to_bytes(2, "little", signed=True)
            + b.to_bytes(2, "little", signed=True)
            + r.to_bytes(1, "little", signed=True)
        )

    # -- smbus2.SMBus surface ------------------------------------------

    @property
    def pec(self) -> int:
        return self._pec

    @pec.setter
    def pec(self, enable: int) -> None:
        if enable and not self.funcs & I2cFunc.SMBUS_PEC:
            raise OSError(errno.EOPNOTSUPP, "SMBUS_PEC is not a feature")
        self._pec = int(enable)
        self.pec_history.append(self._pec)

    def close(self) -> None:
        self.closed = True

    def write_quick(self, i2c_addr: int, force: bool | None = None) -> None:
        self._exchange("write_quick", i2c_addr, None)

    def write_byte(self, i2c_addr: int, value: int, force: bool | None = None) -> None:
        self._exchange("write_byte", i2c_addr, value)
        self.sent.append(value)

    def read_byte_data(self, i2c_addr: int, register: int, force: bool | None = None) -> int:
        self._exchange("read_byte_data", i2c_addr, register)
        if register in self.blocks:
            return len(self.blocks[register])
        if register in self.byte_regs:
            return self.byte_regs[register]
        raise nak(f"read byte {register:#04x}")

    def write_byte_data(self, i2c_addr: int, register: int, value: int, force: bool | None = None) -> None:
        self._exchange("write_byte_data", i2c_addr, register)
        self.byte_regs[register] = value

    def read_word_data(self, i2c_addr: int, register: int, force: bool | None = None) -> int:
        self._exchange("read_word_data", i2c_addr, register)
        if register in self.word_regs:
            return self.word_regs[register]
        raise nak(f"read word {register:#04x}")

    def write_word_data(self, i2c_addr: int, register: int, value: int, force: bool | None = None) -> None:
        self._exchange("write_word_data", i2c_addr, register)
        self.word_regs[register] = value

    def process_call(self, i2c_addr: int, register: int, value: int, force: bool | None = None) -> int:
        self._exchange("process_call", i2c_addr, value >> 8)
        if register != QUERY or not self.query_supported:
            raise nak("process call")
        return (self.queries.get(value >> 8, 0) << 8) | 1

    def read_block_data(self, i2c_addr: int, register: int, force: bool | None = None) -> list[int]:
        self._exchange("read_block_data", i2c_addr, register)
        block = self.blocks.get(register)
        if block is None or len(block) > 32:
            raise nak(f"read block {register:#04x}")
        return list(block)

    def write_block_data(self, i2c_addr: int, register: int, data: list[int], force: bool | None = None) -> None:
        self._exchange("write_block_data", i2c_addr, register)
        if len(data) > 32:
            raise ValueError("Data length cannot exceed 32 bytes")
        self.block_writes[register] = bytes(data)

    def block_process_call(self, i2c_addr: int, register: int, data: list[int], force: bool | None = None) -> list[int]:
        self._exchange("block_process_call", i2c_addr, data[0] if data else None)
        if register != COEFFICIENTS:
            raise nak("block process call")
        return list(self._coefficients_reply(data[0], data[1])[1:])

    def i2c_rdwr(self, *i2c_msgs: FakeI2cMsg) -> None:
        command = i2c_msgs[0].data[0] if i2c_msgs and i2c_msgs[0].data else None
        self._exchange("i2c_rdwr", i2c_msgs[0].addr if i2c_msgs else -1, command)
        if len(i2c_msgs) == 1 and not i2c_msgs[0].is_read:
            cmd, length, *payload = i2c_msgs[0].data
            self.block_writes[cmd] = bytes(payload[:length])
            return
        request, reply = i2c_msgs
        if request.data[0] == COEFFICIENTS:
            data = self._coefficients_reply(request.data[2], request.data[3])
        else:
            block = self.blocks.get(request.data[0])
            if block is None:
                raise nak(f"i2c read {request.data[0]:#04x}")
            data = bytes([len(block)]) + block
        reply.data = data[: reply.len].ljust(reply.len, b"\x00")


@pytest.fixture(autouse=True)
def fake_i2c_msg(monkeypatch: pytest.MonkeyPatch) -> type:
    monkeypatch.setattr("pmbus_peek.transport.i2c_msg", FakeI2cMsg)
    return FakeI2cMsg


@pytest.fixture
def psu_bus() -> FakePMBusBus:
    """
    A PMBus 1.2 power supply: QUERY, LINEAR input telemetry, VOUT_MODE linear
    output voltage, a DIRECT temperature sensor and a few inventory strings.
    """
    return FakePMBusBus(
        queries={
            0x00: query_byte(read=False, write=True),
            0x03: query_byte(read=False, write=True),
            0x19: query_byte(),
            QUERY: query_byte(),
            0x20: query_byte(),
            COEFFICIENTS: query_byte(),
            0x79: query_byte(),
            0x78: query_byte(),
            0x7C: query_byte(),
            0x7D: query_byte(),
            0x88: query_byte(fmt=0),
            0x8B: query_byte(fmt=0),
            0x8C: query_byte(fmt=0),
            0x8D: query_byte(fmt=3),
            0x98: query_byte(),
            0x99: query_byte(),
            0x9A: query_byte(),
            0x9E: query_byte(),
            0x9F: query_byte(),
            0xD0: query_byte(read=False, write=True),
        },
        byte_regs={
            0x19: 0xB0,  # PEC, SMBALERT#, 400 KHz
            0x20: 0x11,  # linear, exponent -15
            0x78: 0x04,
            0x7C: 0x10,
            0x7D: 0x80,
            0x98: 0x22,
        },
        word_regs={
            0x79: 0x2004,
            0x88: 0xE367,
            0x8B: 0x2000,
            0x8C: 0x0190,
            0x8D: 0x0006,
        },
        blocks={
            0x99: b"ACME",
            0x9A: b"PSU-1200\x00\x00",
            0x9E: b"SN-0123456789-ABCDEFGHIJKLMNOPQRSTUVWXYZ",
            0x9F: bytes([1, 0x12]),
        },
        coefficients={(0x8D, 1): (2, 0, 0)},
    )


@pytest.fixture
def legacy_bus() -> FakePMBusBus:
    """A PMBus 1.0 device: no QUERY, but plain reads work."""
    return FakePMBusBus(
        query_supported=False,
        byte_regs={0x20: 0x11, 0x98: 0x00},
        word_regs={0x79: 0x0000, 0x8B: 0x2000, 0x88: 0x0190},
        blocks={0x99: b"OLDCO"},
    )
