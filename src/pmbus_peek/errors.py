"""Clear exceptions for pmbus-peek: bad commands, bus faults, codec failures."""


class PMBusError(Exception):
    """Base exception for pmbus-peek."""

    pass


class InvalidCommandError(PMBusError, ValueError):
    """Raised when an opcode or command name is malformed."""

    def __init__(self, command: object, message: str | None = None) -> None:
        self.command = command
        self._msg = message or f"Invalid command: {command!r}"
        super().__init__(self._msg)


class UnknownCommandError(PMBusError, KeyError):
    """Raised when a command is well-formed but not in the command table."""

    def __init__(self, command: object, message: str | None = None) -> None:
        self.command = command
        self._msg = message or f"Unknown command: {command!r}"
        super().__init__(self._msg)

    def __str__(self) -> str:
        return self._msg


class ExtendedCommandError(PMBusError, NotImplementedError):
    """Raised when a 16-bit extended command reaches an 8-bit-only bus primitive."""

    def __init__(self, command: int) -> None:
        self.command = command
        super().__init__(f"Extended command {command:#06x} is not implemented")


class ProtocolMismatchError(PMBusError):
    """Raised when an operation does not fit the command's encoding kind."""

    pass


class BusIOError(PMBusError):
    """Raised when a bus exchange fails (wraps the OSError from smbus2)."""

    def __init__(
        self,
        message: str,
        *,
        command: int | None = None,
        address: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.command = command
        self.address = address
        self.cause = cause
        super().__init__(message)


class MalformedReplyError(BusIOError):
    """Raised when an exchange completes but the reply layout is wrong."""

    pass


class AdapterError(PMBusError):
    """Raised when the bus adapter cannot carry PMBus traffic."""

    pass


class CodecError(PMBusError, ValueError):
    """Raised when a raw value cannot be decoded or a physical value encoded."""

    pass
