"""CapabilityProbe: per-device QUERY/COEFFICIENTS discovery, memoized for the session."""

import logging

from .errors import BusIOError, InvalidCommandError
from .normalize import is_extended_command
from .registry import CommandRegistry, get_default_registry
from .transport import PMBusTransport
from .types import (
    QUERY_READABLE,
    QUERY_SUPPORTED,
    QUERY_WRITABLE,
    CommandCode,
    CommandDescriptor,
    Coefficients,
    DeviceCapability,
    Direction,
    DiscoveryState,
    NumericFormat,
    Support,
)

logger = logging.getLogger(__name__)

_STATE_TO_SUPPORT = {
    DiscoveryState.SUPPORTED: Support.SUPPORTED,
    DiscoveryState.UNSUPPORTED: Support.UNSUPPORTED,
}


class CapabilityProbe:
    """
    Discovers which commands a device implements.

    Each 8-bit command moves once from UNKNOWN to SUPPORTED or UNSUPPORTED.
    If a QUERY exchange itself fails, or the device answers that it lacks
    QUERY, discovery is disabled for the rest of the session and every
    answer becomes INDETERMINATE.
    """

    def __init__(self, transport: PMBusTransport, registry: CommandRegistry | None = None) -> None:
        self._transport = transport
        self._registry = registry if registry is not None else get_default_registry()
        self._table: dict[int, DeviceCapability] = {}
        self._disabled = False

    @property
    def registry(self) -> CommandRegistry:
        return self._registry

    @property
    def discovery_disabled(self) -> bool:
        return self._disabled or self.state(CommandCode.QUERY) is DiscoveryState.UNSUPPORTED

    def capability(self, opcode: int) -> DeviceCapability:
        """The capability record for an 8-bit command, created on first use."""
        if not 0 <= opcode <= 0xFF:
            raise InvalidCommandError(opcode, f"Only 8-bit commands have capability records: {opcode:#x}")
        if opcode not in self._table:
            self._table[opcode] = DeviceCapability(opcode=opcode)
        return self._table[opcode]

    def state(self, opcode: int) -> DiscoveryState:
        cap = self._table.get(opcode)
        return cap.state if cap is not None else DiscoveryState.UNKNOWN

    def probe(self, opcode: int, *, refresh: bool = False) -> Support:
        """
        Run QUERY for `opcode` unless it has been answered already (or `refresh`).

        For DIRECT-format commands the read and/or write coefficients are
        fetched as well; VOUT_MODE stores its own mode byte in both slots.
        """
        if is_extended_command(opcode):
            return Support.INDETERMINATE
        if self._disabled:
            return Support.INDETERMINATE
        if opcode != CommandCode.QUERY and self.discovery_disabled:
            return Support.INDETERMINATE

        cap = self.capability(opcode)
        if cap.state is not DiscoveryState.UNKNOWN and not refresh:
            return _STATE_TO_SUPPORT[cap.state]

        try:
            query = self._transport.query_process_call(opcode)
        except BusIOError as e:
            logger.info("QUERY unavailable on %#04x, command discovery disabled: %s", self._transport.address, e)
            self._disabled = True
            return Support.INDETERMINATE

        cap.coefficients = [Coefficients(), Coefficients()]
        if not query & QUERY_SUPPORTED:
            cap.state = DiscoveryState.UNSUPPORTED
            cap.query = 0
            logger.debug("%#04x: unsupported", opcode)
            return Support.UNSUPPORTED

        cap.state = DiscoveryState.SUPPORTED
        cap.query = query
        logger.debug("%#04x: supported, query %#04x", opcode, query)

        if cap.format_family == NumericFormat.DIRECT and self._coefficients_available():
            self._load_coefficients(cap)
        if opcode == CommandCode.VOUT_MODE:
            self._load_vout_mode(cap)
        return Support.SUPPORTED

    def check_support(self, opcode: int) -> Support:
        """
        May `opcode` be issued?

        UNSUPPORTED means never issue it. INDETERMINATE means try anyway and
        treat a failure as "no value".
        """
        if is_extended_command(opcode):
            return Support.INDETERMINATE
        return self.probe(opcode)

    def probe_all(self) -> list[CommandDescriptor]:
        """Probe every table command in order; returns those the device supports."""
        # QUERY first: a device that lacks it has nothing else to tell
        self.probe(CommandCode.QUERY)
        for desc in self._registry:
            if self.discovery_disabled:
                break
            if desc.opcode <= 0xFF:
                self.probe(desc.opcode)
        return self.supported()

    def supported(self) -> list[CommandDescriptor]:
        return [desc for desc in self._registry if self.state(desc.opcode) is DiscoveryState.SUPPORTED]

    def _coefficients_available(self) -> bool:
        return (
            CommandCode.COEFFICIENTS in self._registry
            and self.state(CommandCode.COEFFICIENTS) is not DiscoveryState.UNSUPPORTED
        )

    def _load_coefficients(self, cap: DeviceCapability) -> None:
        for direction, bit in ((Direction.READ, QUERY_READABLE), (Direction.WRITE, QUERY_WRITABLE)):
            if not cap.query & bit:
                continue
            try:
                cap.coefficients[direction] = self._transport.coefficients_process_call(cap.opcode, direction)
            except BusIOError as e:
                logger.warning("No %s coefficients for %#04x: %s", direction.name.lower(), cap.opcode, e)

    def _load_vout_mode(self, cap: DeviceCapability) -> None:
        # VOUT_MODE's "coefficient" is the mode byte shared by all output-voltage commands
        try:
            mode = self._transport.read_byte(CommandCode.VOUT_MODE)
        except BusIOError as e:
            logger.warning("Cannot read VOUT_MODE: %s", e)
            return
        mode_coefficients = Coefficients(scale_exponent=mode, valid=True)
        cap.coefficients = [mode_coefficients, mode_coefficients]
