"""CommandRegistry: load the packaged PMBus command table, O(1) lookup, table-order iteration."""

import json
import logging
from functools import lru_cache
from importlib import resources
from typing import Any, Iterator

from .errors import UnknownCommandError
from .types import CommandDescriptor, CommandFlag, CommandType, Units

logger = logging.getLogger(__name__)

_TABLE_PACKAGE = "pmbus_peek.data"
_TABLE_RESOURCE = "pmbus_commands.json"

_FLAG_NAMES: dict[str, CommandFlag] = {
    "summary": CommandFlag.SUMMARY,
    "status": CommandFlag.STATUS,
    "vout": CommandFlag.FORMAT_VOUT,
}


def _parse_opcode(raw: Any) -> int:
    if isinstance(raw, int):
        return raw
    return int(str(raw), 0)


def _parse_entry(raw: dict[str, Any]) -> CommandDescriptor:
    """Build a CommandDescriptor from a JSON entry (opcode, tag, type, units, flags)."""
    tag = raw["tag"]
    opcode = _parse_opcode(raw["opcode"])
    try:
        cmd_type = CommandType(raw["type"])
    except ValueError:
        raise ValueError(f"Unknown command type {raw['type']!r} for {tag!r}")
    try:
        units = Units(raw.get("units", "none"))
    except ValueError:
        raise ValueError(f"Unknown units {raw.get('units')!r} for {tag!r}")
    flags = CommandFlag.NONE
    for name in raw.get("flags") or ():
        if name not in _FLAG_NAMES:
            raise ValueError(f"Unknown flag {name!r} for {tag!r}")
        flags |= _FLAG_NAMES[name]
    return CommandDescriptor(opcode=opcode, tag=tag, type=cmd_type, units=units, flags=flags)


class CommandRegistry:
    """
    Read-only table of PMBus command descriptors, kept in specification order.

    Loaded from the packaged JSON table, or from `commands` (a list of entry
    dicts) when given. Duplicate opcodes or tags are rejected.
    """

    def __init__(self, commands: list[dict[str, Any]] | None = None) -> None:
        self._ordered: list[CommandDescriptor] = []
        self._by_opcode: dict[int, CommandDescriptor] = {}
        self._by_tag: dict[str, CommandDescriptor] = {}

        if commands is None:
            try:
                with resources.files(_TABLE_PACKAGE).joinpath(_TABLE_RESOURCE).open("r", encoding="utf-8") as f:
                    data = json.load(f)
            except FileNotFoundError:
                raise FileNotFoundError(f"Command table not found: {_TABLE_PACKAGE}/{_TABLE_RESOURCE}") from None
            commands = data["entries"] if isinstance(data, dict) else data

        for entry in commands:
            self._add(_parse_entry(entry))

        logger.debug("CommandRegistry loaded: %d commands", len(self._ordered))

    def _add(self, desc: CommandDescriptor) -> None:
        if desc.opcode in self._by_opcode:
            raise ValueError(f"Duplicate opcode in command table: {desc.opcode:#04x}")
        if desc.tag in self._by_tag:
            raise ValueError(f"Duplicate tag in command table: {desc.tag}")
        self._ordered.append(desc)
        self._by_opcode[desc.opcode] = desc
        self._by_tag[desc.tag] = desc

    def get(self, opcode: int) -> CommandDescriptor | None:
        """Return the descriptor for `opcode`, or None when the table has no such command."""
        return self._by_opcode.get(opcode)

    def lookup(self, opcode: int) -> CommandDescriptor:
        """Return the descriptor for `opcode`; raise UnknownCommandError if absent."""
        desc = self._by_opcode.get(opcode)
        if desc is None:
            raise UnknownCommandError(opcode, f"Unknown command: {opcode:#04x}")
        return desc

    def find(self, tag: str) -> CommandDescriptor:
        """Return the descriptor named `tag` (case-insensitive)."""
        desc = self._by_tag.get(tag.strip().lower())
        if desc is None:
            raise UnknownCommandError(tag)
        return desc

    def all(self) -> tuple[CommandDescriptor, ...]:
        return tuple(self._ordered)

    def __iter__(self) -> Iterator[CommandDescriptor]:
        return iter(self._ordered)

    def __contains__(self, opcode: object) -> bool:
        return opcode in self._by_opcode

    def __len__(self) -> int:
        return len(self._ordered)


@lru_cache(maxsize=None)
def get_default_registry() -> CommandRegistry:
    """Shared registry built from the packaged command table."""
    return CommandRegistry()
