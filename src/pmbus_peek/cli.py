#!/usr/bin/env python3
"""Command-line front end for pmbus-peek using Typer."""

import json
import logging
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from . import __version__  # type: ignore
from .errors import AdapterError, BusIOError, InvalidCommandError, UnknownCommandError
from .normalize import mfr_specific, normalize_address
from .session import DeviceSession
from .types import CommandCode, Reading

app = typer.Typer(
    name="pmbus-peek",
    help="Inspect a PMBus device: identity, status, supported commands and attribute values.",
    add_completion=False,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Shared options and helpers
# ============================================================================

BusOption = Annotated[
    str,
    typer.Option("--bus", "-b", help="I2C bus adapter: device path or bus number", envvar="PMBUS_BUS"),
]
ClearOption = Annotated[
    bool,
    typer.Option("--clear", "-C", help="Clear all status flags (CLEAR_FAULTS)"),
]
ForceOption = Annotated[
    bool,
    typer.Option("--force", "-f", help="Bypass 'address in use' checks"),
]
PageOption = Annotated[
    Optional[str],
    typer.Option("--page", "-g", help="PAGE number to select before reading (0-255)"),
]
ListOption = Annotated[
    bool,
    typer.Option("--list", "-l", help="List device capabilities and supported commands"),
]
MfrOption = Annotated[
    Optional[int],
    typer.Option("--mfr", "-m", help="Issue the no-data command MFR_SPECIFIC_NN (0-45)"),
]
PecOption = Annotated[
    bool,
    typer.Option("--pec", "-p", help="Enable PEC, if the adapter and device support it", envvar="PMBUS_PEC"),
]
ShowOption = Annotated[
    bool,
    typer.Option("--show", "-s", help="Show device status and attribute values"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]

APP_PROFILE_NAMES = {
    1: "Server AC-DC Power Supply",
    2: "DC-DC Converters for Microprocessor Power and other Computer Applications",
    3: "DC-DC Converters for General-Purpose Use",
}

# Bit names, most significant bit first
STATUS_WORD_BITS = (
    "vout", "iout", "vin", "mfr", "power_good#", "fan", "other", "unknown",
    "busy", "off", "vout_overflow", "iout_overflow", "vin_underflow", "temperature", "comm/memory/logic", "unspecified",
)
STATUS_DETAIL_BITS: dict[CommandCode, tuple[str, ...]] = {
    CommandCode.STATUS_VOUT: (
        "Output Overvoltage Fault", "Output Overvoltage Warning", "Output Undervoltage Warning",
        "Output Undervoltage Fault", "Attempted to exceed VOUT_MAX", "TON_MAX_FAULT", "TOFF_MAX_WARNING",
        "VOUT Tracking Error",
    ),
    CommandCode.STATUS_IOUT: (
        "Output Overcurrent Fault", "Output Overcurrent and Low Voltage Fault", "Output Overcurrent Warning",
        "Output Undercurrent Fault", "Current Share Fault", "In Power Limiting Mode", "Output Overpower Fault",
        "Output Overpower Warning",
    ),
    CommandCode.STATUS_INPUT: (
        "Input Overvoltage Fault", "Input Overvoltage Warning", "Input Undervoltage Warning",
        "Input Undervoltage Fault", "Unit Off for Insufficient Input Voltage", "Input Overcurrent Fault",
        "Input Overcurrent Warning", "Input Overpower Warning",
    ),
    CommandCode.STATUS_MFR_SPECIFIC: tuple(f"mfr_status_{i}" for i in range(7, -1, -1)),
    CommandCode.STATUS_FANS_1_2: (
        "fan 1 fault", "fan 2 fault", "fan 1 warning", "fan 2 warning",
        "fan 1 speed override", "fan 2 speed override", "airflow fault", "airflow warning",
    ),
    CommandCode.STATUS_FANS_3_4: (
        "fan 3 fault", "fan 4 fault", "fan 3 warning", "fan 4 warning",
        "fan 3 speed override", "fan 4 speed override", "(reserved)", "(reserved)",
    ),
    CommandCode.STATUS_OTHER: (
        "(reserved)", "(reserved)", "Input A Fuse or Circuit Breaker Fault", "Input B Fuse or Circuit Breaker Fault",
        "Input A OR-ing Device Fault", "Input B OR-ing Device Fault", "Output OR-ing Device Fault", "(reserved)",
    ),
    CommandCode.STATUS_TEMPERATURE: (
        "overtemp fault", "overtemp warning", "undertemp warning", "undertemp fault",
        "(reserved)", "(reserved)", "(reserved)", "(reserved)",
    ),
    CommandCode.STATUS_CML: (
        "invalid command", "invalid data", "PEC", "memory fault",
        "processor fault", "(reserved)", "other comm fault", "other memory/logic fault",
    ),
}


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbose flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if not verbose else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def parse_bus(value: str) -> int | str:
    """Bus number (1, 0x1) or adapter device path (/dev/i2c-1)."""
    v = value.strip()
    if not v:
        raise ValueError("Bus cannot be empty")
    try:
        return int(v, 0)
    except ValueError:
        return v


def parse_page(value: str) -> int:
    """Parse a PAGE number given in hex, octal or decimal."""
    try:
        page = int(value.strip(), 0)
    except ValueError:
        raise ValueError(f"{value!r} is not a valid PAGE number") from None
    if not 0 <= page <= 0xFF:
        raise ValueError(f"{value!r} is not a valid PAGE number")
    return page


def bit_names(value: int, names: tuple[str, ...]) -> list[str]:
    """Names of the set bits in `value`; `names` lists the most significant bit first."""
    width = len(names)
    return [names[width - 1 - bit] for bit in range(width - 1, -1, -1) if value & (1 << bit)]


def format_reading(reading: Reading) -> str:
    """Value for display: decoded number with units, or the raw word for opaque formats."""
    if reading.value is None:
        text = f"{reading.raw:#06x} {reading.format}"
    elif isinstance(reading.value, float):
        text = f"{reading.value:g}"
    else:
        text = str(reading.value)
    label = reading.units.label
    return f"{text} {label}" if label and reading.value is not None else text


def reading_to_dict(reading: Reading) -> dict[str, Any]:
    return {
        "opcode": reading.command.opcode,
        "tag": reading.command.tag,
        "raw": reading.raw,
        "value": reading.value,
        "format": reading.format,
        "units": reading.units.label,
    }


# ============================================================================
# Report collection (no output here)
# ============================================================================


def collect_summary(session: DeviceSession) -> dict[str, Any]:
    """Identity, revision, capability and application profiles."""
    summary: dict[str, Any] = {
        "bus": session.bus_name,
        "address": session.address,
        "inventory": session.read_inventory(),
        "revision": None,
        "capability": session.capability_info(),
        "app_profiles": None,
    }
    revision = session.revision_info()
    if revision is not None:
        summary["revision"] = {"raw": session.revision, "part1": revision[0], "part2": revision[1]}
    profiles = session.read_app_profiles()
    if profiles is not None:
        summary["app_profiles"] = [
            {"id": pid, "name": APP_PROFILE_NAMES.get(pid, "(reserved)"), "revision": f"{major}.{minor}"}
            for pid, major, minor in profiles
            if pid != 0
        ]
    return summary


def collect_status(session: DeviceSession) -> dict[str, Any] | None:
    status = session.read_status()
    if status is None:
        return None
    details = {}
    for opcode, value in session.read_status_details(status).items():
        details[opcode.name[len("STATUS_"):]] = {
            "raw": value,
            "flags": bit_names(value, STATUS_DETAIL_BITS[opcode]),
        }
    return {"raw": status, "flags": bit_names(status, STATUS_WORD_BITS), "details": details}


# ============================================================================
# Text rendering
# ============================================================================


def echo_summary(summary: dict[str, Any], discovery_disabled: bool) -> None:
    typer.echo(f"PMBus slave on {summary['bus']}, address {summary['address']:#04x}\n")

    inventory = summary["inventory"]
    if inventory:
        typer.echo("Inventory Data:")
        for tag, text in inventory.items():
            typer.echo(f"  {tag + ':':<24} {text}")
        typer.echo("")

    revision = summary["revision"]
    if revision is not None:
        typer.echo(
            f"PMBus revisions ({revision['raw']:#04x}):  part I, ver {revision['part1']}; part II, ver {revision['part2']}"
        )
    capability = summary["capability"]
    if capability is not None and capability["raw"] & 0xF0:
        parts = [name for name, on in (("PEC", capability["pec"]), ("SMBALERT#", capability["smbalert"])) if on]
        parts.append(capability["bus_speed"])
        typer.echo(f"Capabilities ({capability['raw']:#04x}):  {', '.join(parts)}")
    typer.echo("")

    profiles = summary["app_profiles"]
    if profiles is not None:
        typer.echo("Application Profiles:")
        if not profiles:
            typer.echo("  No Application Profiles")
        for profile in profiles:
            typer.echo(f"  {profile['name']}: rev {profile['revision']}")
        typer.echo("")

    if discovery_disabled:
        typer.echo("Device can't QUERY for supported commands")


def echo_status(status: dict[str, Any] | None) -> None:
    if status is None:
        return
    typer.echo(f"Status {status['raw']:04x}: {', '.join(status['flags'])}")
    for label, detail in status["details"].items():
        typer.echo(f"  {label:<21} {detail['raw']:02x}: {', '.join(detail['flags'])}")
    typer.echo("")


def echo_values(readings: list[Reading]) -> None:
    typer.echo("Attributes:")
    for reading in readings:
        typer.echo(f"  {reading.command.tag:<25} {format_reading(reading)}")
    typer.echo("")


def echo_commands(commands: list[dict[str, Any]]) -> None:
    typer.echo("Supported Commands:")
    for info in commands:
        access = ("r" if info["read"] else " ") + ("w" if info["write"] else " ")
        line = f"  {info['opcode']:02x} {info['tag']:<25} {access} {info['format']}"
        if info["units"]:
            line += f" {info['units']}"
        typer.echo(line)
        for direction, c in info.get("coefficients", {}).items():
            typer.echo(f"      {direction}: m={c['m']} b={c['b']} R={c['R']}")
    typer.echo("")


# ============================================================================
# Command
# ============================================================================


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"pmbus-peek {__version__}")
        raise typer.Exit(0)


@app.command()
def peek(
    address: Annotated[
        str,
        typer.Argument(help="SMBus address in hex, decimal or octal (0x09-0x77, with exceptions)", envvar="PMBUS_ADDRESS"),
    ],
    bus: BusOption = "/dev/i2c-0",
    clear: ClearOption = False,
    force: ForceOption = False,
    page: PageOption = None,
    list_commands: ListOption = False,
    mfr: MfrOption = None,
    pec: PecOption = False,
    show: ShowOption = False,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """
    Scan one PMBus device and report what it supports.

    Without --show or --list the device is only checked for presence (and
    PAGE, --clear, --mfr applied). --show adds status and attribute values;
    --list adds every supported command with its wire format.
    """
    setup_logging(verbose)

    try:
        addr = normalize_address(address)
        bus_id = parse_bus(bus)
        page_number = parse_page(page) if page is not None else None
        mfr_opcode = mfr_specific(mfr) if mfr is not None else None
    except (ValueError, InvalidCommandError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)

    try:
        with DeviceSession.open(bus_id, addr, force=force, enable_pec=pec) as session:
            session.scan()
            if page_number is not None:
                session.set_page(page_number)

            if show or list_commands:
                report = collect_summary(session)
                session.discover_all()
                report["discovery"] = not session.discovery_disabled
                if show:
                    report["status"] = collect_status(session)
                    readings = session.read_values()
                    report["values"] = [reading_to_dict(r) for r in readings]
                if list_commands:
                    report["commands"] = [session.describe(d.opcode) for d in session.supported_commands()]

                if json_output:
                    typer.echo(json.dumps(report, indent=2))
                else:
                    echo_summary(report, session.discovery_disabled)
                    if show:
                        echo_status(report["status"])
                        echo_values(readings)
                    if list_commands:
                        echo_commands(report["commands"])

            if clear:
                session.clear_faults()

            if mfr_opcode is not None:
                if session.send_mfr_specific(mfr):  # type: ignore[arg-type]
                    logger.info("Issued mfr_specific command %#04x", mfr_opcode)
                else:
                    typer.echo(f"Unsupported mfr_specific command: {mfr_opcode:#04x}")
    except UnknownCommandError as e:
        typer.echo(f"Error: Unknown command: {e}", err=True)
        raise typer.Exit(2)
    except AdapterError as e:
        typer.echo(f"Error: Adapter error: {e}", err=True)
        raise typer.Exit(3)
    except BusIOError as e:
        typer.echo(f"Error: Bus error: {e}", err=True)
        raise typer.Exit(3)
    except Exception as e:
        typer.echo(f"Error: Unexpected error: {e}", err=True)
        if verbose:
            import traceback
            traceback.print_exc()
        raise typer.Exit(4)


if __name__ == "__main__":
    app()
