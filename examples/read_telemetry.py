#!/usr/bin/env python3
"""Example: attach to a PMBus power supply and print its identity and telemetry."""

import sys

from pmbus_peek import DeviceSession
from pmbus_peek.errors import AdapterError, BusIOError, CodecError


def main() -> None:
    bus = 1  # change to your I2C bus number or /dev/i2c-N path
    address = 0x58

    try:
        with DeviceSession.open(bus, address) as psu:
            psu.scan()
            print(f"revision: {psu.revision_info()}")

            # Inventory strings (MFR_ID, MFR_MODEL, ...)
            for tag, text in psu.read_inventory().items():
                print(f"{tag} = {text}")

            # Single decoded reading
            vout = psu.read_value(psu.registry.find("read_vout").opcode)
            if vout is not None:
                print(f"read_vout = {vout.value} {vout.units.label}")

            # Everything the device says it can report
            psu.discover_all()
            for reading in psu.read_values():
                print(f"{reading.command.tag} = {reading.value} ({reading.format})")

            # Change the output voltage (example; uncomment if your device allows)
            # psu.write_value(psu.registry.find("vout_command").opcode, 12.0)

            # Explain a command
            print(f"describe(read_temperature_1): {psu.describe(0x8D)}")
    except AdapterError as e:
        print(f"Adapter error: {e}", file=sys.stderr)
        sys.exit(1)
    except CodecError as e:
        print(f"Decode error: {e}", file=sys.stderr)
        sys.exit(1)
    except BusIOError as e:
        print(f"Bus error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
