#!/usr/bin/env python3
"""Example: poll a few telemetry commands on an interval; graceful shutdown on Ctrl+C."""

import sys
import time

from pmbus_peek import DeviceSession
from pmbus_peek.errors import AdapterError, BusIOError


def main() -> None:
    bus = 1  # change to your I2C bus number or /dev/i2c-N path
    address = 0x58
    tags = ["read_vin", "read_vout", "read_temperature_1"]
    interval_s = 1.0

    try:
        with DeviceSession.open(bus, address) as psu:
            psu.scan()
            print(f"Polling {tags} every {interval_s}s (Ctrl+C to stop)...")
            while True:
                snapshot = {}
                for tag in tags:
                    reading = psu.read_value(psu.registry.find(tag).opcode)
                    snapshot[tag] = reading.value if reading is not None else None
                print(snapshot)
                time.sleep(interval_s)
    except KeyboardInterrupt:
        print("\nStopped.")
    except AdapterError as e:
        print(f"Adapter error: {e}", file=sys.stderr)
        sys.exit(1)
    except BusIOError as e:
        print(f"Bus error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
