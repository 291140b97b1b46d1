#!/usr/bin/env python3
"""
Interactive Probe Test Script.

Connects to the first attached probe, prints its clock state, then listens
for laser trigger events for a few seconds.

The clock offset estimator is not part of this library; this script uses a
stand-in engine that takes the host time at sync as the probe's zero and
reports no error bounds.
"""

import logging
import sys
import time
from pathlib import Path

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from latency_probe import ConnectionManager, ProbeError, TimeSyncEngine, micro_time
from latency_probe.protocol.commands import CMD_AUTO_LASER_OFF, CMD_AUTO_LASER_ON, CMD_PING

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)


class HostZeroEngine(TimeSyncEngine):
    def sync_round_trip(self, handle, endpoint_out, endpoint_in):
        return micro_time()

    def refresh_bounds(self, handle):
        pass

    def min_error_micros(self):
        return 0

    def max_error_micros(self):
        return 0


def on_trigger(msg):
    print(f"Trigger {msg.tag}: t={msg.timestamp} value={msg.value} count={msg.sequence_count}")


def main():
    print("Initializing Connection Manager...")
    manager = ConnectionManager.for_serial(HostZeroEngine())
    manager.register_connect_callback(lambda: print("Probe ready."))

    print("\nAttempting to connect (auto-detect)...")
    try:
        manager.connect_and_wait(timeout=5.0)
    except ProbeError as e:
        print(f"Failed to connect: {e}")
        manager.close()
        return

    print(f"Connected to {manager.device.describe()}")
    print(f"Clock state: {manager.clock.clock_state}")

    try:
        manager.channel.command(CMD_PING)
        print("Ping acknowledged.")

        manager.channel.command(CMD_AUTO_LASER_ON)
        manager.listener.set_handler(on_trigger)
        manager.listener.start()

        print("\nListening for laser events for 10 seconds (Ctrl+C to stop)...")
        time.sleep(10)

    except KeyboardInterrupt:
        print("\nInterrupted by user.")
    finally:
        manager.listener.stop()
        if manager.is_connected():
            manager.channel.command(CMD_AUTO_LASER_OFF)
            print(manager.clock.check_drift().describe())
        print("\nDisconnecting...")
        manager.close()
        print("Done.")


if __name__ == "__main__":
    main()
