"""Tests for the probe connection lifecycle."""
import time
import unittest
from unittest.mock import MagicMock

from latency_probe.config import ProbeConfig
from latency_probe.errors import DeviceNotFound, PermissionDenied, ProtocolError, TransportError
from latency_probe.mock import (
    MOCK_PROBE,
    MockDetachMonitor,
    MockDeviceEnumerator,
    MockPermissionBroker,
    MockTimeSyncEngine,
    MockTransport,
    make_trigger_frame,
)
from latency_probe.models import DeviceInfo, TriggerMessage
from latency_probe.probe.manager import ConnectionManager
from latency_probe.protocol.commands import CMD_PING
from latency_probe.transport.detach import SerialDetachMonitor
from latency_probe.transport.serial import SerialTransport

OTHER_DEVICE = DeviceInfo(name="/dev/ttyUSB0", vendor_id=0x0403, product_id=0x6001, port="/dev/ttyUSB0")


def wait_until(predicate, timeout=1.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.01)
    return True


class ConnectionManagerTestCase(unittest.TestCase):

    def setUp(self):
        self.transport = MockTransport()
        self.enumerator = MockDeviceEnumerator()
        self.permissions = MockPermissionBroker()
        self.engine = MockTimeSyncEngine()
        self.detach = MockDetachMonitor()
        self.manager = self.make_manager()

    def tearDown(self):
        self.manager.close()

    def make_manager(self):
        return ConnectionManager(
            self.transport,
            self.enumerator,
            self.permissions,
            self.engine,
            detach_monitor=self.detach,
            config=ProbeConfig(read_timeout_ms=50),
        )


class TestConnect(ConnectionManagerTestCase):

    def test_connect(self):
        future = self.manager.connect()
        self.assertIsNotNone(future)
        self.assertTrue(future.result(timeout=1.0))

        self.assertTrue(self.manager.is_connected())
        self.assertEqual(self.manager.device, MOCK_PROBE)
        self.assertEqual(self.transport.handles[0].claimed, 1)
        self.assertIn(MOCK_PROBE.name, self.detach.watched)

    def test_connect_runs_handshake(self):
        self.manager.connect_and_wait(timeout=1.0)
        self.assertEqual(self.transport.write_log, [b'V'])
        self.assertEqual(self.engine.sync_calls, 1)
        self.assertTrue(self.manager.clock.clock_state.synced)

    def test_connect_logs_candidates(self):
        self.enumerator.devices = [OTHER_DEVICE, MOCK_PROBE]
        with self.assertLogs("latency_probe.transport.finder", level="INFO") as logs:
            self.manager.connect()
        output = "\n".join(logs.output)
        self.assertIn("Found 2 connected USB devices", output)
        self.assertIn(f"{MOCK_PROBE.name}, VID:PID - 16c0:483, 2 interfaces <- using this one.", output)
        self.assertEqual(self.manager.device, MOCK_PROBE)

    def test_no_devices(self):
        self.enumerator.devices = []
        self.assertIsNone(self.manager.connect())
        self.assertFalse(self.manager.is_connected())
        self.assertEqual(self.transport.handles, [])

    def test_no_matching_device(self):
        self.enumerator.devices = [OTHER_DEVICE]
        with self.assertLogs("latency_probe.probe.manager", level="INFO") as logs:
            self.assertIsNone(self.manager.connect())
        self.assertIn("Probe not found.", logs.output[-1])

    def test_custom_selector(self):
        self.enumerator.devices = [OTHER_DEVICE, MOCK_PROBE]
        future = self.manager.connect(selector=lambda devices: devices[0])
        self.assertTrue(future.result(timeout=1.0))
        self.assertEqual(self.manager.device, OTHER_DEVICE)

    def test_enumeration_failure(self):
        enumerator = MagicMock()
        enumerator.list_connected_devices.side_effect = OSError("no usb")
        manager = ConnectionManager(self.transport, enumerator, self.permissions, self.engine)
        with self.assertLogs("latency_probe.probe.manager", level="ERROR"):
            self.assertIsNone(manager.connect())

    def test_permission_denied(self):
        self.permissions.granted = False
        future = self.manager.connect()
        self.assertFalse(future.result(timeout=1.0))
        self.assertFalse(self.manager.is_connected())
        self.assertEqual(self.transport.handles, [])

    def test_deferred_permission(self):
        self.permissions.defer = True
        future = self.manager.connect()
        self.assertFalse(future.done())
        self.assertFalse(self.manager.is_connected())

        self.permissions.resolve(True)
        self.assertTrue(future.result(timeout=1.0))
        self.assertTrue(self.manager.is_connected())

    def test_permission_request_raises(self):
        permissions = MagicMock()
        permissions.request_permission.side_effect = RuntimeError("broker gone")
        manager = ConnectionManager(self.transport, self.enumerator, permissions, self.engine)
        with self.assertLogs("latency_probe.probe.manager", level="ERROR"):
            future = manager.connect()
        self.assertFalse(future.result(timeout=1.0))

    def test_open_failure(self):
        self.transport = MockTransport(fail_open=True)
        manager = self.make_manager()
        with self.assertLogs("latency_probe.probe.manager", level="ERROR"):
            self.assertFalse(manager.connect().result(timeout=1.0))
        self.assertFalse(manager.is_connected())
        self.assertEqual(self.detach.watched, {})

    def test_claim_failure_closes_handle(self):
        self.transport = MockTransport(fail_claim=True)
        manager = self.make_manager()
        with self.assertLogs("latency_probe.probe.manager", level="ERROR"):
            self.assertFalse(manager.connect().result(timeout=1.0))
        self.assertFalse(self.transport.handles[0].open)
        self.assertIsNone(manager.device)

    def test_handshake_failure_disconnects(self):
        self.transport.set_reply('V', b'v1\n')
        with self.assertLogs("latency_probe.probe.manager", level="ERROR") as logs:
            self.assertFalse(self.manager.connect().result(timeout=1.0))
        self.assertIn("Unable to communicate with probe", logs.output[0])

        self.assertFalse(self.manager.is_connected())
        self.assertFalse(self.transport.handles[0].open)
        self.assertEqual(self.detach.watched, {})

    def test_sync_failure_still_connects(self):
        """Clock sync is best effort; a failed sync leaves the probe usable."""
        self.engine.fail = True
        self.assertTrue(self.manager.connect().result(timeout=1.0))
        state = self.manager.clock.clock_state
        self.assertFalse(state.synced)
        self.assertEqual(state.last_error, "Sync round trip failed")

    def test_connect_when_connected(self):
        self.manager.connect_and_wait(timeout=1.0)
        with self.assertLogs("latency_probe.probe.manager", level="WARNING"):
            self.assertTrue(self.manager.connect().result(timeout=1.0))
        self.assertEqual(len(self.transport.handles), 1)
        self.assertEqual(self.transport.write_log, [b'V'])


class TestConnectAndWait(ConnectionManagerTestCase):

    def test_not_found(self):
        self.enumerator.devices = []
        with self.assertRaises(DeviceNotFound):
            self.manager.connect_and_wait(timeout=1.0)

    def test_denied(self):
        self.permissions.granted = False
        with self.assertRaises(PermissionDenied):
            self.manager.connect_and_wait(timeout=1.0)

    def test_version_mismatch(self):
        self.transport.set_reply('V', b'v1\n')
        with self.assertRaises(ProtocolError) as ctx:
            self.manager.connect_and_wait(timeout=1.0)
        self.assertEqual(ctx.exception.actual, "1")

    def test_open_failure(self):
        self.transport = MockTransport(fail_open=True)
        self.manager = self.make_manager()
        with self.assertRaises(TransportError):
            self.manager.connect_and_wait(timeout=1.0)

    def test_error_cleared_after_success(self):
        self.permissions.granted = False
        with self.assertRaises(PermissionDenied):
            self.manager.connect_and_wait(timeout=1.0)

        self.permissions.granted = True
        self.manager.connect_and_wait(timeout=1.0)
        self.assertTrue(self.manager.is_connected())


class TestConnectCallbacks(ConnectionManagerTestCase):

    def test_callback_runs_once_after_connect(self):
        calls = []
        self.manager.register_connect_callback(lambda: calls.append(1))
        self.assertEqual(calls, [])

        self.manager.connect_and_wait(timeout=1.0)
        self.assertEqual(calls, [1])

        self.manager.disconnect()
        self.manager.connect_and_wait(timeout=1.0)
        self.assertEqual(calls, [1])

    def test_callback_runs_immediately_when_connected(self):
        self.manager.connect_and_wait(timeout=1.0)
        calls = []
        self.manager.register_connect_callback(lambda: calls.append(1))
        self.assertEqual(calls, [1])

    def test_callback_not_run_when_connect_fails(self):
        calls = []
        self.manager.register_connect_callback(lambda: calls.append(1))
        self.transport.set_reply('V', b'v1\n')
        self.assertFalse(self.manager.connect().result(timeout=1.0))
        self.assertEqual(calls, [])

        self.transport.set_reply('V', b'v2\n')
        self.manager.connect_and_wait(timeout=1.0)
        self.assertEqual(calls, [1])

    def test_callback_error_does_not_block_others(self):
        calls = []

        def broken():
            raise RuntimeError("callback failed")

        self.manager.register_connect_callback(broken)
        self.manager.register_connect_callback(lambda: calls.append(2))
        with self.assertLogs("latency_probe.probe.manager", level="ERROR"):
            self.manager.connect_and_wait(timeout=1.0)
        self.assertEqual(calls, [2])

    def test_callbacks_run_in_order(self):
        calls = []
        for i in range(3):
            self.manager.register_connect_callback(lambda i=i: calls.append(i))
        self.manager.connect_and_wait(timeout=1.0)
        self.assertEqual(calls, [0, 1, 2])


class TestDisconnect(ConnectionManagerTestCase):

    def setUp(self):
        super().setUp()
        self.manager.connect_and_wait(timeout=1.0)

    def test_disconnect(self):
        handle = self.transport.handles[0]
        self.manager.disconnect()

        self.assertFalse(self.manager.is_connected())
        self.assertIsNone(self.manager.device)
        self.assertFalse(handle.open)
        self.assertEqual(self.detach.watched, {})

    def test_disconnect_twice(self):
        self.manager.disconnect()
        self.manager.disconnect()
        self.assertFalse(self.manager.is_connected())

    def test_disconnect_while_listening(self):
        """The listener is joined before the handle is closed."""
        self.manager.listener.start()
        self.assertTrue(wait_until(self.manager.listener.is_running))

        self.manager.disconnect()

        self.assertTrue(self.manager.listener.is_stopped())
        self.assertFalse(self.manager.is_connected())
        self.assertEqual(self.transport.reads_after_close, 0)
        self.assertFalse(self.manager._link.reader.is_held())

    def test_commands_fail_after_disconnect(self):
        self.manager.disconnect()
        with self.assertRaises(TransportError):
            self.manager.channel.command(CMD_PING)
        with self.assertRaises(TransportError):
            self.manager.listener.start()

    def test_detach(self):
        self.detach.detach(MOCK_PROBE)
        self.assertFalse(self.manager.is_connected())
        self.assertFalse(self.transport.handles[0].open)

    def test_detach_while_listening(self):
        self.manager.listener.start()
        self.assertTrue(wait_until(self.manager.listener.is_running))

        self.detach.detach(MOCK_PROBE)

        self.assertTrue(self.manager.listener.is_stopped())
        self.assertFalse(self.manager.is_connected())

    def test_detach_of_other_device_ignored(self):
        self.manager._on_detached(OTHER_DEVICE)
        self.assertTrue(self.manager.is_connected())

    def test_reconnect(self):
        self.manager.disconnect()
        self.manager.connect_and_wait(timeout=1.0)
        self.assertTrue(self.manager.is_connected())
        self.assertEqual(len(self.transport.handles), 2)
        self.assertTrue(self.transport.handles[1].open)

    def test_close(self):
        self.manager.close()
        self.assertFalse(self.manager.is_connected())
        self.assertTrue(self.detach.shut_down)

    def test_context_manager(self):
        manager = self.make_manager()
        with manager:
            manager.connect_and_wait(timeout=1.0)
            self.assertTrue(manager.is_connected())
        self.assertFalse(manager.is_connected())


class TestConnectedProbe(ConnectionManagerTestCase):
    """Commands and trigger events through a connected manager."""

    def setUp(self):
        super().setUp()
        self.manager.connect_and_wait(timeout=1.0)

    def test_command(self):
        self.assertEqual(self.manager.channel.command(CMD_PING), "")
        self.assertEqual(self.transport.write_log, [b'V', b'P'])

    def test_trigger_events(self):
        received = []
        self.manager.listener.set_handler(received.append)
        self.manager.listener.start()
        self.assertTrue(wait_until(self.manager.listener.is_running))

        self.transport.inject(make_trigger_frame('L', 1500, 1, 3))
        self.assertTrue(wait_until(lambda: received))
        self.assertEqual(received[0], TriggerMessage('L', 1500, 1, 3))

        self.manager.listener.stop()
        self.assertEqual(self.manager.channel.command(CMD_PING), "")

    def test_drift_check(self):
        report = self.manager.clock.check_drift()
        self.assertEqual(report.drift, 50)


class VersionHookTransport(MockTransport):
    """Runs a hook when the version command is written, mid-handshake."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.on_version = None

    def bulk_write(self, handle, endpoint, data, timeout_ms):
        if data == b'V' and self.on_version is not None:
            self.on_version()
        return super().bulk_write(handle, endpoint, data, timeout_ms)


class TestCallbackDuringHandshake(ConnectionManagerTestCase):
    """Callbacks registered before the handshake finishes wait for its outcome."""

    def setUp(self):
        self.transport = VersionHookTransport()
        self.enumerator = MockDeviceEnumerator()
        self.permissions = MockPermissionBroker()
        self.engine = MockTimeSyncEngine()
        self.detach = MockDetachMonitor()
        self.manager = self.make_manager()
        self.calls = []

    def register(self):
        self.manager.register_connect_callback(lambda: self.calls.append("fired"))

    def test_not_fired_when_handshake_fails(self):
        self.transport.on_version = self.register
        self.transport.set_reply('V', b'v1\n')

        self.assertFalse(self.manager.connect().result(timeout=1.0))
        self.assertEqual(self.calls, [])

        self.transport.on_version = None
        self.transport.set_reply('V', b'v2\n')
        self.manager.connect_and_wait(timeout=1.0)
        self.assertEqual(self.calls, ["fired"])

    def test_fired_once_after_handshake_succeeds(self):
        def register_and_check():
            self.register()
            self.assertEqual(self.calls, [])

        self.transport.on_version = register_and_check
        self.manager.connect_and_wait(timeout=1.0)
        self.assertEqual(self.calls, ["fired"])

    def test_not_fired_immediately_after_disconnect(self):
        self.manager.connect_and_wait(timeout=1.0)
        self.manager.disconnect()
        self.register()
        self.assertEqual(self.calls, [])


class TestConnectAttemptErrors(ConnectionManagerTestCase):
    """Each connection attempt reports its own failure."""

    def test_overlapping_attempts_keep_their_errors(self):
        self.transport = MockTransport(fail_open=True)
        self.permissions.defer = True
        manager = self.make_manager()

        first = manager.connect()
        second = manager.connect()
        first_permission, second_permission = self.permissions.pending

        second_permission.set_result(False)
        with self.assertLogs("latency_probe.probe.manager", level="ERROR"):
            first_permission.set_result(True)

        self.assertFalse(first.result(timeout=1.0))
        self.assertFalse(second.result(timeout=1.0))
        self.assertIsInstance(first.error, TransportError)
        self.assertIsInstance(second.error, PermissionDenied)

    def test_success_has_no_error(self):
        future = self.manager.connect()
        self.assertTrue(future.result(timeout=1.0))
        self.assertIsNone(future.error)

    def test_connect_and_wait_raises_own_error(self):
        """A denied attempt still pending does not leak into a later one."""
        self.permissions.defer = True
        stale = self.manager.connect()
        self.permissions.defer = False

        self.transport.set_reply('V', b'v1\n')
        with self.assertRaises(ProtocolError):
            self.manager.connect_and_wait(timeout=1.0)

        self.permissions.pending[0].set_result(False)
        self.assertIsInstance(stale.error, PermissionDenied)

    def test_other_device_while_connected(self):
        self.enumerator.devices = [MOCK_PROBE, OTHER_DEVICE]
        self.manager.connect_and_wait(timeout=1.0)

        with self.assertLogs("latency_probe.probe.manager", level="WARNING"):
            future = self.manager.connect_device(OTHER_DEVICE)
        self.assertFalse(future.result(timeout=1.0))
        self.assertIsInstance(future.error, TransportError)
        self.assertEqual(self.manager.device, MOCK_PROBE)


class TestForSerial(unittest.TestCase):

    def test_builds_serial_collaborators(self):
        config = ProbeConfig(baudrate=9600, detach_poll_interval_s=0.5)
        manager = ConnectionManager.for_serial(MockTimeSyncEngine(), config)
        self.assertIsInstance(manager._link.transport, SerialTransport)
        self.assertIsInstance(manager._detach_monitor, SerialDetachMonitor)
        self.assertFalse(manager.is_connected())
        manager.close()


if __name__ == '__main__':
    unittest.main()
