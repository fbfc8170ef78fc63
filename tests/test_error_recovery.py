import os
import sys
import unittest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import glorious_protocol as gp
from staging_manager import StagingManager
from transaction_controller import SessionState, TransactionController
from test_transaction_controller import make_config_bytes, make_device


class TestErrorRecovery(unittest.TestCase):
    def test_short_version_response_stops_session(self):
        """A 5-byte version response is fatal and nothing else is sent."""
        device = make_device(version_response=bytes([0x05, 0x01]) + b"V1.")
        controller = TransactionController(device)

        with self.assertRaises(gp.TransportError):
            controller.load()

        device.send_feature_report.assert_called_once_with(bytes([0x05, 0x01, 0, 0, 0, 0]))
        self.assertEqual(controller.state, SessionState.FAILED)
        with self.assertRaises(RuntimeError):
            controller.prime_config()

    def test_short_version_send(self):
        device = make_device()
        device.send_feature_report.side_effect = [5]
        controller = TransactionController(device)
        with self.assertRaises(gp.TransportError):
            controller.query_version()
        device.get_feature_report.assert_not_called()

    def test_prime_send_failure(self):
        device = make_device()
        device.send_feature_report.side_effect = [6, gp.TransportError("broken pipe")]
        controller = TransactionController(device)
        controller.query_version()
        with self.assertRaises(gp.TransportError):
            controller.prime_config()
        self.assertEqual(device.get_feature_report.call_count, 1)

    def test_config_read_error(self):
        device = make_device()
        controller = TransactionController(device)
        controller.query_version()
        controller.prime_config()
        device.get_feature_report.side_effect = gp.TransportError("read error")
        with self.assertRaises(gp.TransportError):
            controller.read_config()
        self.assertEqual(controller.state, SessionState.FAILED)

    def test_malformed_config(self):
        device = make_device(config_bytes=bytes(64))
        controller = TransactionController(device)
        with self.assertRaises(gp.MalformedConfig):
            controller.load()
        self.assertIsNone(controller.config)

    def test_short_config_write(self):
        device = make_device()
        controller = TransactionController(device)
        controller.load()
        controller.apply_edits()
        device.send_feature_report.side_effect = lambda data: len(data) - 1
        with self.assertRaises(gp.TransportError):
            controller.commit()
        self.assertEqual(controller.state, SessionState.FAILED)
        # No automatic retry
        self.assertEqual(device.send_feature_report.call_count, 3)

    def test_invalid_edit_rejected_before_device(self):
        """Bad input is refused at staging time, before any transaction."""
        device = make_device()
        staging = StagingManager()
        with self.assertRaises(gp.InvalidArgument):
            staging.stage_change("dpi", [800, 0])
        self.assertFalse(staging.has_changes())
        device.send_feature_report.assert_not_called()

    def test_xy_pair_on_non_xy_device(self):
        device = make_device()
        controller = TransactionController(device)
        controller.load()
        staging = StagingManager()
        staging.stage_change("dpi", [(800, 400)])
        with self.assertRaises(gp.InvalidArgument):
            controller.apply_edits(staging)
        self.assertEqual(controller.state, SessionState.CONFIG_LOADED)
        self.assertEqual(gp.encode_config(controller.config), make_config_bytes())

    def test_listen_read_error(self):
        device = make_device()
        device.read_input.side_effect = [
            bytes([0x07, 0x01, 0x60, 0x07, 0x07, 0, 0, 0]),
            gp.TransportError("device disconnected"),
        ]
        controller = TransactionController(device)
        controller.load()
        reports = controller.listen()
        self.assertEqual(next(reports).active_slot, 0)
        with self.assertRaises(gp.TransportError):
            next(reports)
        self.assertEqual(controller.state, SessionState.FAILED)

    def test_listen_short_read(self):
        device = make_device()
        device.read_input.return_value = bytes([0x07, 0x01, 0x60])
        controller = TransactionController(device)
        controller.load()
        with self.assertRaises(gp.TransportError):
            next(controller.listen())

    def test_device_closed_after_failure(self):
        device = make_device(version_response=b"")
        with self.assertRaises(gp.TransportError):
            with TransactionController(device) as controller:
                controller.load()
        device.close.assert_called_once()


if __name__ == '__main__':
    unittest.main()
