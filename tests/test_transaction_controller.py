import os
import sys
import unittest
from unittest.mock import MagicMock

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import glorious_protocol as gp
from staging_manager import StagingManager
from transaction_controller import SessionState, TransactionController


VERSION_RESPONSE = bytes([0x05, 0x01]) + b"V1.2"


def make_config_bytes():
    buf = bytearray(gp.CONFIG_LEN)
    buf[0] = gp.RID_CONFIG
    buf[1] = gp.CMD_PREPARE_CONFIG
    buf[2] = 0x5A            # unknown
    buf[4:10] = b"\x01\x02\x03\x04\x05\x06"
    buf[gp.OFF_ACTIVE_DPI] = 0x07  # slot 0, reserved nibble 7
    buf[gp.OFF_DPI_ENABLED] = 0b111110
    buf[gp.OFF_DPI] = gp.dpi_to_raw(800)
    buf[gp.OFF_LIFT_OFF_DISTANCE] = 0x01
    buf[0x100:0x108] = b"reserved"
    return bytes(buf)


def make_device(config_bytes=None, version_response=VERSION_RESPONSE):
    """MagicMock standing in for GloriousDevice."""
    config_bytes = make_config_bytes() if config_bytes is None else config_bytes
    device = MagicMock()
    device.send_feature_report.side_effect = lambda data: len(data)

    def get_feature_report(report_id, size):
        if report_id == gp.RID_COMMAND:
            return version_response
        return config_bytes

    device.get_feature_report.side_effect = get_feature_report
    return device


class TestTransactionController(unittest.TestCase):
    def setUp(self):
        self.device = make_device()
        self.controller = TransactionController(self.device)

    def test_load_sequence(self):
        config = self.controller.load()

        self.assertEqual(self.controller.firmware_version, "V1.2")
        self.assertEqual(self.controller.state, SessionState.CONFIG_LOADED)
        sent = [c.args[0] for c in self.device.send_feature_report.call_args_list]
        self.assertEqual(sent, [bytes([0x05, 0x01, 0, 0, 0, 0]), bytes([0x05, 0x11, 0, 0, 0, 0])])
        requested = [c.args for c in self.device.get_feature_report.call_args_list]
        self.assertEqual(requested, [(0x05, 6), (0x04, 520)])
        self.assertEqual(config.enabled_slots(), [0, 6, 7])

    def test_commit_writes_edits_and_sentinel(self):
        original = make_config_bytes()
        self.controller.load()
        staging = StagingManager()
        staging.stage_change("dpi", [800, 1600])
        self.controller.apply_edits(staging)
        self.assertEqual(self.controller.state, SessionState.MUTATED)

        sent = self.controller.commit()

        self.assertEqual(sent, gp.CONFIG_LEN)
        self.assertEqual(self.controller.state, SessionState.CONFIG_LOADED)
        frame = self.device.send_feature_report.call_args.args[0]
        self.assertEqual(len(frame), gp.CONFIG_LEN)
        self.assertEqual(frame[gp.OFF_CONFIG_WRITE], gp.CONFIG_WRITE_SENTINEL)
        self.assertEqual(frame[gp.OFF_DPI_ENABLED], 0b11111100)
        self.assertEqual(frame[gp.OFF_DPI + 1], gp.dpi_to_raw(1600))
        changed = {i for i, (a, b) in enumerate(zip(original, frame)) if a != b}
        self.assertEqual(changed, {gp.OFF_CONFIG_WRITE, gp.OFF_DPI_ENABLED, gp.OFF_DPI + 1})

    def test_commit_without_edits(self):
        self.controller.load()
        self.controller.apply_edits()
        self.controller.commit()
        frame = self.device.send_feature_report.call_args.args[0]
        expected = bytearray(make_config_bytes())
        expected[gp.OFF_CONFIG_WRITE] = 0x7B
        self.assertEqual(frame, bytes(expected))

    def test_listen_yields_reports(self):
        self.device.read_input.side_effect = [
            bytes([0x07, 0x01, 0x61, 0x07, 0x07, 0, 0, 0]),
            bytes([0x07, 0x01, 0x62, 0x0F, 0x0F, 0, 0, 0]),
        ]
        self.controller.load()
        reports = self.controller.listen()

        first = next(reports)
        self.assertEqual(self.controller.state, SessionState.LISTENING)
        second = next(reports)
        reports.close()

        self.assertEqual((first.active_slot, first.dpi_x), (1, 800))
        self.assertEqual((second.active_slot, second.dpi_y), (2, 1600))
        self.device.read_input.assert_called_with(gp.CHANGE_REPORT_LEN, -1)
        self.assertEqual(self.controller.state, SessionState.CONFIG_LOADED)

    def test_close_listen_before_first_read(self):
        self.controller.load()
        reports = self.controller.listen()
        reports.close()

        self.assertEqual(self.controller.state, SessionState.CONFIG_LOADED)
        self.device.read_input.assert_not_called()
        self.controller.apply_edits()
        self.assertEqual(self.controller.state, SessionState.MUTATED)

    def test_context_manager_opens_and_closes(self):
        with TransactionController(self.device) as controller:
            controller.load()
        self.device.open.assert_called_once()
        self.device.close.assert_called_once()

    def test_operations_out_of_order(self):
        with self.assertRaises(RuntimeError):
            self.controller.read_config()
        with self.assertRaises(RuntimeError):
            self.controller.commit()
        with self.assertRaises(RuntimeError):
            self.controller.listen()
        self.device.send_feature_report.assert_not_called()
        self.device.get_feature_report.assert_not_called()

    def test_commit_requires_apply(self):
        self.controller.load()
        with self.assertRaises(RuntimeError):
            self.controller.commit()


if __name__ == '__main__':
    unittest.main()
