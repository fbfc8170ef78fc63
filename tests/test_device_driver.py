import os
import sys
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import device_driver as dd
import glorious_protocol as gp


def hid_entry(product_id, interface_number, path=b"/dev/hidraw2"):
    return {
        "path": path,
        "vendor_id": 0x258A,
        "product_id": product_id,
        "interface_number": interface_number,
        "product_string": "Model O",
        "manufacturer_string": "SINOWEALTH",
        "serial_number": "",
    }


class TestDetection(unittest.TestCase):
    @patch.object(dd.hid, "enumerate")
    def test_picks_config_interface(self, enumerate_):
        enumerate_.side_effect = lambda vid, pid: [
            hid_entry(pid, 0, b"/dev/hidraw1"),
            hid_entry(pid, 1, b"/dev/hidraw2"),
        ] if pid == 0x0036 else []

        info = dd.detect_device()

        self.assertIsNotNone(info)
        self.assertEqual(info.path, "/dev/hidraw2")
        self.assertEqual(info.name, "Glorious Model O/O-")
        self.assertEqual(info.interface_number, gp.CONFIG_INTERFACE)
        self.assertEqual(info.manufacturer, "SINOWEALTH")

    @patch.object(dd.hid, "enumerate", return_value=[])
    def test_no_device(self, _):
        self.assertIsNone(dd.detect_device())
        self.assertEqual(dd.list_devices(), [])

    @patch.object(dd.hid, "enumerate")
    def test_only_other_interfaces(self, enumerate_):
        enumerate_.side_effect = lambda vid, pid: [hid_entry(pid, 0), hid_entry(pid, 2)]
        self.assertIsNone(dd.detect_device())

    @patch.object(dd.hid, "enumerate")
    def test_list_devices(self, enumerate_):
        enumerate_.side_effect = lambda vid, pid: [hid_entry(pid, 1, f"/dev/hidraw{pid}".encode())]
        devices = dd.list_devices()
        self.assertEqual([d.product_id for d in devices], [0x0033, 0x0036])
        self.assertEqual(devices[0].name, "Glorious Model D")

    def test_create_device(self):
        info = dd.DeviceInfo("/dev/hidraw2", "Glorious Model D", 0x258A, 0x0033, 1, "", "", "")
        device = dd.create_device(info)
        self.assertIsInstance(device, gp.GloriousDevice)
        self.assertEqual(device.path, "/dev/hidraw2")
        self.assertFalse(device.is_open)


class TestGloriousDevice(unittest.TestCase):
    def setUp(self):
        patcher = patch.object(gp.hid, "device")
        self.hid_device = patcher.start()
        self.addCleanup(patcher.stop)
        self.handle = MagicMock()
        self.hid_device.return_value = self.handle

    def test_open_and_close(self):
        with gp.GloriousDevice("/dev/hidraw2") as device:
            self.assertTrue(device.is_open)
        self.handle.open_path.assert_called_once_with(b"/dev/hidraw2")
        self.handle.close.assert_called_once()
        self.assertFalse(device.is_open)

    def test_open_failure(self):
        self.handle.open_path.side_effect = OSError("open failed")
        device = gp.GloriousDevice("/dev/hidraw2")
        with self.assertRaises(gp.TransportError):
            device.open()
        self.assertFalse(device.is_open)

    def test_requires_open(self):
        device = gp.GloriousDevice("/dev/hidraw2")
        with self.assertRaises(RuntimeError):
            device.send_feature_report(b"\x05\x01\x00\x00\x00\x00")
        with self.assertRaises(RuntimeError):
            device.read_input(8)

    def test_send_feature_report(self):
        self.handle.send_feature_report.return_value = 6
        with gp.GloriousDevice("/dev/hidraw2") as device:
            self.assertEqual(device.send_feature_report(bytearray(b"\x05\x11\x00\x00\x00\x00")), 6)
        self.handle.send_feature_report.assert_called_once_with(b"\x05\x11\x00\x00\x00\x00")

    def test_send_feature_report_error(self):
        self.handle.send_feature_report.return_value = -1
        self.handle.error.return_value = "Broken pipe"
        with gp.GloriousDevice("/dev/hidraw2") as device:
            with self.assertRaisesRegex(gp.TransportError, "Broken pipe"):
                device.send_feature_report(b"\x05\x01\x00\x00\x00\x00")

    def test_get_feature_report(self):
        self.handle.get_feature_report.return_value = [0x05, 0x01, 0x56, 0x31, 0x2E, 0x32]
        with gp.GloriousDevice("/dev/hidraw2") as device:
            resp = device.get_feature_report(gp.RID_COMMAND, gp.COMMAND_LEN)
        self.assertEqual(resp, b"\x05\x01V1.2")
        self.handle.get_feature_report.assert_called_once_with(0x05, 6)

    def test_get_feature_report_error(self):
        self.handle.get_feature_report.side_effect = OSError("read error")
        with gp.GloriousDevice("/dev/hidraw2") as device:
            with self.assertRaises(gp.TransportError):
                device.get_feature_report(gp.RID_CONFIG, gp.CONFIG_LEN)

    def test_read_input_blocks(self):
        self.handle.read.return_value = [0x07, 0x01, 0x61, 0x07, 0x07, 0, 0, 0]
        with gp.GloriousDevice("/dev/hidraw2") as device:
            data = device.read_input(gp.CHANGE_REPORT_LEN)
        self.assertEqual(data, bytes([0x07, 0x01, 0x61, 0x07, 0x07, 0, 0, 0]))
        self.handle.read.assert_called_once_with(8, -1)

    def test_read_input_error(self):
        self.handle.read.side_effect = OSError("read error")
        with gp.GloriousDevice("/dev/hidraw2") as device:
            with self.assertRaises(gp.TransportError):
                device.read_input(8)


if __name__ == '__main__':
    unittest.main()
