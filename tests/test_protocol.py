import json
import lzma
import os
import struct
import sys
import unittest
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import vial_protocol as vp


def pad(data: bytes) -> bytes:
    return bytes(data) + bytes(vp.MSG_LEN - len(data))


class FakeHid:
    """Stands in for hid.device, replaying scripted responses."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.written = []

    def open_path(self, path):
        self.path = path

    def write(self, data):
        self.written.append(bytes(data))
        return len(data)

    def read(self, size, timeout_ms=0):
        if not self.responses:
            return []
        return list(self.responses.pop(0))

    def close(self):
        pass


class TestMessages(unittest.TestCase):
    def test_message_is_padded(self):
        msg = vp.build_message(vp.CMD_VIA_GET_LAYER_COUNT)
        self.assertEqual(len(msg), vp.MSG_LEN)
        self.assertEqual(msg[0], 0x11)
        self.assertEqual(msg[1:], bytes(31))

    def test_message_too_long(self):
        with self.assertRaises(ValueError):
            vp.build_message(0x01, bytes(32))

    def test_set_keycode_is_big_endian(self):
        # Layer 1, row 2, col 3, LT(1, KC_A) = 0x4104
        msg = vp.build_set_keycode(1, 2, 3, 0x4104)
        self.assertEqual(msg[:6], bytes([0x05, 1, 2, 3, 0x41, 0x04]))

    def test_keymap_buffer_request(self):
        msg = vp.build_keymap_buffer_read(0x0102, 28)
        self.assertEqual(msg[:4], bytes([0x12, 0x01, 0x02, 28]))
        with self.assertRaises(ValueError):
            vp.build_keymap_buffer_read(0, 29)

    def test_vial_prefix(self):
        msg = vp.build_vial(vp.CMD_VIAL_GET_SIZE)
        self.assertEqual(msg[:2], bytes([0xFE, 0x01]))

    def test_combo_set_payload(self):
        msg = vp.build_combo_set(2, [0x04, 0x05, 0, 0, 0x29])
        self.assertEqual(msg[:4], bytes([0xFE, 0x0D, vp.DYNAMIC_VIAL_COMBO_SET, 2]))
        # Keycodes are little endian inside dynamic entries
        self.assertEqual(msg[4:6], bytes([0x04, 0x00]))
        self.assertEqual(msg[12:14], bytes([0x29, 0x00]))
        with self.assertRaises(ValueError):
            vp.build_combo_set(0, [1, 2, 3])

    def test_macro_buffer_write_request(self):
        msg = vp.build_macro_buffer_write(28, b"ab\x00")
        self.assertEqual(msg[:7], bytes([0x0F, 0x00, 28, 3]) + b"ab\x00")
        with self.assertRaises(ValueError):
            vp.build_macro_buffer_write(0, bytes(29))

    def test_split_macros(self):
        # Unused space after the last macro is NUL filled
        self.assertEqual(vp.split_macros(b"ab\x00\x00cd\x00\x00\x00", 3), [b"ab", b"", b"cd"])
        self.assertEqual(vp.split_macros(b"ab", 3), [b"ab", b"", b""])

    def test_pack_macros(self):
        self.assertEqual(vp.pack_macros([b"ab", b"", b"c"], 10), b"ab\x00\x00c\x00")
        with self.assertRaises(ValueError):
            vp.pack_macros([b"a\x00b"], 10)
        with self.assertRaises(ValueError):
            vp.pack_macros([b"abcd", b"ef"], 6)

    def test_setting_write_width(self):
        msg = vp.build_setting_write("left-dpi", 1600)
        self.assertEqual(msg[:4], bytes([vp.SVAL_IDENTIFIER, 0x21, 0x40, 0x06]))
        msg = vp.build_setting_write("auto-mouse", 1)
        self.assertEqual(msg[:3], bytes([vp.SVAL_IDENTIFIER, 0x29, 0x01]))


class TestVialDevice(unittest.TestCase):
    def _device(self, responses, **kwargs):
        fake = FakeHid(responses)
        patcher = patch("vial_protocol.hid")
        hid_mock = patcher.start()
        self.addCleanup(patcher.stop)
        hid_mock.device.return_value = fake
        dev = vp.VialDevice("/dev/hidraw0", **kwargs)
        dev.open()
        return dev, fake

    def test_send_requires_open(self):
        with self.assertRaises(RuntimeError):
            vp.VialDevice("/dev/hidraw0").send(vp.build_message(0x01))

    def test_send_prefixes_report_id(self):
        dev, fake = self._device([pad(b"\x11\x04")])
        self.assertEqual(dev.get_layer_count(), 4)
        self.assertEqual(fake.written[0][:2], b"\x00\x11")
        self.assertEqual(len(fake.written[0]), vp.MSG_LEN + 1)

    @patch("vial_protocol.time.sleep")
    def test_send_gives_up_after_retries(self, _sleep):
        dev, fake = self._device([], retries=3)
        with self.assertRaises(RuntimeError):
            dev.get_layer_count()
        self.assertEqual(len(fake.written), 3)

    def test_read_keymap(self):
        codes = [0x04, 0x05, 0x06, 0x07, 0x00, 0x01]
        data = struct.pack(">6H", *codes)
        dev, fake = self._device([pad(bytes([0x12, 0, 0, len(data)]) + data)])

        keymap = dev.read_keymap(1, 2, 3)

        self.assertEqual(keymap, [[[0x04, 0x05, 0x06], [0x07, 0x00, 0x01]]])
        self.assertEqual(fake.written[0][1:5], bytes([0x12, 0, 0, 12]))

    def test_read_keymap_in_chunks(self):
        # 2 layers x 2 x 8 = 64 bytes -> chunks of 28, 28, 8
        codes = list(range(32))
        data = struct.pack(">32H", *codes)
        responses = [
            pad(bytes([0x12, 0, 0, 28]) + data[0:28]),
            pad(bytes([0x12, 0, 28, 28]) + data[28:56]),
            pad(bytes([0x12, 0, 56, 8]) + data[56:64]),
        ]
        dev, fake = self._device(responses)

        keymap = dev.read_keymap(2, 2, 8)

        self.assertEqual(keymap[1][1][7], 31)
        self.assertEqual(len(fake.written), 3)

    def test_get_definition(self):
        payload = lzma.compress(json.dumps({"matrix": {"rows": 5, "cols": 6}}).encode())
        blocks = [payload[i:i + vp.MSG_LEN] for i in range(0, len(payload), vp.MSG_LEN)]
        responses = [pad(struct.pack("<I", len(payload)))] + [pad(b) for b in blocks]
        dev, _ = self._device(responses)

        definition = dev.get_definition()
        self.assertEqual(definition["matrix"], {"rows": 5, "cols": 6})

    def test_dynamic_counts_and_entries(self):
        tapdance = struct.pack(vp.TAPDANCE_FORMAT, 0x04, 0xE0, 0, 0, 200)
        dev, fake = self._device([pad(b"\x02\x01\x00"), pad(b"\x00" + tapdance)])

        self.assertEqual(dev.get_dynamic_counts(), (2, 1, 0))
        entry = dev.get_tapdance(1)
        self.assertEqual(entry["tap"], 0x04)
        self.assertEqual(entry["hold"], 0xE0)
        self.assertEqual(entry["tapping_term"], 200)
        self.assertEqual(fake.written[1][1:5], bytes([0xFE, 0x0D, vp.DYNAMIC_VIAL_TAP_DANCE_GET, 1]))

    def test_dynamic_entry_error_status(self):
        dev, _ = self._device([pad(b"\x01")])
        with self.assertRaises(RuntimeError):
            dev.get_combo(0)

    def test_override_entry(self):
        raw = struct.pack(vp.OVERRIDE_FORMAT, 0x04, 0x05, 0xFFFF, 1, 0, 0, 7)
        dev, _ = self._device([pad(b"\x00" + raw)])
        entry = dev.get_override(0)
        self.assertEqual(entry["trigger"], 0x04)
        self.assertEqual(entry["layers"], 0xFFFF)
        self.assertEqual(entry["options"], 7)

    def test_get_macros(self):
        buffer = b"ab\x00cd\x00" + bytes(4)
        dev, fake = self._device([
            pad(b"\x0C\x02"),
            pad(b"\x0D\x00\x0A"),
            pad(bytes([0x0E, 0, 0, 10]) + buffer),
        ])

        macros, size = dev.get_macros()

        self.assertEqual(macros, [b"ab", b"cd"])
        self.assertEqual(size, 10)
        self.assertEqual(fake.written[2][1:5], bytes([0x0E, 0, 0, 10]))

    def test_no_macros_skips_buffer_read(self):
        dev, fake = self._device([pad(b"\x0C\x00"), pad(b"\x0D\x00\x00")])
        self.assertEqual(dev.get_macros(), ([], 0))
        self.assertEqual(len(fake.written), 2)

    def test_write_macro_buffer_in_chunks(self):
        data = bytes(range(1, 31))
        dev, fake = self._device([pad(b"\x0F"), pad(b"\x0F")])

        self.assertTrue(dev.write_macro_buffer(data))

        self.assertEqual(fake.written[0][1:5], bytes([0x0F, 0, 0, 28]))
        self.assertEqual(fake.written[1][1:7], bytes([0x0F, 0, 28, 2, 29, 30]))

    def test_write_macro_buffer_rejected(self):
        dev, fake = self._device([pad(b"\xFF")])
        self.assertFalse(dev.write_macro_buffer(b"ab\x00"))

    def test_set_keycode_checks_echo(self):
        dev, _ = self._device([pad(b"\x05"), pad(b"\xFF")])
        self.assertTrue(dev.set_keycode(0, 0, 0, 4))
        self.assertFalse(dev.set_keycode(0, 0, 0, 4))

    def test_check_sval(self):
        dev, _ = self._device([pad(b"sval" + struct.pack("<I", 3)), pad(b"\xFF")])
        self.assertEqual(dev.check_sval(), 3)
        self.assertEqual(dev.check_sval(), 0)

    def test_setting_roundtrip(self):
        dev, fake = self._device([pad(b"\x40\x06"), pad(b"\xEE")])
        self.assertEqual(dev.get_setting("left-dpi"), 1600)
        self.assertTrue(dev.set_setting("left-dpi", 800))
        self.assertEqual(fake.written[1][1:5], bytes([0xEE, 0x21, 0x20, 0x03]))


class TestListDevices(unittest.TestCase):
    @patch("vial_protocol.hid")
    def test_only_raw_hid_interfaces(self, hid_mock):
        base = {
            "vendor_id": 0xFEED, "product_id": 0x0001, "manufacturer_string": "Maker",
            "serial_number": "", "usage_page": vp.RAW_USAGE_PAGE, "usage": vp.RAW_USAGE,
        }
        hid_mock.enumerate.return_value = [
            {**base, "path": b"/dev/hidraw1", "product_string": "Some Board"},
            {**base, "path": b"/dev/hidraw2", "product_string": "Svalboard", "product_id": 0x0002},
            {**base, "path": b"/dev/hidraw3", "product_string": "Keyboard", "usage_page": 0x01, "usage": 0x06},
            {**base, "path": b"/dev/hidraw2", "product_string": "Svalboard", "product_id": 0x0002},
        ]

        devices = vp.list_devices()

        self.assertEqual([d.path for d in devices], ["/dev/hidraw2", "/dev/hidraw1"])
        self.assertEqual(devices[0].product, "Svalboard")


if __name__ == '__main__':
    unittest.main()
