
import os
import sys
import unittest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import vial_protocol as vp
import device_driver


class TestHardware(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        devs = vp.list_devices()
        if not devs:
            raise unittest.SkipTest("No Vial keyboard found")
        cls.target = devs[0]
        print(f"Testing on {cls.target.product} ({cls.target.path})")

    def test_read_layer_count(self):
        kbd = vp.VialDevice(self.target.path)
        kbd.open()
        try:
            layers = kbd.get_layer_count()
            self.assertGreater(layers, 0)
            print(f"Layers: {layers}")
        finally:
            kbd.close()

    def test_read_definition(self):
        kbd = vp.VialDevice(self.target.path)
        kbd.open()
        try:
            definition = kbd.get_definition()
            self.assertIn("matrix", definition)
            print(f"Matrix: {definition['matrix']}")
        finally:
            kbd.close()


class TestHardwareTransport(unittest.IsolatedAsyncioTestCase):
    async def test_read_device_state(self):
        devs = vp.list_devices()
        if not devs:
            self.skipTest("No Vial keyboard found")
        transport = device_driver.create_transport(devs[0])
        try:
            baseline = await transport.read_device_state()
            self.assertGreater(len(baseline.keymap), 0)
        finally:
            await transport.close()


if __name__ == '__main__':
    unittest.main()
