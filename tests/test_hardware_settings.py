import sys
import os
import asyncio
import unittest
from unittest.mock import AsyncMock, MagicMock

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from engine_errors import ConcurrentSettingWrite, InvalidTarget, WriteError
from hardware_settings import SVALBOARD_SETTINGS, HardwareSettingBridge, default_registry


class SlowHandler:
    """Handler whose set() blocks until released."""

    def __init__(self):
        self.release = asyncio.Event()
        self.value = 400
        self.writes = []

    async def get(self):
        return self.value

    async def set(self, value):
        self.writes.append(value)
        await self.release.wait()
        self.value = value


class TestHardwareSettingBridge(unittest.IsolatedAsyncioTestCase):
    async def test_get_goes_to_handler_every_time(self):
        handler = MagicMock()
        handler.get = AsyncMock(side_effect=[400, 800])
        bridge = HardwareSettingBridge({"left-dpi": handler})

        self.assertEqual(await bridge.get("left-dpi"), 400)
        self.assertEqual(await bridge.get("left-dpi"), 800)

    async def test_unknown_setting(self):
        bridge = HardwareSettingBridge()
        with self.assertRaises(InvalidTarget):
            await bridge.get("nope")
        with self.assertRaises(InvalidTarget):
            bridge.set("nope", 1)

    async def test_overlapping_write_rejected_synchronously(self):
        handler = SlowHandler()
        bridge = HardwareSettingBridge({"left-dpi": handler})

        first = asyncio.create_task(bridge.set("left-dpi", 800))
        await asyncio.sleep(0)
        self.assertTrue(bridge.is_busy("left-dpi"))

        # Raised by the call itself, nothing awaited
        with self.assertRaises(ConcurrentSettingWrite):
            bridge.set("left-dpi", 1200)

        handler.release.set()
        await first
        self.assertEqual(handler.writes, [800])
        self.assertFalse(bridge.is_busy("left-dpi"))

    async def test_different_settings_run_concurrently(self):
        left, right = SlowHandler(), SlowHandler()
        bridge = HardwareSettingBridge({"left-dpi": left, "right-dpi": right})

        t1 = asyncio.create_task(bridge.set("left-dpi", 800))
        t2 = asyncio.create_task(bridge.set("right-dpi", 1600))
        await asyncio.sleep(0)
        self.assertTrue(bridge.is_busy("left-dpi"))
        self.assertTrue(bridge.is_busy("right-dpi"))

        left.release.set()
        right.release.set()
        await asyncio.gather(t1, t2)
        self.assertEqual((left.value, right.value), (800, 1600))

    async def test_failed_write_releases_setting(self):
        handler = MagicMock()
        handler.set = AsyncMock(side_effect=WriteError("left-dpi", "nak"))
        bridge = HardwareSettingBridge({"left-dpi": handler})

        with self.assertRaises(WriteError):
            await bridge.set("left-dpi", 800)
        self.assertFalse(bridge.is_busy("left-dpi"))

    async def test_default_registry_uses_transport(self):
        transport = MagicMock()
        transport.read_setting = AsyncMock(return_value=3)
        transport.write_setting = AsyncMock()
        bridge = default_registry(transport)

        self.assertEqual(sorted(bridge.names()), sorted(SVALBOARD_SETTINGS))
        self.assertEqual(await bridge.get("auto-mouse-timeout"), 3)
        await bridge.set("scroll-left", 1)
        transport.read_setting.assert_awaited_once_with("auto-mouse-timeout")
        transport.write_setting.assert_awaited_once_with("scroll-left", 1)


if __name__ == '__main__':
    unittest.main()
