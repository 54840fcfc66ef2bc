import json
import logging
import os
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from engine_config import EngineConfig, configure_logging, load_config, save_config


class TestEngineConfig(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.path = Path(self.tmp.name) / "keybard" / "engine.json"

    def test_missing_file_gives_defaults(self):
        config = load_config(self.path)
        self.assertEqual(config, EngineConfig())
        self.assertEqual(config.drag_threshold_px, 5.0)
        self.assertFalse(config.live_updating)

    def test_save_and_load(self):
        save_config(EngineConfig(live_updating=True, drag_threshold_px=8.0), self.path)
        config = load_config(self.path)
        self.assertTrue(config.live_updating)
        self.assertEqual(config.drag_threshold_px, 8.0)

    def test_unknown_keys_ignored(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text(json.dumps({"typing_binds_key": True, "theme": "dark"}))

        config = load_config(self.path)
        self.assertTrue(config.typing_binds_key)
        self.assertFalse(hasattr(config, "theme"))

    def test_malformed_file_falls_back(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json")

        with self.assertLogs("engine_config", level="WARNING"):
            config = load_config(self.path)
        self.assertEqual(config, EngineConfig())

    def test_non_object_falls_back(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("[1, 2]")
        with self.assertLogs("engine_config", level="WARNING"):
            self.assertEqual(load_config(self.path), EngineConfig())

    def test_configure_logging_level(self):
        root = logging.getLogger()
        old_level = root.level
        self.addCleanup(root.setLevel, old_level)

        configure_logging(EngineConfig(log_level="debug"))
        self.assertEqual(root.level, logging.DEBUG)
        configure_logging(EngineConfig(log_level="BASIC_FORMAT"))
        self.assertEqual(root.level, logging.INFO)


if __name__ == '__main__':
    unittest.main()
