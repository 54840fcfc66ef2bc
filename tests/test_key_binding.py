import sys
import os
import unittest
from PyQt6 import QtCore

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from binding_targets import Target
from change_queue import ChangeQueue
from device_baseline import Baseline
from engine_errors import InvalidTarget
from key_binding import KeyBindingCoordinator


class TestKeyBindingCoordinator(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = QtCore.QCoreApplication.instance()
        if cls.app is None:
            cls.app = QtCore.QCoreApplication(sys.argv)

    def setUp(self):
        baseline = Baseline.from_layers(
            [[["KC_A", "KC_B", "KC_C"], ["KC_D", "KC_E", "KC_F"]]],
            combos={0: ["KC_A", "KC_B", "KC_NO", "KC_NO", "KC_ESCAPE"]},
            macros={0: b"hello", 1: b""},
        )
        self.queue = ChangeQueue(baseline)
        self.coordinator = KeyBindingCoordinator(self.queue)
        self.selections = []
        self.queue_events = []
        self.coordinator.selection_changed.connect(self.selections.append)
        self.coordinator.queue_changed.connect(lambda: self.queue_events.append(True))

    def test_select_then_assign(self):
        """Selecting a key and picking a keycode stages the edit and ends binding."""
        self.coordinator.select_target(0, 1, 2)
        self.assertTrue(self.coordinator.is_binding)

        self.assertTrue(self.coordinator.assign_keycode("KC_B"))

        target = Target.key(0, 1, 2)
        self.assertEqual(self.queue.effective_value(target), "KC_B")
        self.assertTrue(self.queue.is_dirty(target))
        self.assertIsNone(self.coordinator.selection)
        self.assertEqual(len(self.queue_events), 1)

    def test_reselect_same_target_is_noop(self):
        self.coordinator.select_target(0, 0, 0)
        self.coordinator.select_target(0, 0, 0)
        self.assertEqual(self.selections, [Target.key(0, 0, 0)])

    def test_assign_without_selection_does_nothing(self):
        self.assertFalse(self.coordinator.assign_keycode("KC_Z"))
        self.assertFalse(self.queue.is_dirty_globally())
        self.assertEqual(self.queue_events, [])

    def test_out_of_bounds_rejected_before_queue(self):
        with self.assertRaises(InvalidTarget):
            self.coordinator.select_target(0, 5, 0)
        with self.assertRaises(InvalidTarget):
            self.coordinator.assign_keycode("KC_Z", Target.key(3, 0, 0))
        self.assertFalse(self.queue.is_dirty_globally())

    def test_explicit_target_clears_selection(self):
        self.coordinator.select_target(0, 0, 0)
        self.coordinator.assign_keycode("KC_Z", Target.key(0, 0, 1))
        # Assigning clears whatever was selected
        self.assertIsNone(self.coordinator.selection)
        self.assertEqual(self.queue.effective_value(Target.key(0, 0, 1)), "KC_Z")
        self.assertFalse(self.queue.is_dirty(Target.key(0, 0, 0)))

    def test_set_macro(self):
        self.assertTrue(self.coordinator.set_macro(1, b"\x01\x01\x04"))

        self.assertEqual(self.queue.effective_value(Target.macro(1)), b"\x01\x01\x04")
        self.assertTrue(self.queue.is_dirty(Target.macro(1)))
        self.assertEqual(len(self.queue_events), 1)

        # Back to what the keyboard has
        self.coordinator.set_macro(1, b"")
        self.assertFalse(self.queue.is_dirty(Target.macro(1)))

    def test_set_macro_rejects_bad_input(self):
        with self.assertRaises(InvalidTarget):
            self.coordinator.set_macro(5, b"abc")
        with self.assertRaises(ValueError):
            self.coordinator.set_macro(0, b"ab\x00cd")
        with self.assertRaises(ValueError):
            self.coordinator.set_macro(0, "hello")
        self.assertFalse(self.queue.is_dirty_globally())
        self.assertEqual(self.queue_events, [])

    def test_swap_keys(self):
        a, b = Target.key(0, 0, 0), Target.key(0, 1, 1)
        self.assertTrue(self.coordinator.swap_keys(a, b))

        self.assertEqual(self.queue.effective_value(a), "KC_E")
        self.assertEqual(self.queue.effective_value(b), "KC_A")
        self.assertTrue(self.queue.is_grouped(a))

    def test_swap_twice_restores_layout(self):
        a, b = Target.key(0, 0, 0), Target.key(0, 1, 1)
        self.coordinator.swap_keys(a, b)
        self.coordinator.swap_keys(a, b)
        self.assertFalse(self.queue.is_dirty_globally())

    def test_swap_with_itself_is_noop(self):
        a = Target.key(0, 0, 0)
        self.assertFalse(self.coordinator.swap_keys(a, a))
        self.assertEqual(self.queue_events, [])

    def test_swap_equal_values_is_noop(self):
        a, b = Target.key(0, 0, 0), Target.key(0, 0, 1)
        self.coordinator.assign_keycode("KC_B", a)
        self.assertFalse(self.coordinator.swap_keys(a, b))
        self.assertEqual(self.queue.pending_count(), 1)

    def test_combo_slot_selection(self):
        self.coordinator.select_combo_slot(0, 4)
        self.coordinator.assign_keycode("KC_ENTER")
        self.assertEqual(self.queue.effective_value(Target.combo(0, 4)), "KC_ENTER")
        self.assertEqual(self.queue.baseline.value(Target.combo(0, 4)), "KC_ESCAPE")

    def test_hover_tracking(self):
        hovered = []
        self.coordinator.hovered_changed.connect(hovered.append)
        self.coordinator.set_hovered(Target.key(0, 0, 0))
        self.coordinator.set_hovered(Target.key(0, 0, 0))
        self.coordinator.set_hovered(None)
        self.assertEqual(hovered, [Target.key(0, 0, 0), None])

    def test_typing_binds_key(self):
        self.coordinator.select_target(0, 0, 0)
        # Disabled by default
        self.assertFalse(self.coordinator.handle_key_press(QtCore.Qt.Key.Key_Q))

        self.coordinator.typing_binds_key = True
        self.assertTrue(self.coordinator.handle_key_press(QtCore.Qt.Key.Key_Q))
        self.assertEqual(self.queue.effective_value(Target.key(0, 0, 0)), "KC_Q")

    def test_undo_emits_queue_changed(self):
        self.coordinator.assign_keycode("KC_Z", Target.key(0, 0, 0))
        self.assertTrue(self.coordinator.undo())
        self.assertFalse(self.queue.is_dirty_globally())
        self.assertTrue(self.coordinator.redo())
        self.assertEqual(len(self.queue_events), 3)


if __name__ == '__main__':
    unittest.main()
