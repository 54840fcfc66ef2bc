from __future__ import annotations

import logging
from typing import Any

from PyQt6 import QtCore

import qmk_keycodes
from binding_targets import Target
from change_queue import ChangeQueue


logger = logging.getLogger(__name__)


class KeyBindingCoordinator(QtCore.QObject):
    """Turns selection, assign and swap gestures into change queue edits.

    All validation happens here, before the queue is touched: an address
    outside the baseline raises InvalidTarget and nothing is recorded.
    """

    selection_changed = QtCore.pyqtSignal(object)
    hovered_changed = QtCore.pyqtSignal(object)
    queue_changed = QtCore.pyqtSignal()

    def __init__(self, queue: ChangeQueue, typing_binds_key: bool = False, parent=None):
        super().__init__(parent)
        self.queue = queue
        self.typing_binds_key = typing_binds_key
        self._selection: Target | None = None
        self._hovered: Target | None = None

    @property
    def selection(self) -> Target | None:
        return self._selection

    @property
    def is_binding(self) -> bool:
        return self._selection is not None

    @property
    def hovered(self) -> Target | None:
        return self._hovered

    # -- selection -------------------------------------------------------------

    def select_target(self, layer: int, row: int, col: int) -> None:
        self.select(Target.key(layer, row, col))

    def select_combo_slot(self, combo: int, slot: int) -> None:
        self.select(Target.combo(combo, slot))

    def select_tapdance_slot(self, tapdance: int, slot: str) -> None:
        self.select(Target.tapdance(tapdance, slot))

    def select_override_slot(self, override: int, slot: str) -> None:
        self.select(Target.override(override, slot))

    def select(self, target: Target) -> None:
        if target == self._selection:
            return
        self.queue.baseline.validate(target)
        self._selection = target
        self.selection_changed.emit(target)

    def clear_selection(self) -> None:
        if self._selection is None:
            return
        self._selection = None
        self.selection_changed.emit(None)

    def set_hovered(self, target: Target | None) -> None:
        if target == self._hovered:
            return
        self._hovered = target
        self.hovered_changed.emit(target)

    # -- edits -----------------------------------------------------------------

    def assign_keycode(self, keycode: Any, target: Target | None = None) -> bool:
        """Assign *keycode* to *target*, or to the current selection.

        Returns False when there is nothing to assign to.
        """
        target = target if target is not None else self._selection
        if target is None:
            logger.debug("Assign: no target selected, ignoring %r", keycode)
            return False
        self.queue.baseline.validate(target)

        self.queue.propose(target, keycode)
        logger.info(f"Assign: {target} -> {keycode!r}")
        self.clear_selection()
        self.queue_changed.emit()
        return True

    def set_macro(self, index: int, content: bytes) -> bool:
        """Queue new raw contents for one macro slot.

        The contents are opaque; they only must not contain the NUL byte that
        separates macros in the keyboard's buffer.
        """
        target = Target.macro(index)
        self.queue.baseline.validate(target)
        if not isinstance(content, (bytes, bytearray)):
            raise ValueError(f"macro contents must be bytes, got {type(content).__name__}")
        if b"\x00" in content:
            raise ValueError("macro contents must not contain a NUL byte")

        self.queue.propose(target, bytes(content))
        logger.info(f"Assign: {target} -> {len(content)} byte(s)")
        self.queue_changed.emit()
        return True

    def swap_keys(self, a: Target, b: Target) -> bool:
        """Exchange the effective values of two targets as one unit."""
        if a == b:
            return False
        self.queue.baseline.validate(a)
        self.queue.baseline.validate(b)

        value_a = self.queue.effective_value(a)
        value_b = self.queue.effective_value(b)
        if value_a == value_b:
            return False

        self.queue.propose_group([(a, value_b), (b, value_a)])
        logger.info(f"Swap: {a} <-> {b}")
        self.queue_changed.emit()
        return True

    def handle_key_press(self, qt_key) -> bool:
        """Bind a typed key to the selection when typing-binds-key is enabled."""
        if not self.typing_binds_key or self._selection is None:
            return False
        keycode = qmk_keycodes.qt_key_to_keycode(qt_key)
        if keycode is None:
            return False
        return self.assign_keycode(keycode)

    def undo(self) -> bool:
        if not self.queue.undo():
            logger.debug("Undo: nothing to undo")
            return False
        self.queue_changed.emit()
        return True

    def redo(self) -> bool:
        if not self.queue.redo():
            logger.debug("Redo: nothing to redo")
            return False
        self.queue_changed.emit()
        return True

    def discard_all(self) -> None:
        self.queue.discard_all()
        self.clear_selection()
        self.queue_changed.emit()
