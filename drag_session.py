"""Pointer drag gestures over the keyboard view.

A gesture starts with a primary-button press on a bound key (or a palette
entry), becomes a drag once the pointer travels past the threshold, and ends
in exactly one of: click, drop, cancel. Pointer tracking during a gesture is
done with an application-wide Qt event filter so the drag keeps following the
pointer even when it leaves the widget that started it.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable

from PyQt6 import QtCore

from binding_targets import Target
from engine_errors import InvalidTarget


logger = logging.getLogger(__name__)

DEFAULT_DRAG_THRESHOLD = 5.0

CONTENT_TYPES = ("key", "macro", "layer", "combo", "tapdance", "override")


class DragState(enum.Enum):
    IDLE = "idle"
    PRESSED = "pressed"
    DRAGGING = "dragging"
    DROPPED = "dropped"
    CANCELLED = "cancelled"


@dataclass
class DragItem:
    keycode: Any
    label: str = ""
    content_type: str = "key"
    width: float = 1.0
    height: float = 1.0
    origin: Target | None = None
    source_id: str | None = None


class _PointerFilter(QtCore.QObject):
    """Forwards application-wide pointer and focus events to a drag manager."""

    def __init__(self, manager: "DragSessionManager"):
        super().__init__()
        self._manager = manager

    def eventFilter(self, obj: QtCore.QObject, event: QtCore.QEvent) -> bool:
        etype = event.type()
        if etype == QtCore.QEvent.Type.MouseMove:
            pos = event.globalPosition()
            self._manager.pointer_move(pos.x(), pos.y())
        elif etype == QtCore.QEvent.Type.MouseButtonRelease:
            if event.button() == QtCore.Qt.MouseButton.LeftButton:
                pos = event.globalPosition()
                self._manager.pointer_up(pos.x(), pos.y())
        elif etype in (
            QtCore.QEvent.Type.ApplicationDeactivate,
            QtCore.QEvent.Type.WindowDeactivate,
        ):
            self._manager.cancel()
        # Observe only, never consume
        return False


class PointerGrab:
    """An event filter installed for the lifetime of one gesture phase.

    acquire() and release() are idempotent, so every exit path can release
    without checking whether the grab is still held.
    """

    def __init__(self, manager: "DragSessionManager", host: QtCore.QObject | None = None):
        self._filter = _PointerFilter(manager)
        self._host = host
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def _target_host(self) -> QtCore.QObject | None:
        if self._host is not None:
            return self._host
        return QtCore.QCoreApplication.instance()

    def acquire(self) -> None:
        if self._active:
            return
        host = self._target_host()
        if host is not None:
            host.installEventFilter(self._filter)
        self._active = True

    def release(self) -> None:
        if not self._active:
            return
        host = self._target_host()
        if host is not None:
            host.removeEventFilter(self._filter)
        self._active = False


class DragSessionManager(QtCore.QObject):
    drag_started = QtCore.pyqtSignal(object)
    drag_moved = QtCore.pyqtSignal(float, float)
    drag_finished = QtCore.pyqtSignal(bool)
    clicked = QtCore.pyqtSignal(object)

    def __init__(
        self,
        coordinator,
        threshold: float = DEFAULT_DRAG_THRESHOLD,
        grab_host: QtCore.QObject | None = None,
        parent=None,
    ):
        super().__init__(parent)
        self.coordinator = coordinator
        self.threshold = threshold
        self._press_grab = PointerGrab(self, grab_host)
        self._drag_grab = PointerGrab(self, grab_host)
        self._reset()

    def _reset(self) -> None:
        self._state = DragState.IDLE
        self._pending_item: DragItem | Callable[[], DragItem] | None = None
        self._item: DragItem | None = None
        self._press_pos: tuple[float, float] | None = None
        self._position: tuple[float, float] | None = None
        self._hover: Target | None = None
        self._provisional = False
        self._drop_consumed = False

    # -- state -----------------------------------------------------------------

    @property
    def state(self) -> DragState:
        return self._state

    @property
    def is_dragging(self) -> bool:
        return self._state == DragState.DRAGGING

    @property
    def dragged_item(self) -> DragItem | None:
        return self._item if self._state == DragState.DRAGGING else None

    @property
    def position(self) -> tuple[float, float] | None:
        return self._position

    @property
    def hover_target(self) -> Target | None:
        return self._hover

    @property
    def has_grab(self) -> bool:
        return self._press_grab.active or self._drag_grab.active

    # -- gesture ---------------------------------------------------------------

    def press(
        self,
        item: DragItem | Callable[[], DragItem],
        x: float,
        y: float,
        button=QtCore.Qt.MouseButton.LeftButton,
    ) -> bool:
        """Begin a gesture. *item* may be a factory called only if a drag starts."""
        if button != QtCore.Qt.MouseButton.LeftButton:
            return False
        if self._state != DragState.IDLE:
            return False
        self._state = DragState.PRESSED
        self._pending_item = item
        self._press_pos = (x, y)
        self._position = (x, y)
        self._press_grab.acquire()
        return True

    def pointer_move(self, x: float, y: float) -> None:
        if self._state == DragState.PRESSED:
            self._position = (x, y)
            px, py = self._press_pos
            if abs(x - px) > self.threshold or abs(y - py) > self.threshold:
                self._press_grab.release()
                pending = self._pending_item
                item = pending() if callable(pending) else pending
                self._begin(item, x, y)
        elif self._state == DragState.DRAGGING:
            self._position = (x, y)
            self.drag_moved.emit(x, y)

    def start_drag(self, item: DragItem, x: float, y: float) -> None:
        """Enter DRAGGING directly, for drags started outside the matrix."""
        if self._state != DragState.IDLE:
            self.cancel()
        self._position = (x, y)
        self._begin(item, x, y)

    def _begin(self, item: DragItem, x: float, y: float) -> None:
        self._item = item
        self._pending_item = None
        self._state = DragState.DRAGGING
        self._drag_grab.acquire()
        logger.debug(f"Drag: started {item.content_type} {item.keycode!r} at ({x:.0f}, {y:.0f})")
        self.drag_started.emit(item)

    def enter_target(self, target: Target) -> None:
        if self._state != DragState.DRAGGING:
            return
        self._hover = target
        self.coordinator.set_hovered(target)
        if target.is_key:
            try:
                self.coordinator.select(target)
            except InvalidTarget as exc:
                logger.debug(f"Drag: not selecting {target}: {exc}")
                return
            self._provisional = True

    def leave_target(self, target: Target) -> None:
        if self._hover != target:
            return
        self._hover = None
        self.coordinator.set_hovered(None)

    def mark_drop_consumed(self) -> bool:
        """Claim the drop for an external handler. Returns False if already claimed."""
        if self._drop_consumed:
            return False
        self._drop_consumed = True
        return True

    def pointer_up(self, x: float, y: float) -> None:
        if self._state == DragState.PRESSED:
            origin = self._pending_origin()
            self._finish()
            self.clicked.emit(origin)
            return
        if self._state != DragState.DRAGGING:
            return
        self._position = (x, y)
        target = self._hover
        if target is None:
            self.cancel()
            return

        self._state = DragState.DROPPED
        item = self._item
        if self.mark_drop_consumed():
            try:
                self._apply_drop(item, target)
            except InvalidTarget as exc:
                logger.warning(f"Drag: drop on {target} ignored: {exc}")
                self.coordinator.clear_selection()
        elif self._provisional:
            self.coordinator.clear_selection()
        self._finish()
        self.drag_finished.emit(True)

    def cancel(self) -> None:
        """Abort any active gesture without touching the queue."""
        if self._state in (DragState.IDLE, DragState.DROPPED, DragState.CANCELLED):
            return
        was_dragging = self._state == DragState.DRAGGING
        self._state = DragState.CANCELLED
        if self._provisional:
            self.coordinator.clear_selection()
        logger.debug("Drag: cancelled")
        self._finish()
        if was_dragging:
            self.drag_finished.emit(False)

    def _apply_drop(self, item: DragItem, target: Target) -> None:
        origin = item.origin
        if origin is not None and origin != target and origin.is_key and target.is_key:
            logger.info(f"Drag: swap {origin} <-> {target}")
            self.coordinator.swap_keys(origin, target)
            self.coordinator.clear_selection()
        elif origin is not None and origin == target:
            logger.debug("Drag: dropped back on its origin")
            self.coordinator.clear_selection()
        else:
            logger.info(f"Drag: drop {item.keycode!r} on {target}")
            self.coordinator.assign_keycode(item.keycode, target)

    def _pending_origin(self) -> Target | None:
        pending = self._pending_item
        if isinstance(pending, DragItem):
            return pending.origin
        return None

    def _finish(self) -> None:
        self._press_grab.release()
        self._drag_grab.release()
        if self._hover is not None:
            self.coordinator.set_hovered(None)
        self._reset()
