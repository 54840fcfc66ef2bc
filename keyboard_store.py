"""Single owner of the editing state for one keyboard.

Consumers (widgets, panels, tools) are handed a KeyboardStore and reach the
queue, the binding coordinator, the drag manager, the connection reconciler
and the hardware settings through it.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from PyQt6 import QtCore

import device_driver
from binding_targets import Target
from change_queue import ChangeQueue
from connection_reconciler import ConnectionReconciler, ReconcileState
from device_baseline import Baseline
from drag_session import DragSessionManager
from engine_config import EngineConfig
from hardware_settings import SVALBOARD_SETTINGS, HardwareSettingBridge, TransportSettingHandler
from key_binding import KeyBindingCoordinator


logger = logging.getLogger(__name__)


class KeyboardStore(QtCore.QObject):
    changed = QtCore.pyqtSignal()
    setting_changed = QtCore.pyqtSignal(str, object)

    def __init__(self, baseline: Baseline | None = None, config: EngineConfig | None = None, parent=None):
        super().__init__(parent)
        self.config = config or EngineConfig()
        self.queue = ChangeQueue(baseline, max_history=self.config.undo_history)
        self.coordinator = KeyBindingCoordinator(
            self.queue, typing_binds_key=self.config.typing_binds_key, parent=self
        )
        self.drag = DragSessionManager(
            self.coordinator, threshold=self.config.drag_threshold_px, parent=self
        )
        self.reconciler = ConnectionReconciler(self.queue, parent=self)
        self.settings = HardwareSettingBridge()
        self._optimistic: dict[str, Any] = {}
        self._live_task: asyncio.Task | None = None

        self.coordinator.queue_changed.connect(self._on_queue_changed)

    # -- queries -----------------------------------------------------------------

    def effective_value(self, target: Target) -> Any:
        return self.queue.effective_value(target)

    def is_dirty(self, target: Target) -> bool:
        return self.queue.is_dirty(target)

    def is_dirty_globally(self) -> bool:
        return self.queue.is_dirty_globally()

    @property
    def is_connected(self) -> bool:
        return self.reconciler.is_connected

    # -- connection --------------------------------------------------------------

    async def open_device(self, device_info) -> ReconcileState:
        transport = device_driver.create_transport(device_info, self.config)
        return await self.connect_device(transport)

    async def connect_device(self, transport) -> ReconcileState:
        if getattr(transport, "device_type", None) == device_driver.DEVICE_TYPE_SVALBOARD:
            for name in SVALBOARD_SETTINGS:
                self.settings.register(name, TransportSettingHandler(transport, name))
        state = await self.reconciler.on_connected(transport)
        self._optimistic.clear()
        self.changed.emit()
        return state

    def disconnect_device(self) -> None:
        self.drag.cancel()
        self.reconciler.on_disconnected()
        self.changed.emit()

    async def resolve_with_commit(self) -> set:
        failed = await self.reconciler.resolve_with_commit()
        self.changed.emit()
        return failed

    def resolve_with_reload(self) -> None:
        self.reconciler.resolve_with_reload()
        self.changed.emit()

    async def commit(self) -> set:
        failed = await self.reconciler.commit_pending()
        self.changed.emit()
        return failed

    # -- live updating -----------------------------------------------------------

    def _on_queue_changed(self) -> None:
        self.changed.emit()
        if not self.config.live_updating or self.reconciler.state != ReconcileState.CLEAN:
            return
        if self._live_task is not None and not self._live_task.done():
            # The running task picks up the new edit before it exits
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("Commit: no event loop, live update left for the next commit")
            return
        self._live_task = loop.create_task(self._live_commit())

    async def _live_commit(self) -> None:
        while self.queue.is_dirty_globally() and self.reconciler.state == ReconcileState.CLEAN:
            failed = await self.reconciler.commit_pending()
            self.changed.emit()
            if failed:
                logger.warning(f"Commit: live update left {len(failed)} change(s) pending")
                return

    async def wait_for_live_commit(self) -> None:
        if self._live_task is not None:
            await self._live_task

    # -- hardware settings -------------------------------------------------------

    def setting_value(self, name: str) -> Any:
        if name in self._optimistic:
            return self._optimistic[name]
        return self.queue.baseline.value(Target.hardware_setting(name))

    async def refresh_setting(self, name: str) -> Any:
        value = await self.settings.get(name)
        self.queue.record_device_write(Target.hardware_setting(name), value)
        self.setting_changed.emit(name, value)
        return value

    async def set_hardware_setting(self, name: str, value: Any) -> None:
        """Write a setting straight to the device, showing the new value right away.

        On failure the displayed value goes back to what it was and the error
        propagates to the caller.
        """
        previous = self.setting_value(name)
        # Raises ConcurrentSettingWrite or InvalidTarget before anything changes
        pending = self.settings.set(name, value)

        self._optimistic[name] = value
        self.setting_changed.emit(name, value)
        try:
            await pending
        except BaseException as exc:
            logger.warning(f"Setting: {name} write failed, restoring {previous!r}: {exc!r}")
            self._optimistic.pop(name, None)
            self.setting_changed.emit(name, previous)
            raise

        self._optimistic.pop(name, None)
        self.queue.record_device_write(Target.hardware_setting(name), value)
