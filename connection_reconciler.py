"""Decide what happens to pending edits when a keyboard (re)connects.

If nothing is pending the fresh device read simply becomes the baseline. If
edits are pending the user is asked to pick one of two resolutions: push the
edits to the keyboard, or throw them away and adopt the keyboard's layout.
"""
from __future__ import annotations

import enum
import logging

from PyQt6 import QtCore

from change_queue import ChangeQueue
from device_baseline import Baseline
from engine_errors import DeviceConnectionError


logger = logging.getLogger(__name__)

COMMIT_LABEL = "Update Keyboard With New Changes"
RELOAD_LABEL = "Revert Changes Back to Keyboard's Layout"


class ReconcileState(enum.Enum):
    DISCONNECTED = "disconnected"
    READING = "reading"
    CLEAN = "clean"
    NEEDS_RECONCILIATION = "needs_reconciliation"
    SYNCING = "syncing"


class ConnectionReconciler(QtCore.QObject):
    state_changed = QtCore.pyqtSignal(object)
    reconciliation_requested = QtCore.pyqtSignal(int)
    commit_failed = QtCore.pyqtSignal(object)

    def __init__(self, queue: ChangeQueue, parent=None):
        super().__init__(parent)
        self.queue = queue
        self._state = ReconcileState.DISCONNECTED
        self._transport = None
        self._candidate: Baseline | None = None
        # Bumped on every connect/disconnect so late reads can be recognised
        self._generation = 0

    @property
    def state(self) -> ReconcileState:
        return self._state

    @property
    def transport(self):
        return self._transport

    @property
    def is_connected(self) -> bool:
        return self._transport is not None and self._state != ReconcileState.DISCONNECTED

    def _set_state(self, state: ReconcileState) -> None:
        if state == self._state:
            return
        logger.debug(f"Connect: {self._state.value} -> {state.value}")
        self._state = state
        self.state_changed.emit(state)

    async def on_connected(self, transport) -> ReconcileState:
        self._generation += 1
        generation = self._generation
        self._transport = transport
        self._candidate = None
        self._set_state(ReconcileState.READING)

        try:
            candidate = await transport.read_device_state()
        except DeviceConnectionError as exc:
            if generation == self._generation:
                logger.warning(f"Connect: reading the keyboard failed: {exc}")
                self._drop_connection()
            return self._state

        if generation != self._generation:
            logger.info("Connect: discarding a read from a connection that is gone")
            return self._state
        candidate.keep_host_fields(self.queue.baseline)

        if not self.queue.is_dirty_globally():
            self.queue.reload_from_device(candidate)
            logger.info("Connect: keyboard layout loaded, nothing pending")
            self._set_state(ReconcileState.CLEAN)
            return self._state

        self._candidate = candidate
        count = self.queue.pending_count()
        logger.info(f"Connect: {count} pending change(s) need reconciliation")
        self._set_state(ReconcileState.NEEDS_RECONCILIATION)
        self.reconciliation_requested.emit(count)
        return self._state

    async def resolve_with_commit(self) -> set:
        """Write pending edits onto the freshly read keyboard layout.

        Returns the targets still pending because their writes failed.
        """
        if self._state != ReconcileState.NEEDS_RECONCILIATION:
            logger.warning(f"Connect: nothing to reconcile in state {self._state.value}")
            return set()

        generation = self._generation
        checkpoint = self.queue.checkpoint()
        logger.info(f"Connect: {COMMIT_LABEL}")
        self._set_state(ReconcileState.SYNCING)
        self.queue.rebase(self._candidate)
        try:
            failed = await self.queue.commit(self._transport)
        except DeviceConnectionError as exc:
            self.queue.restore(checkpoint)
            logger.warning(f"Connect: keyboard lost while syncing, pending changes kept: {exc}")
            if generation == self._generation:
                self._drop_connection()
            return {change.target for change in self.queue.changes()}

        self.queue.release(checkpoint)
        if generation != self._generation:
            return failed
        self._candidate = None
        self._set_state(ReconcileState.CLEAN)
        if failed:
            self.commit_failed.emit(dict(self.queue.last_errors))
        return failed

    def resolve_with_reload(self) -> None:
        """Discard pending edits and adopt the keyboard's layout."""
        if self._state != ReconcileState.NEEDS_RECONCILIATION:
            logger.warning(f"Connect: nothing to reconcile in state {self._state.value}")
            return
        self.queue.reload_from_device(self._candidate)
        self._candidate = None
        logger.info(f"Connect: {RELOAD_LABEL}, pending changes discarded")
        self._set_state(ReconcileState.CLEAN)

    async def commit_pending(self) -> set:
        """Commit the queue over an established connection."""
        if self._state != ReconcileState.CLEAN:
            logger.warning(f"Commit: not possible in state {self._state.value}")
            return {change.target for change in self.queue.changes()}

        generation = self._generation
        self._set_state(ReconcileState.SYNCING)
        try:
            failed = await self.queue.commit(self._transport)
        except DeviceConnectionError as exc:
            logger.warning(f"Commit: keyboard lost: {exc}")
            if generation == self._generation:
                self._drop_connection()
            return {change.target for change in self.queue.changes()}

        if generation == self._generation:
            self._set_state(ReconcileState.CLEAN)
        if failed:
            self.commit_failed.emit(dict(self.queue.last_errors))
        return failed

    def on_disconnected(self) -> None:
        self._generation += 1
        if self._state != ReconcileState.DISCONNECTED:
            logger.info(f"Connect: keyboard disconnected, {self.queue.pending_count()} change(s) kept")
        self._drop_connection()

    def _drop_connection(self) -> None:
        self._transport = None
        self._candidate = None
        self._set_state(ReconcileState.DISCONNECTED)
