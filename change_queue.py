from __future__ import annotations

import logging
import time
from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any, Iterable

from binding_targets import KIND_KEY, KIND_LAYER_META, Target
from device_baseline import Baseline
from transaction_controller import TransactionController


logger = logging.getLogger(__name__)


@dataclass
class PendingChange:
    target: Target
    previous_value: Any
    new_value: Any
    created_at: float = field(default_factory=time.time)


def reduce_change(
    target: Target,
    baseline_value: Any,
    prior: PendingChange | None,
    new_value: Any,
) -> PendingChange | None:
    """Collapse a proposed value against the baseline and any prior entry.

    Returns None when the value round-trips back to the baseline (the entry
    must be dropped), *prior* itself when the value is already the effective
    one, and a fresh PendingChange otherwise.
    """
    if new_value == baseline_value:
        return None
    if prior is None:
        return PendingChange(target, baseline_value, new_value)
    if new_value == prior.new_value:
        return prior
    return PendingChange(target, prior.new_value, new_value)


_REVERTED = object()


@dataclass
class QueueCheckpoint:
    """Queue state saved before a sync attempt.

    *edits* collects the value each target was given after the checkpoint
    was taken (or _REVERTED), so restore() can replay them on top.
    """

    baseline: Baseline
    entries: dict[Target, PendingChange]
    groups: dict[Target, int]
    edits: dict[Target, Any] = field(default_factory=dict)
    discarded: bool = False


class ChangeQueue:
    """
    Tracks pending edits against the last-known device baseline.
    Separates the 'committed' state (on device) from the 'pending' state (in UI).
    Supports undo/redo of pending edits.
    """
    MAX_HISTORY = 50  # Cap history to limit memory

    def __init__(self, baseline: Baseline | None = None, max_history: int | None = None):
        self._baseline = baseline.copy() if baseline is not None else Baseline()
        self._entries: dict[Target, PendingChange] = {}
        # Targets proposed together (swaps) share a group id and commit as one unit
        self._groups: dict[Target, int] = {}
        self._next_group = 1
        self._history: list[tuple[dict, dict]] = []
        self._redo_stack: list[tuple[dict, dict]] = []
        self.max_history = max_history if max_history is not None else self.MAX_HISTORY
        self.last_errors: dict[Target, Exception] = {}
        self._watch: QueueCheckpoint | None = None

    @property
    def baseline(self) -> Baseline:
        """The live baseline. Read it, never mutate it."""
        return self._baseline

    # -- reads ---------------------------------------------------------------

    def effective_value(self, target: Target) -> Any:
        change = self._entries.get(target)
        if change is not None:
            return change.new_value
        return self._baseline.value(target)

    def is_dirty(self, target: Target) -> bool:
        return target in self._entries

    def is_dirty_globally(self) -> bool:
        return len(self._entries) > 0

    def pending_count(self) -> int:
        return len(self._entries)

    def get_change(self, target: Target) -> PendingChange | None:
        return self._entries.get(target)

    def changes(self) -> list[PendingChange]:
        """Pending changes in the order their targets were first edited."""
        return list(self._entries.values())

    def changes_for_layer(self, layer: int) -> list[PendingChange]:
        return [
            c for c in self._entries.values()
            if c.target.kind in (KIND_KEY, KIND_LAYER_META) and c.target.layer == layer
        ]

    def changes_by_kind(self, kind: str) -> list[PendingChange]:
        return [c for c in self._entries.values() if c.target.kind == kind]

    def is_grouped(self, target: Target) -> bool:
        return target in self._groups

    def effective_state(self) -> Baseline:
        """
        Return a complete configuration with pending changes applied.
        """
        state = self._baseline.copy()
        for change in self._entries.values():
            state.apply(change.target, change.new_value)
        return state

    # -- mutations -----------------------------------------------------------

    def propose(self, target: Target, new_value: Any) -> PendingChange | None:
        """
        Record an edit for *target*.
        Returns the resulting entry, or None when the target is back at baseline.
        """
        before = self._snapshot()
        if self._propose(target, new_value):
            self._record(before)
        return self._entries.get(target)

    def propose_group(self, assignments: Iterable[tuple[Target, Any]]) -> None:
        """
        Record several edits as one logical unit.
        Surviving entries are linked so a commit writes them together.
        """
        assignments = list(assignments)
        before = self._snapshot()
        changed = False
        for target, value in assignments:
            changed = self._propose(target, value) or changed
        if not changed:
            return
        self._link([t for t, _ in assignments if t in self._entries])
        self._record(before)

    def revert(self, target: Target) -> bool:
        """Drop the pending edit for one target. Returns True if one existed."""
        if target not in self._entries:
            return False
        before = self._snapshot()
        self._remove(target)
        self._note(target, _REVERTED)
        self._record(before)
        logger.debug("Stage: reverted %s", target)
        return True

    def discard_all(self) -> None:
        """Discard all pending edits. The baseline is left untouched."""
        if self._watch is not None:
            self._watch.discarded = True
            self._watch.edits.clear()
        if not self._entries:
            return
        before = self._snapshot()
        self._entries = {}
        self._groups = {}
        self._record(before)
        logger.info("Stage: discarded all pending changes")

    def reload_from_device(self, fresh: Baseline) -> None:
        """
        Replace the baseline with a fresh device read.
        Clears all pending edits and history unconditionally.
        """
        self._baseline = fresh.copy()
        self._entries = {}
        self._groups = {}
        self._clear_history()
        logger.info("Stage: baseline reloaded from device, pending changes cleared")

    def rebase(self, fresh: Baseline) -> None:
        """Adopt a fresh baseline but keep pending edits that still differ from it."""
        self._baseline = fresh.copy()
        self._clear_history()
        pruned = self.prune()
        logger.info(f"Stage: rebased onto device state, {len(pruned)} change(s) already present")

    def prune(self) -> list[Target]:
        """Drop entries whose value equals the baseline. Returns the dropped targets."""
        dropped = [
            target for target, change in self._entries.items()
            if change.new_value == self._baseline.value(target)
        ]
        for target in dropped:
            self._remove(target)
        return dropped

    def record_device_write(self, target: Target, value: Any) -> None:
        """Note a value written to the device outside of commit()."""
        self._baseline.apply(target, value)
        change = self._entries.get(target)
        if change is not None and change.new_value == value:
            self._remove(target)

    # -- commit --------------------------------------------------------------

    def commit_units(self) -> list[list[PendingChange]]:
        """Group pending changes into write units, in first-edit order."""
        units: list[list[PendingChange]] = []
        by_group: dict[int, list[PendingChange]] = {}
        for target, change in self._entries.items():
            gid = self._groups.get(target)
            if gid is None:
                units.append([change])
                continue
            if gid not in by_group:
                by_group[gid] = []
                units.append(by_group[gid])
            by_group[gid].append(change)
        return units

    def settle(self, change: PendingChange) -> None:
        """
        Apply a successfully written change to the baseline.
        The entry is dropped unless a newer, different edit replaced it meanwhile.
        """
        self._baseline.apply(change.target, change.new_value)
        current = self._entries.get(change.target)
        if current is not None and current.new_value == change.new_value:
            self._remove(change.target)

    async def commit(self, transport) -> set[Target]:
        """
        Write all pending changes to the device.
        Returns the targets that are still pending because a write failed.
        """
        self.prune()
        if not self._entries:
            return set()
        controller = TransactionController(transport)
        failed = await controller.execute_transaction(self)
        self.last_errors = dict(controller.errors)
        self._clear_history()
        return failed

    # -- undo / redo ---------------------------------------------------------

    def undo(self) -> bool:
        """
        Undo the last queue operation.
        Returns True if an undo was performed.
        """
        if not self._history:
            return False
        self._redo_stack.append(self._snapshot())
        self._restore_snapshot(self._history.pop())
        return True

    def redo(self) -> bool:
        """
        Redo the last undone queue operation.
        Returns True if a redo was performed.
        """
        if not self._redo_stack:
            return False
        self._history.append(self._snapshot())
        self._restore_snapshot(self._redo_stack.pop())
        return True

    def can_undo(self) -> bool:
        return len(self._history) > 0

    def can_redo(self) -> bool:
        return len(self._redo_stack) > 0

    # -- checkpoints ---------------------------------------------------------

    def checkpoint(self) -> QueueCheckpoint:
        """Save the queue and start recording edits made from now on."""
        self._watch = QueueCheckpoint(
            baseline=self._baseline.copy(),
            entries=deepcopy(self._entries),
            groups=dict(self._groups),
        )
        return self._watch

    def release(self, checkpoint: QueueCheckpoint) -> None:
        """Stop recording edits for *checkpoint* without restoring it."""
        if self._watch is checkpoint:
            self._watch = None

    def restore(self, checkpoint: QueueCheckpoint) -> None:
        """
        Put the baseline and entries back as they were at *checkpoint*.
        Edits made after the checkpoint are replayed on top, so nothing the
        user changed while a sync was running is lost.
        """
        live_groups = self._groups
        self.release(checkpoint)
        self._baseline = checkpoint.baseline.copy()
        if checkpoint.discarded:
            self._entries = {}
            self._groups = {}
        else:
            self._entries = deepcopy(checkpoint.entries)
            self._groups = dict(checkpoint.groups)

        for target, value in checkpoint.edits.items():
            if value is _REVERTED:
                self._remove(target)
                continue
            prior = self._entries.get(target)
            result = reduce_change(target, self._baseline.value(target), prior, value)
            if result is None:
                self._remove(target)
                continue
            self._entries[target] = result
            if target in live_groups:
                self._groups[target] = live_groups[target]
        if checkpoint.edits:
            logger.info(f"Stage: {len(checkpoint.edits)} edit(s) made during sync kept")

    # -- internals -----------------------------------------------------------

    def _note(self, target: Target, value: Any) -> None:
        if self._watch is not None:
            self._watch.edits[target] = value

    def _propose(self, target: Target, new_value: Any) -> bool:
        self._note(target, new_value)
        prior = self._entries.get(target)
        result = reduce_change(target, self._baseline.value(target), prior, new_value)
        if result is None:
            if prior is None:
                return False
            self._remove(target)
            logger.debug("Stage: %s back at baseline, dropped", target)
            return True
        if result is prior:
            return False
        self._entries[target] = result
        logger.debug("Stage: %s %r -> %r", target, result.previous_value, result.new_value)
        return True

    def _remove(self, target: Target) -> None:
        self._entries.pop(target, None)
        self._groups.pop(target, None)

    def _link(self, targets: list[Target]) -> None:
        if len(targets) < 2:
            return
        gid = self._next_group
        self._next_group += 1
        merged = {self._groups[t] for t in targets if t in self._groups}
        for member, old in list(self._groups.items()):
            if old in merged:
                self._groups[member] = gid
        for target in targets:
            self._groups[target] = gid

    def _snapshot(self) -> tuple[dict, dict]:
        return deepcopy(self._entries), dict(self._groups)

    def _restore_snapshot(self, snapshot: tuple[dict, dict]) -> None:
        entries, groups = snapshot
        for target in set(entries) | set(self._entries):
            change = entries.get(target)
            self._note(target, change.new_value if change is not None else _REVERTED)
        self._entries = entries
        self._groups = groups
        # Baseline may have moved since the snapshot was taken
        self.prune()

    def _record(self, snapshot: tuple[dict, dict]) -> None:
        self._history.append(snapshot)
        if len(self._history) > self.max_history:
            self._history.pop(0)
        # Branching invalidates redo
        self._redo_stack = []

    def _clear_history(self) -> None:
        self._history = []
        self._redo_stack = []
