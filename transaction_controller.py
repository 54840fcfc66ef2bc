"""Commit pending changes to the device one write unit at a time.

A unit is either a single change or a group proposed together (a key swap).
Members of a unit are written in order; if one fails, members already
written are restored to their baseline values so the device never holds half
a swap, and every member stays pending for the next commit.
"""
from __future__ import annotations

import logging
from typing import Callable

from engine_errors import DeviceConnectionError, WriteError


logger = logging.getLogger(__name__)


class TransactionController:
    def __init__(self, transport, log: Callable[[str], None] | None = None):
        self.transport = transport
        self._log_fn = log
        self.errors: dict = {}

    def _log(self, text: str, level: int = logging.INFO) -> None:
        logger.log(level, text)
        if self._log_fn is not None:
            self._log_fn(text)

    async def execute_transaction(self, queue) -> set:
        """Write every unit of *queue*. Returns the targets left pending by failures.

        DeviceConnectionError aborts the transaction: units already settled stay
        settled, everything else stays pending, and the error propagates.
        """
        failed = set()
        units = queue.commit_units()
        self._log(f"Commit: {sum(len(u) for u in units)} change(s) in {len(units)} unit(s)")

        for unit in units:
            written = []
            try:
                for change in unit:
                    await self.transport.write_target(change.target, change.new_value)
                    written.append(change)
            except WriteError as exc:
                culprit = unit[len(written)].target
                self.errors[culprit] = exc
                self._log(f"Commit: write failed for {culprit}: {exc.reason}", logging.WARNING)
                for change in unit:
                    if change.target != culprit:
                        self.errors[change.target] = WriteError(
                            change.target, f"not applied, {culprit} failed in the same unit"
                        )
                await self._rollback(written, queue.baseline)
                failed.update(change.target for change in unit)
                continue
            except DeviceConnectionError as exc:
                for change in unit:
                    self.errors[change.target] = exc
                self._log(f"Commit: device lost during commit: {exc}", logging.ERROR)
                raise

            for change in unit:
                queue.settle(change)
                self._log(f"Commit: {change.target} = {change.new_value!r}", logging.DEBUG)

        if failed:
            self._log(f"Commit: {len(failed)} change(s) still pending", logging.WARNING)
        else:
            self._log("Commit: all changes applied")
        return failed

    async def _rollback(self, written, baseline) -> None:
        for change in reversed(written):
            original = baseline.value(change.target)
            try:
                await self.transport.write_target(change.target, original)
                self._log(f"Rollback: {change.target} restored to {original!r}", logging.DEBUG)
            except (WriteError, DeviceConnectionError) as exc:
                # Entry stays pending, so the next commit rewrites it
                self._log(f"Rollback: could not restore {change.target}: {exc}", logging.ERROR)
