"""Error kinds raised by the change engine and its device transport."""
from __future__ import annotations


class KeybardError(Exception):
    """Base class for all engine errors."""


class DeviceConnectionError(KeybardError):
    """Device unreachable, or disconnected in the middle of an operation."""


class WriteError(KeybardError):
    """A single target failed to commit to the device."""

    def __init__(self, target, reason: str = "write failed"):
        super().__init__(f"{target}: {reason}")
        self.target = target
        self.reason = reason


class InvalidTarget(KeybardError):
    """Address outside the matrix bounds, or otherwise malformed."""


class ConcurrentSettingWrite(KeybardError):
    """A hardware setting was written while a previous write is outstanding."""

    def __init__(self, name: str):
        super().__init__(f"write to setting '{name}' already in progress")
        self.name = name
