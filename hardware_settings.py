from __future__ import annotations

import logging
from typing import Any, Awaitable

from engine_errors import ConcurrentSettingWrite, InvalidTarget


logger = logging.getLogger(__name__)

# Settings exposed by the Svalboard firmware
SVALBOARD_SETTINGS = (
    "left-dpi",
    "right-dpi",
    "scroll-left",
    "scroll-right",
    "auto-mouse",
    "auto-mouse-timeout",
)


class TransportSettingHandler:
    """Reads and writes one named setting through a device transport."""

    def __init__(self, transport, name: str):
        self.transport = transport
        self.name = name

    async def get(self) -> Any:
        return await self.transport.read_setting(self.name)

    async def set(self, value: Any) -> None:
        await self.transport.write_setting(self.name, value)


class HardwareSettingBridge:
    """
    Named device settings that bypass the change queue.
    Each handler is any object with async get() and async set(value).
    Values are never cached; every get() goes to the device.
    """

    def __init__(self, handlers: dict[str, Any] | None = None):
        self._handlers: dict[str, Any] = dict(handlers or {})
        self._in_flight: set[str] = set()

    def register(self, name: str, handler) -> None:
        self._handlers[name] = handler

    def names(self) -> list[str]:
        return list(self._handlers)

    def is_busy(self, name: str) -> bool:
        return name in self._in_flight

    def _handler(self, name: str):
        handler = self._handlers.get(name)
        if handler is None:
            raise InvalidTarget(f"unknown hardware setting '{name}'")
        return handler

    async def get(self, name: str) -> Any:
        return await self._handler(name).get()

    def set(self, name: str, value: Any) -> Awaitable[None]:
        """Start writing *value* to the setting *name*.

        The lookup and the in-flight check happen immediately, so an
        overlapping write for the same setting raises ConcurrentSettingWrite
        here rather than when the result is awaited. The returned awaitable
        must be awaited to release the setting.
        """
        handler = self._handler(name)
        if name in self._in_flight:
            raise ConcurrentSettingWrite(name)
        self._in_flight.add(name)
        return self._write(name, handler, value)

    async def _write(self, name: str, handler, value: Any) -> None:
        try:
            await handler.set(value)
            logger.debug(f"Setting: {name} = {value!r}")
        finally:
            self._in_flight.discard(name)


def default_registry(transport) -> HardwareSettingBridge:
    """Bridge with every Svalboard setting routed through *transport*."""
    return HardwareSettingBridge(
        {name: TransportSettingHandler(transport, name) for name in SVALBOARD_SETTINGS}
    )
