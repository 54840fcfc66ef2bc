"""Device detection and transport layer.

Wraps the blocking VialDevice in an asyncio transport that speaks Targets and
keycode names, and converts HID failures into engine errors.
"""
from __future__ import annotations

import asyncio
import logging
import lzma
import struct

import qmk_keycodes
import vial_protocol as vp
from binding_targets import (
    KIND_COMBO,
    KIND_HARDWARE_SETTING,
    KIND_KEY,
    KIND_LAYER_META,
    KIND_MACRO,
    KIND_OVERRIDE,
    KIND_TAPDANCE,
    Target,
)
from device_baseline import Baseline
from engine_errors import DeviceConnectionError, InvalidTarget, WriteError


logger = logging.getLogger(__name__)

DEVICE_TYPE_SVALBOARD = "svalboard"
DEVICE_TYPE_VIAL = "vial"

_IO_ERRORS = (OSError, RuntimeError, struct.error)


def detect_device_type(device_info: vp.DeviceInfo) -> str:
    """Return 'svalboard' for Svalboard keyboards, 'vial' otherwise."""
    if "svalboard" in device_info.product.lower():
        return DEVICE_TYPE_SVALBOARD
    return DEVICE_TYPE_VIAL


def create_device(path: str, retries: int = 20, timeout_ms: int = 500) -> vp.VialDevice:
    return vp.VialDevice(path, retries=retries, timeout_ms=timeout_ms)


def create_transport(device_info: vp.DeviceInfo, config=None) -> "VialTransport":
    """Factory: transport for *device_info*, honouring HID settings from *config*."""
    retries = config.hid_retries if config is not None else 20
    timeout_ms = config.hid_timeout_ms if config is not None else 500
    device = create_device(device_info.path, retries=retries, timeout_ms=timeout_ms)
    return VialTransport(device, device_type=detect_device_type(device_info))


class VialTransport:
    """Async transport over a VialDevice.

    Every device exchange runs in a worker thread, one at a time, so request
    and response pairs from concurrent callers never interleave.
    """

    def __init__(self, device: vp.VialDevice, device_type: str = DEVICE_TYPE_VIAL):
        self.device = device
        self.device_type = device_type
        self._lock = asyncio.Lock()

    async def _call(self, fn, *args):
        async with self._lock:
            try:
                return await asyncio.to_thread(fn, *args)
            except _IO_ERRORS as exc:
                raise DeviceConnectionError(str(exc)) from exc

    async def connect(self) -> None:
        await self._call(self.device.open)
        logger.info("Connect: device opened")

    async def close(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self.device.close)

    # -- reads -------------------------------------------------------------------

    async def read_device_state(self) -> Baseline:
        if not self.device.is_open:
            await self.connect()
        async with self._lock:
            try:
                return await asyncio.to_thread(self._read_all)
            except _IO_ERRORS as exc:
                raise DeviceConnectionError(str(exc)) from exc
            except (ValueError, KeyError, lzma.LZMAError) as exc:
                raise DeviceConnectionError(f"unreadable keyboard definition: {exc}") from exc

    def _read_all(self) -> Baseline:
        dev = self.device
        definition = dev.get_definition()
        rows = definition["matrix"]["rows"]
        cols = definition["matrix"]["cols"]
        layers = dev.get_layer_count()
        logger.debug(f"Read: {layers} layers, {rows}x{cols} matrix")

        keymap = dev.read_keymap(layers, rows, cols)
        named = [[[qmk_keycodes.serialize(code) for code in row] for row in layer] for layer in keymap]

        tapdance_count, combo_count, override_count = dev.get_dynamic_counts()
        tapdances = {}
        for i in range(tapdance_count):
            entry = dev.get_tapdance(i)
            tapdances[i] = {
                slot: qmk_keycodes.serialize(entry[slot]) for slot in ("tap", "hold", "doubletap", "taphold")
            }
        combos = {
            i: [qmk_keycodes.serialize(code) for code in dev.get_combo(i)]
            for i in range(combo_count)
        }
        overrides = {}
        for i in range(override_count):
            entry = dev.get_override(i)
            overrides[i] = {
                "trigger": qmk_keycodes.serialize(entry["trigger"]),
                "replacement": qmk_keycodes.serialize(entry["replacement"]),
            }

        macros, macro_buffer_size = dev.get_macros()

        layer_meta = {i: {"name": f"Layer {i}"} for i in range(layers)}
        settings = {}
        if self.device_type == DEVICE_TYPE_SVALBOARD and dev.check_sval() > 0:
            for i in range(layers):
                layer_meta[i]["color"] = dev.get_layer_color(i)
            for name in vp.SVAL_SETTINGS:
                settings[name] = dev.get_setting(name)

        return Baseline.from_layers(
            named,
            layer_meta=layer_meta,
            hardware_settings=settings,
            combos=combos,
            tapdances=tapdances,
            overrides=overrides,
            macros=dict(enumerate(macros)),
            macro_buffer_size=macro_buffer_size,
        )

    async def read_setting(self, name: str):
        if name not in vp.SVAL_SETTINGS:
            raise InvalidTarget(f"unknown hardware setting '{name}'")
        return await self._call(self.device.get_setting, name)

    # -- writes ------------------------------------------------------------------

    async def write_target(self, target: Target, value) -> None:
        if target.kind == KIND_LAYER_META and target.name == "name":
            # Layer names live on the host only
            return
        try:
            request = self._write_request(target, value)
        except (ValueError, TypeError, KeyError) as exc:
            raise WriteError(target, f"cannot encode {value!r}: {exc}") from exc

        try:
            accepted = await self._call(request)
        except ValueError as exc:
            # Raised when the rewritten macro buffer no longer fits
            raise WriteError(target, str(exc)) from exc
        if not accepted:
            raise WriteError(target, "rejected by keyboard")
        logger.debug(f"Write: {target} = {value!r}")

    async def write_setting(self, name: str, value) -> None:
        if name not in vp.SVAL_SETTINGS:
            raise InvalidTarget(f"unknown hardware setting '{name}'")
        try:
            setting_value = int(value)
        except (ValueError, TypeError) as exc:
            raise WriteError(Target.hardware_setting(name), f"cannot encode {value!r}: {exc}") from exc
        accepted = await self._call(self.device.set_setting, name, setting_value)
        if not accepted:
            raise WriteError(Target.hardware_setting(name), "rejected by keyboard")

    def _write_request(self, target: Target, value):
        """Build a blocking callable that performs the write and returns success."""
        dev = self.device
        kind = target.kind

        if kind == KIND_KEY:
            code = qmk_keycodes.deserialize(value)
            return lambda: dev.set_keycode(target.layer, target.row, target.col, code)

        if kind == KIND_LAYER_META:
            hue, sat, val = (int(v) for v in value)
            return lambda: dev.set_layer_color(target.layer, hue, sat, val)

        if kind == KIND_HARDWARE_SETTING:
            setting_value = int(value)
            return lambda: dev.set_setting(target.name, setting_value)

        if kind == KIND_MACRO:
            content = bytes(value)
            if b"\x00" in content:
                raise ValueError("macro contains a NUL byte")

            # All macros share one buffer, so the whole buffer is rewritten
            def write_macro():
                macros, size = dev.get_macros()
                if not 0 <= target.index < len(macros):
                    return False
                macros[target.index] = content
                return dev.write_macro_buffer(vp.pack_macros(macros, size))
            return write_macro

        code = qmk_keycodes.deserialize(value)

        # Dynamic entries are written whole, so read the current entry first
        if kind == KIND_COMBO:
            def write_combo():
                keys = dev.get_combo(target.index)
                keys[target.slot] = code
                return dev.send_dynamic_set(vp.build_combo_set(target.index, keys))
            return write_combo

        if kind == KIND_TAPDANCE:
            def write_tapdance():
                entry = dev.get_tapdance(target.index)
                entry[target.slot] = code
                return dev.send_dynamic_set(
                    vp.build_tapdance_set(
                        target.index, entry["tap"], entry["hold"], entry["doubletap"],
                        entry["taphold"], entry["tapping_term"],
                    )
                )
            return write_tapdance

        if kind == KIND_OVERRIDE:
            def write_override():
                entry = dev.get_override(target.index)
                entry[target.slot] = code
                return dev.send_dynamic_set(vp.build_override_set(target.index, entry))
            return write_override

        raise ValueError(f"unsupported target kind '{kind}'")
