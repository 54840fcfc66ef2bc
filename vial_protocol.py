from __future__ import annotations

import json
import lzma
import struct
import time
from dataclasses import dataclass
from typing import Iterable, Optional

import hid


# Raw HID interface used by VIA / Vial firmware
RAW_USAGE_PAGE = 0xFF60
RAW_USAGE = 0x61

MSG_LEN = 32

# VIA commands
CMD_VIA_GET_PROTOCOL_VERSION = 0x01
CMD_VIA_GET_KEYBOARD_VALUE = 0x02
CMD_VIA_SET_KEYBOARD_VALUE = 0x03
CMD_VIA_GET_KEYCODE = 0x04
CMD_VIA_SET_KEYCODE = 0x05
CMD_VIA_MACRO_GET_COUNT = 0x0C
CMD_VIA_MACRO_GET_BUFFER_SIZE = 0x0D
CMD_VIA_MACRO_GET_BUFFER = 0x0E
CMD_VIA_MACRO_SET_BUFFER = 0x0F
CMD_VIA_GET_LAYER_COUNT = 0x11
CMD_VIA_KEYMAP_GET_BUFFER = 0x12
CMD_VIA_VIAL_PREFIX = 0xFE
CMD_VIA_UNHANDLED = 0xFF

# Vial sub-commands (sent after CMD_VIA_VIAL_PREFIX)
CMD_VIAL_GET_KEYBOARD_ID = 0x00
CMD_VIAL_GET_SIZE = 0x01
CMD_VIAL_GET_DEFINITION = 0x02
CMD_VIAL_DYNAMIC_ENTRY_OP = 0x0D

# Dynamic entry operations
DYNAMIC_VIAL_GET_NUMBER_OF_ENTRIES = 0x00
DYNAMIC_VIAL_TAP_DANCE_GET = 0x01
DYNAMIC_VIAL_TAP_DANCE_SET = 0x02
DYNAMIC_VIAL_COMBO_GET = 0x03
DYNAMIC_VIAL_COMBO_SET = 0x04
DYNAMIC_VIAL_KEY_OVERRIDE_GET = 0x05
DYNAMIC_VIAL_KEY_OVERRIDE_SET = 0x06

# Svalboard vendor protocol
SVAL_IDENTIFIER = 0xEE
SVAL_GET_PROTO_VERSION = 0x01
SVAL_GET_FIRMWARE_VERSION = 0x02
SVAL_LAYER_COLOR_GET = 0x10
SVAL_LAYER_COLOR_SET = 0x11
SVAL_MAGIC = b"sval"


@dataclass(frozen=True)
class SvalSetting:
    get_cmd: int
    set_cmd: int
    width: int  # bytes, little endian


# Svalboard pointer settings: name -> (get, set, value width)
SVAL_SETTINGS = {
    "left-dpi": SvalSetting(0x20, 0x21, 2),
    "right-dpi": SvalSetting(0x22, 0x23, 2),
    "scroll-left": SvalSetting(0x24, 0x25, 1),
    "scroll-right": SvalSetting(0x26, 0x27, 1),
    "auto-mouse": SvalSetting(0x28, 0x29, 1),
    "auto-mouse-timeout": SvalSetting(0x2A, 0x2B, 2),
}

KEYMAP_CHUNK = MSG_LEN - 4
TAPDANCE_FORMAT = "<HHHHH"
COMBO_FORMAT = "<HHHHH"
OVERRIDE_FORMAT = "<HHHBBBB"


def build_message(command: int, args: Iterable[int] = ()) -> bytes:
    args = bytes(args)
    if len(args) > MSG_LEN - 1:
        raise ValueError(f"message arguments must be <= {MSG_LEN - 1} bytes, got {len(args)}")
    data = bytearray(MSG_LEN)
    data[0] = command & 0xFF
    data[1:1 + len(args)] = args
    return bytes(data)


def build_vial(subcommand: int, args: Iterable[int] = ()) -> bytes:
    return build_message(CMD_VIA_VIAL_PREFIX, bytes([subcommand, *args]))


def build_sval(param: int, args: Iterable[int] = ()) -> bytes:
    return build_message(SVAL_IDENTIFIER, bytes([param, *args]))


def build_set_keycode(layer: int, row: int, col: int, keycode: int) -> bytes:
    """VIA dynamic keymap write. Keycode is big endian on the wire."""
    return build_message(CMD_VIA_SET_KEYCODE, struct.pack(">BBBH", layer, row, col, keycode))


def build_keymap_buffer_read(offset: int, size: int) -> bytes:
    if size > KEYMAP_CHUNK:
        raise ValueError(f"keymap chunk must be <= {KEYMAP_CHUNK} bytes")
    return build_message(CMD_VIA_KEYMAP_GET_BUFFER, struct.pack(">HB", offset, size))


def build_macro_buffer_read(offset: int, size: int) -> bytes:
    if size > KEYMAP_CHUNK:
        raise ValueError(f"macro chunk must be <= {KEYMAP_CHUNK} bytes")
    return build_message(CMD_VIA_MACRO_GET_BUFFER, struct.pack(">HB", offset, size))


def build_macro_buffer_write(offset: int, data: bytes) -> bytes:
    if len(data) > KEYMAP_CHUNK:
        raise ValueError(f"macro chunk must be <= {KEYMAP_CHUNK} bytes")
    return build_message(CMD_VIA_MACRO_SET_BUFFER, struct.pack(">HB", offset, len(data)) + bytes(data))


def split_macros(buffer: bytes, count: int) -> list[bytes]:
    """Cut the NUL separated macro buffer into *count* macros.

    Macros missing from the end of the buffer come back empty.
    """
    parts = bytes(buffer).split(b"\x00")
    macros = parts[:count]
    macros.extend(b"" for _ in range(count - len(macros)))
    return macros


def pack_macros(macros: list[bytes], size: int) -> bytes:
    """Join macros into buffer contents, each one NUL terminated."""
    for index, macro in enumerate(macros):
        if b"\x00" in macro:
            raise ValueError(f"macro {index} contains a NUL byte")
    data = b"".join(bytes(m) + b"\x00" for m in macros)
    if len(data) > size:
        raise ValueError(f"macros need {len(data)} bytes, keyboard has {size}")
    return data


def build_tapdance_set(index: int, tap: int, hold: int, doubletap: int, taphold: int, term: int) -> bytes:
    return build_vial(
        CMD_VIAL_DYNAMIC_ENTRY_OP,
        bytes([DYNAMIC_VIAL_TAP_DANCE_SET, index]) + struct.pack(TAPDANCE_FORMAT, tap, hold, doubletap, taphold, term),
    )


def build_combo_set(index: int, keys: list[int]) -> bytes:
    """keys holds four inputs followed by the output keycode."""
    if len(keys) != 5:
        raise ValueError("combo needs 4 input keys and 1 output")
    return build_vial(
        CMD_VIAL_DYNAMIC_ENTRY_OP,
        bytes([DYNAMIC_VIAL_COMBO_SET, index]) + struct.pack(COMBO_FORMAT, *keys),
    )


def build_override_set(index: int, entry: dict) -> bytes:
    payload = struct.pack(
        OVERRIDE_FORMAT,
        entry["trigger"],
        entry["replacement"],
        entry.get("layers", 0xFFFF),
        entry.get("trigger_mods", 0),
        entry.get("negative_mod_mask", 0),
        entry.get("suppressed_mods", 0),
        entry.get("options", 0),
    )
    return build_vial(CMD_VIAL_DYNAMIC_ENTRY_OP, bytes([DYNAMIC_VIAL_KEY_OVERRIDE_SET, index]) + payload)


def build_setting_write(name: str, value: int) -> bytes:
    setting = SVAL_SETTINGS[name]
    return build_sval(setting.set_cmd, int(value).to_bytes(setting.width, "little"))


@dataclass(frozen=True)
class DeviceInfo:
    path: str
    product: str
    manufacturer: str
    vendor_id: int
    product_id: int
    serial: str


def list_devices() -> list[DeviceInfo]:
    """Attached keyboards exposing the VIA raw HID interface."""
    devices = []
    seen_paths = set()
    for item in hid.enumerate(0, 0):
        if item.get("usage_page") != RAW_USAGE_PAGE or item.get("usage") != RAW_USAGE:
            continue

        path_str = item["path"].decode() if isinstance(item["path"], bytes) else item["path"]
        if path_str in seen_paths:
            continue
        seen_paths.add(path_str)

        devices.append(
            DeviceInfo(
                path=path_str,
                product=item.get("product_string") or "Unknown",
                manufacturer=item.get("manufacturer_string") or "Unknown",
                vendor_id=item["vendor_id"],
                product_id=item["product_id"],
                serial=item.get("serial_number") or "",
            )
        )

    # Svalboards first
    devices.sort(key=lambda d: 0 if "svalboard" in d.product.lower() else 1)
    return devices


class VialDevice:
    """Blocking request/response access to one VIA / Vial keyboard."""

    def __init__(self, path: str, retries: int = 20, timeout_ms: int = 500):
        self._path = path
        self._dev: Optional[hid.device] = None
        self.retries = retries
        self.timeout_ms = timeout_ms

    @property
    def is_open(self) -> bool:
        return self._dev is not None

    def open(self) -> None:
        if self._dev is not None:
            return
        dev = hid.device()
        dev.open_path(self._path.encode() if isinstance(self._path, str) else self._path)
        self._dev = dev

    def close(self) -> None:
        if self._dev is None:
            return
        self._dev.close()
        self._dev = None

    def send(self, message: bytes) -> bytes:
        """Write one message and return the matching 32-byte response."""
        if self._dev is None:
            raise RuntimeError("device not open")
        if len(message) != MSG_LEN:
            raise ValueError(f"message must be {MSG_LEN} bytes")

        for _ in range(self.retries):
            # Report ID 0 prefix for hidapi
            written = self._dev.write(b"\x00" + message)
            if written < 0:
                raise OSError("HID write failed")
            resp = self._dev.read(MSG_LEN, timeout_ms=self.timeout_ms)
            if resp:
                return bytes(resp)
            time.sleep(0.01)

        raise RuntimeError(f"No response to command 0x{message[0]:02X} after {self.retries} attempts")

    # -- VIA ---------------------------------------------------------------------

    def get_protocol_version(self) -> int:
        resp = self.send(build_message(CMD_VIA_GET_PROTOCOL_VERSION))
        return struct.unpack(">H", resp[1:3])[0]

    def get_layer_count(self) -> int:
        resp = self.send(build_message(CMD_VIA_GET_LAYER_COUNT))
        return resp[1]

    def read_keymap(self, layers: int, rows: int, cols: int) -> list[list[list[int]]]:
        """Read the whole dynamic keymap as ``[layer][row][col]`` keycodes."""
        size = layers * rows * cols * 2
        raw = bytearray()
        offset = 0
        while offset < size:
            chunk = min(KEYMAP_CHUNK, size - offset)
            resp = self.send(build_keymap_buffer_read(offset, chunk))
            raw.extend(resp[4:4 + chunk])
            offset += chunk

        codes = struct.unpack(f">{layers * rows * cols}H", bytes(raw))
        it = iter(codes)
        return [[[next(it) for _ in range(cols)] for _ in range(rows)] for _ in range(layers)]

    def set_keycode(self, layer: int, row: int, col: int, keycode: int) -> bool:
        msg = build_set_keycode(layer, row, col, keycode)
        resp = self.send(msg)
        return resp[0] == msg[0]

    def get_macro_count(self) -> int:
        resp = self.send(build_message(CMD_VIA_MACRO_GET_COUNT))
        return resp[1]

    def get_macro_buffer_size(self) -> int:
        resp = self.send(build_message(CMD_VIA_MACRO_GET_BUFFER_SIZE))
        return struct.unpack(">H", resp[1:3])[0]

    def read_macro_buffer(self, size: int) -> bytes:
        raw = bytearray()
        offset = 0
        while offset < size:
            chunk = min(KEYMAP_CHUNK, size - offset)
            resp = self.send(build_macro_buffer_read(offset, chunk))
            raw.extend(resp[4:4 + chunk])
            offset += chunk
        return bytes(raw)

    def write_macro_buffer(self, data: bytes) -> bool:
        """Write *data* from the start of the macro buffer, one chunk per message."""
        for offset in range(0, len(data), KEYMAP_CHUNK):
            msg = build_macro_buffer_write(offset, data[offset:offset + KEYMAP_CHUNK])
            if self.send(msg)[0] != msg[0]:
                return False
        return True

    def get_macros(self) -> tuple[list[bytes], int]:
        """All macros as raw contents, plus the buffer size."""
        count = self.get_macro_count()
        size = self.get_macro_buffer_size()
        if count == 0 or size == 0:
            return [], size
        return split_macros(self.read_macro_buffer(size), count), size

    # -- Vial --------------------------------------------------------------------

    def get_keyboard_id(self) -> tuple[int, int]:
        resp = self.send(build_vial(CMD_VIAL_GET_KEYBOARD_ID))
        return struct.unpack("<IQ", resp[0:12])

    def get_definition(self) -> dict:
        """Download and decompress the Vial keyboard definition JSON."""
        resp = self.send(build_vial(CMD_VIAL_GET_SIZE))
        size = struct.unpack("<I", resp[0:4])[0]

        payload = bytearray()
        block = 0
        while len(payload) < size:
            resp = self.send(build_vial(CMD_VIAL_GET_DEFINITION, struct.pack("<I", block)))
            payload.extend(resp[: min(MSG_LEN, size - len(payload))])
            block += 1

        return json.loads(lzma.decompress(bytes(payload)))

    def get_dynamic_counts(self) -> tuple[int, int, int]:
        """Number of (tap dance, combo, key override) entries."""
        resp = self.send(build_vial(CMD_VIAL_DYNAMIC_ENTRY_OP, [DYNAMIC_VIAL_GET_NUMBER_OF_ENTRIES]))
        return resp[0], resp[1], resp[2]

    def _dynamic_get(self, op: int, index: int, fmt: str) -> tuple:
        resp = self.send(build_vial(CMD_VIAL_DYNAMIC_ENTRY_OP, [op, index]))
        if resp[0] != 0:
            raise RuntimeError(f"dynamic entry {op}:{index} read failed with status {resp[0]}")
        return struct.unpack(fmt, resp[1:1 + struct.calcsize(fmt)])

    def get_tapdance(self, index: int) -> dict:
        tap, hold, doubletap, taphold, term = self._dynamic_get(DYNAMIC_VIAL_TAP_DANCE_GET, index, TAPDANCE_FORMAT)
        return {"tap": tap, "hold": hold, "doubletap": doubletap, "taphold": taphold, "tapping_term": term}

    def get_combo(self, index: int) -> list[int]:
        return list(self._dynamic_get(DYNAMIC_VIAL_COMBO_GET, index, COMBO_FORMAT))

    def get_override(self, index: int) -> dict:
        values = self._dynamic_get(DYNAMIC_VIAL_KEY_OVERRIDE_GET, index, OVERRIDE_FORMAT)
        keys = ("trigger", "replacement", "layers", "trigger_mods", "negative_mod_mask", "suppressed_mods", "options")
        return dict(zip(keys, values))

    def send_dynamic_set(self, message: bytes) -> bool:
        return self.send(message)[0] == 0

    # -- Svalboard ---------------------------------------------------------------

    def check_sval(self) -> int:
        """Svalboard protocol version, or 0 when the keyboard is not a Svalboard."""
        resp = self.send(build_sval(SVAL_GET_PROTO_VERSION))
        if resp[0:4] != SVAL_MAGIC:
            return 0
        return struct.unpack("<I", resp[4:8])[0]

    def get_firmware_version(self) -> str:
        resp = self.send(build_sval(SVAL_GET_FIRMWARE_VERSION))
        return resp.replace(b"\x00", b"").decode(errors="replace")

    def get_layer_color(self, layer: int) -> tuple[int, int, int]:
        resp = self.send(build_sval(SVAL_LAYER_COLOR_GET, [layer]))
        return resp[0], resp[1], resp[2]

    def set_layer_color(self, layer: int, hue: int, sat: int, val: int) -> bool:
        msg = build_sval(SVAL_LAYER_COLOR_SET, [layer, hue, sat, val])
        return self.send(msg)[0] != CMD_VIA_UNHANDLED

    def get_setting(self, name: str) -> int:
        setting = SVAL_SETTINGS[name]
        resp = self.send(build_sval(setting.get_cmd))
        return int.from_bytes(resp[0:setting.width], "little")

    def set_setting(self, name: str, value: int) -> bool:
        return self.send(build_setting_write(name, value))[0] != CMD_VIA_UNHANDLED
