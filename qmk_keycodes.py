"""Subset of the QMK keycode catalog.

Converts between 16-bit firmware keycodes and their ``KC_*`` names, provides
display labels, and maps Qt key presses to keycodes. Only the basic HID range,
modifiers and layer functions are covered; anything else round-trips as a hex
literal (``0x7C16``).
"""
from __future__ import annotations

import re

from PyQt6 import QtCore


KC_NO = 0x0000
KC_TRNS = 0x0001

# Basic keycodes share their values with HID keyboard usages
BASIC_KEYCODES = {
    "KC_NO": KC_NO,
    "KC_TRNS": KC_TRNS,
    # Letters A-Z
    **{f"KC_{chr(ord('A') + i)}": 0x04 + i for i in range(26)},
    # Numbers 1-9, 0
    "KC_1": 0x1E, "KC_2": 0x1F, "KC_3": 0x20, "KC_4": 0x21, "KC_5": 0x22,
    "KC_6": 0x23, "KC_7": 0x24, "KC_8": 0x25, "KC_9": 0x26, "KC_0": 0x27,
    # Special keys
    "KC_ENTER": 0x28, "KC_ESCAPE": 0x29, "KC_BACKSPACE": 0x2A, "KC_TAB": 0x2B,
    "KC_SPACE": 0x2C, "KC_MINUS": 0x2D, "KC_EQUAL": 0x2E, "KC_LEFT_BRACKET": 0x2F,
    "KC_RIGHT_BRACKET": 0x30, "KC_BACKSLASH": 0x31, "KC_SEMICOLON": 0x33,
    "KC_QUOTE": 0x34, "KC_GRAVE": 0x35, "KC_COMMA": 0x36, "KC_DOT": 0x37,
    "KC_SLASH": 0x38, "KC_CAPS_LOCK": 0x39,
    # Function keys
    **{f"KC_F{i + 1}": 0x3A + i for i in range(12)},
    # System
    "KC_PRINT_SCREEN": 0x46, "KC_SCROLL_LOCK": 0x47, "KC_PAUSE": 0x48,
    # Navigation
    "KC_INSERT": 0x49, "KC_HOME": 0x4A, "KC_PAGE_UP": 0x4B,
    "KC_DELETE": 0x4C, "KC_END": 0x4D, "KC_PAGE_DOWN": 0x4E,
    "KC_RIGHT": 0x4F, "KC_LEFT": 0x50, "KC_DOWN": 0x51, "KC_UP": 0x52,
    # Keypad
    "KC_NUM_LOCK": 0x53, "KC_KP_SLASH": 0x54, "KC_KP_ASTERISK": 0x55,
    "KC_KP_MINUS": 0x56, "KC_KP_PLUS": 0x57, "KC_KP_ENTER": 0x58,
    **{f"KC_KP_{i}": 0x59 + i - 1 for i in range(1, 10)},
    "KC_KP_0": 0x62, "KC_KP_DOT": 0x63,
    "KC_APPLICATION": 0x65,
    # Modifiers
    "KC_LEFT_CTRL": 0xE0, "KC_LEFT_SHIFT": 0xE1, "KC_LEFT_ALT": 0xE2, "KC_LEFT_GUI": 0xE3,
    "KC_RIGHT_CTRL": 0xE4, "KC_RIGHT_SHIFT": 0xE5, "KC_RIGHT_ALT": 0xE6, "KC_RIGHT_GUI": 0xE7,
}

# Common short aliases accepted on input
ALIASES = {
    "KC_TRANSPARENT": "KC_TRNS",
    "_______": "KC_TRNS",
    "XXXXXXX": "KC_NO",
    "KC_ENT": "KC_ENTER",
    "KC_ESC": "KC_ESCAPE",
    "KC_BSPC": "KC_BACKSPACE",
    "KC_SPC": "KC_SPACE",
    "KC_DEL": "KC_DELETE",
    "KC_LCTL": "KC_LEFT_CTRL",
    "KC_LSFT": "KC_LEFT_SHIFT",
    "KC_LALT": "KC_LEFT_ALT",
    "KC_LGUI": "KC_LEFT_GUI",
    "KC_RCTL": "KC_RIGHT_CTRL",
    "KC_RSFT": "KC_RIGHT_SHIFT",
    "KC_RALT": "KC_RIGHT_ALT",
    "KC_RGUI": "KC_RIGHT_GUI",
}

_NAMES_BY_CODE = {code: name for name, code in BASIC_KEYCODES.items()}

# QMK layer function ranges: (name, base); the low 5 bits hold the layer
LAYER_FUNCTIONS = (
    ("TO", 0x5200),
    ("MO", 0x5220),
    ("DF", 0x5240),
    ("TG", 0x5260),
    ("OSL", 0x5280),
    ("TT", 0x52C0),
)
QK_LAYER_TAP = 0x4000
QK_LAYER_TAP_MAX = 0x4FFF

DISPLAY_NAMES = {
    "KC_NO": "",
    "KC_TRNS": "▽",
    "KC_ENTER": "Enter",
    "KC_ESCAPE": "Esc",
    "KC_BACKSPACE": "Bksp",
    "KC_TAB": "Tab",
    "KC_SPACE": "Space",
    "KC_MINUS": "-", "KC_EQUAL": "=", "KC_LEFT_BRACKET": "[", "KC_RIGHT_BRACKET": "]",
    "KC_BACKSLASH": "\\", "KC_SEMICOLON": ";", "KC_QUOTE": "'", "KC_GRAVE": "`",
    "KC_COMMA": ",", "KC_DOT": ".", "KC_SLASH": "/",
    "KC_CAPS_LOCK": "Caps",
    "KC_PAGE_UP": "PgUp", "KC_PAGE_DOWN": "PgDn",
    "KC_RIGHT": "Right", "KC_LEFT": "Left", "KC_DOWN": "Down", "KC_UP": "Up",
    "KC_LEFT_CTRL": "LCtrl", "KC_LEFT_SHIFT": "LShift", "KC_LEFT_ALT": "LAlt", "KC_LEFT_GUI": "LGui",
    "KC_RIGHT_CTRL": "RCtrl", "KC_RIGHT_SHIFT": "RShift", "KC_RIGHT_ALT": "RAlt", "KC_RIGHT_GUI": "RGui",
}

_LAYER_FN_RE = re.compile(r"^(TO|MO|DF|TG|OSL|TT)\((\d+)\)$")
_LAYER_TAP_RE = re.compile(r"^LT\(\s*(\d+)\s*,\s*(\w+)\s*\)$")


def serialize(code: int) -> str:
    """Convert a numeric keycode to its name, or a hex literal if unknown."""
    name = _NAMES_BY_CODE.get(code)
    if name is not None:
        return name
    for fn, base in LAYER_FUNCTIONS:
        if base <= code < base + 0x20:
            return f"{fn}({code - base})"
    if QK_LAYER_TAP <= code <= QK_LAYER_TAP_MAX:
        layer = (code >> 8) & 0x0F
        inner = code & 0xFF
        return f"LT({layer}, {serialize(inner)})"
    return f"0x{code:04X}"


def deserialize(value: int | str) -> int:
    """Convert a keycode name (or number) to its numeric value.

    Raises ValueError for names outside the known catalog.
    """
    if isinstance(value, int):
        if not 0 <= value <= 0xFFFF:
            raise ValueError(f"keycode out of range: {value}")
        return value
    name = value.strip()
    name = ALIASES.get(name, name)
    if name in BASIC_KEYCODES:
        return BASIC_KEYCODES[name]
    match = _LAYER_FN_RE.match(name)
    if match:
        base = dict(LAYER_FUNCTIONS)[match.group(1)]
        layer = int(match.group(2))
        if layer >= 0x20:
            raise ValueError(f"layer out of range in {name}")
        return base + layer
    match = _LAYER_TAP_RE.match(name)
    if match:
        layer = int(match.group(1))
        inner = deserialize(match.group(2))
        if layer > 0x0F or inner > 0xFF:
            raise ValueError(f"unsupported layer-tap {name}")
        return QK_LAYER_TAP | (layer << 8) | inner
    if name.lower().startswith("0x"):
        return deserialize(int(name, 16))
    raise ValueError(f"unknown keycode: {value}")


def normalize(value: int | str) -> str:
    """Canonical name for any accepted keycode spelling."""
    return serialize(deserialize(value))


def resolve_display_name(keycode: int | str) -> str | None:
    """Short human-readable label for a keycode, or None if unknown."""
    try:
        name = normalize(keycode)
    except ValueError:
        return None
    if name in DISPLAY_NAMES:
        return DISPLAY_NAMES[name]
    if name.startswith("KC_KP_"):
        return "Kp " + name[len("KC_KP_"):].title()
    if name.startswith("KC_"):
        return name[3:].replace("_", " ").title() if len(name) > 4 else name[3:]
    if name.startswith("0x"):
        return None
    return name


_QT_KEY_MAP = {
    QtCore.Qt.Key.Key_Return: "KC_ENTER",
    QtCore.Qt.Key.Key_Enter: "KC_ENTER",
    QtCore.Qt.Key.Key_Escape: "KC_ESCAPE",
    QtCore.Qt.Key.Key_Backspace: "KC_BACKSPACE",
    QtCore.Qt.Key.Key_Tab: "KC_TAB",
    QtCore.Qt.Key.Key_Space: "KC_SPACE",
    QtCore.Qt.Key.Key_Insert: "KC_INSERT",
    QtCore.Qt.Key.Key_Home: "KC_HOME",
    QtCore.Qt.Key.Key_End: "KC_END",
    QtCore.Qt.Key.Key_PageUp: "KC_PAGE_UP",
    QtCore.Qt.Key.Key_PageDown: "KC_PAGE_DOWN",
    QtCore.Qt.Key.Key_Delete: "KC_DELETE",
    QtCore.Qt.Key.Key_Left: "KC_LEFT",
    QtCore.Qt.Key.Key_Right: "KC_RIGHT",
    QtCore.Qt.Key.Key_Up: "KC_UP",
    QtCore.Qt.Key.Key_Down: "KC_DOWN",
    QtCore.Qt.Key.Key_Comma: "KC_COMMA",
    QtCore.Qt.Key.Key_Period: "KC_DOT",
    QtCore.Qt.Key.Key_Slash: "KC_SLASH",
    QtCore.Qt.Key.Key_Semicolon: "KC_SEMICOLON",
    QtCore.Qt.Key.Key_Minus: "KC_MINUS",
    QtCore.Qt.Key.Key_Equal: "KC_EQUAL",
    QtCore.Qt.Key.Key_BracketLeft: "KC_LEFT_BRACKET",
    QtCore.Qt.Key.Key_BracketRight: "KC_RIGHT_BRACKET",
    QtCore.Qt.Key.Key_Backslash: "KC_BACKSLASH",
    QtCore.Qt.Key.Key_Apostrophe: "KC_QUOTE",
    QtCore.Qt.Key.Key_QuoteLeft: "KC_GRAVE",
    QtCore.Qt.Key.Key_CapsLock: "KC_CAPS_LOCK",
    QtCore.Qt.Key.Key_Shift: "KC_LEFT_SHIFT",
    QtCore.Qt.Key.Key_Control: "KC_LEFT_CTRL",
    QtCore.Qt.Key.Key_Alt: "KC_LEFT_ALT",
    QtCore.Qt.Key.Key_Meta: "KC_LEFT_GUI",
    **{getattr(QtCore.Qt.Key, f"Key_F{i}"): f"KC_F{i}" for i in range(1, 13)},
}


def qt_key_to_keycode(qt_key) -> str | None:
    """Convert a Qt key to a QMK keycode name."""
    try:
        key = QtCore.Qt.Key(qt_key)
    except ValueError:
        return None
    if QtCore.Qt.Key.Key_A.value <= key.value <= QtCore.Qt.Key.Key_Z.value:
        return f"KC_{chr(key.value)}"
    if QtCore.Qt.Key.Key_0.value <= key.value <= QtCore.Qt.Key.Key_9.value:
        return f"KC_{chr(key.value)}"
    return _QT_KEY_MAP.get(key)
