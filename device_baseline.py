from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
from typing import Any

from binding_targets import (
    COMBO_SLOTS,
    KIND_COMBO,
    KIND_HARDWARE_SETTING,
    KIND_KEY,
    KIND_LAYER_META,
    KIND_MACRO,
    KIND_OVERRIDE,
    KIND_TAPDANCE,
    LAYER_META_FIELDS,
    OVERRIDE_SLOTS,
    TAPDANCE_SLOTS,
    Target,
)
from engine_errors import InvalidTarget


@dataclass
class Baseline:
    """Last configuration confirmed to match the physical device.

    Only the change queue writes to a Baseline, and only after a successful
    device read or write.
    """

    layers: int = 0
    rows: int = 0
    cols: int = 0
    keymap: dict[tuple[int, int, int], Any] = field(default_factory=dict)
    layer_meta: dict[int, dict[str, Any]] = field(default_factory=dict)
    hardware_settings: dict[str, Any] = field(default_factory=dict)
    combos: dict[int, list[Any]] = field(default_factory=dict)
    tapdances: dict[int, dict[str, Any]] = field(default_factory=dict)
    overrides: dict[int, dict[str, Any]] = field(default_factory=dict)
    macros: dict[int, bytes] = field(default_factory=dict)
    macro_buffer_size: int = 0

    @classmethod
    def from_layers(cls, layers: list[list[list[Any]]], **extra) -> "Baseline":
        """Build a baseline from a nested ``[layer][row][col]`` keymap."""
        keymap = {}
        rows = cols = 0
        for l, layer in enumerate(layers):
            rows = max(rows, len(layer))
            for r, row in enumerate(layer):
                cols = max(cols, len(row))
                for c, keycode in enumerate(row):
                    keymap[(l, r, c)] = keycode
        return cls(layers=len(layers), rows=rows, cols=cols, keymap=keymap, **extra)

    def copy(self) -> "Baseline":
        return deepcopy(self)

    def validate(self, target: Target) -> None:
        """Raise InvalidTarget if *target* does not address this configuration."""
        kind = target.kind
        if kind == KIND_KEY:
            if not self._in_matrix(target.layer, target.row, target.col):
                raise InvalidTarget(
                    f"{target} outside matrix {self.layers}x{self.rows}x{self.cols}"
                )
        elif kind == KIND_LAYER_META:
            if not _in_range(target.layer, self.layers) or target.name not in LAYER_META_FIELDS:
                raise InvalidTarget(f"{target} is not a layer metadata field")
        elif kind == KIND_HARDWARE_SETTING:
            if target.name not in self.hardware_settings:
                raise InvalidTarget(f"unknown hardware setting '{target.name}'")
        elif kind == KIND_COMBO:
            if target.index not in self.combos or target.slot not in COMBO_SLOTS:
                raise InvalidTarget(f"{target} is not a combo slot")
        elif kind == KIND_TAPDANCE:
            if target.index not in self.tapdances or target.slot not in TAPDANCE_SLOTS:
                raise InvalidTarget(f"{target} is not a tap dance slot")
        elif kind == KIND_OVERRIDE:
            if target.index not in self.overrides or target.slot not in OVERRIDE_SLOTS:
                raise InvalidTarget(f"{target} is not a key override slot")
        elif kind == KIND_MACRO:
            if target.index not in self.macros:
                raise InvalidTarget(f"{target} is not a macro slot")
        else:
            raise InvalidTarget(f"unknown target kind '{kind}'")

    def value(self, target: Target) -> Any:
        kind = target.kind
        if kind == KIND_KEY:
            return self.keymap.get((target.layer, target.row, target.col))
        if kind == KIND_LAYER_META:
            return self.layer_meta.get(target.layer, {}).get(target.name)
        if kind == KIND_HARDWARE_SETTING:
            return self.hardware_settings.get(target.name)
        if kind == KIND_COMBO:
            combo = self.combos.get(target.index)
            if combo is None or not 0 <= target.slot < len(combo):
                return None
            return combo[target.slot]
        if kind == KIND_TAPDANCE:
            return self.tapdances.get(target.index, {}).get(target.slot)
        if kind == KIND_OVERRIDE:
            return self.overrides.get(target.index, {}).get(target.slot)
        if kind == KIND_MACRO:
            return self.macros.get(target.index)
        return None

    def apply(self, target: Target, value: Any) -> None:
        kind = target.kind
        if kind == KIND_KEY:
            self.keymap[(target.layer, target.row, target.col)] = value
        elif kind == KIND_LAYER_META:
            self.layer_meta.setdefault(target.layer, {})[target.name] = value
        elif kind == KIND_HARDWARE_SETTING:
            self.hardware_settings[target.name] = value
        elif kind == KIND_COMBO:
            combo = self.combos.setdefault(target.index, ["KC_NO"] * len(COMBO_SLOTS))
            combo[target.slot] = value
        elif kind == KIND_TAPDANCE:
            self.tapdances.setdefault(target.index, {})[target.slot] = value
        elif kind == KIND_OVERRIDE:
            self.overrides.setdefault(target.index, {})[target.slot] = value
        elif kind == KIND_MACRO:
            self.macros[target.index] = bytes(value)
        else:
            raise InvalidTarget(f"unknown target kind '{kind}'")

    def keep_host_fields(self, previous: "Baseline") -> None:
        """Carry host-only layer names over from *previous* for layers that still exist."""
        for layer, meta in previous.layer_meta.items():
            if "name" in meta and _in_range(layer, self.layers):
                self.layer_meta.setdefault(layer, {})["name"] = meta["name"]

    def layer_rows(self, layer: int) -> list[list[Any]]:
        """Return one layer as a ``[row][col]`` grid."""
        return [
            [self.keymap.get((layer, r, c)) for c in range(self.cols)]
            for r in range(self.rows)
        ]

    def _in_matrix(self, layer, row, col) -> bool:
        return (
            _in_range(layer, self.layers)
            and _in_range(row, self.rows)
            and _in_range(col, self.cols)
        )


def _in_range(value, upper: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value < upper
