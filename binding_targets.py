from __future__ import annotations

from dataclasses import dataclass


KIND_KEY = "key"
KIND_LAYER_META = "layerMeta"
KIND_HARDWARE_SETTING = "hardwareSetting"
KIND_COMBO = "combo"
KIND_TAPDANCE = "tapdance"
KIND_OVERRIDE = "override"
KIND_MACRO = "macro"

KINDS = (
    KIND_KEY,
    KIND_LAYER_META,
    KIND_HARDWARE_SETTING,
    KIND_COMBO,
    KIND_TAPDANCE,
    KIND_OVERRIDE,
    KIND_MACRO,
)

LAYER_META_FIELDS = ("name", "color")

# Combo slots 0-3 are input keys, slot 4 is the output keycode
COMBO_SLOTS = (0, 1, 2, 3, 4)
COMBO_OUTPUT_SLOT = 4
TAPDANCE_SLOTS = ("tap", "hold", "doubletap", "taphold")
OVERRIDE_SLOTS = ("trigger", "replacement")


@dataclass(frozen=True)
class Target:
    """Address of one editable unit of the keyboard configuration.

    Use the classmethod constructors rather than building instances by hand;
    unused fields stay None so equal addresses hash equally.
    """

    kind: str
    layer: int | None = None
    row: int | None = None
    col: int | None = None
    name: str | None = None
    index: int | None = None
    slot: int | str | None = None

    @classmethod
    def key(cls, layer: int, row: int, col: int) -> "Target":
        return cls(KIND_KEY, layer=layer, row=row, col=col)

    @classmethod
    def layer_meta(cls, layer: int, field: str) -> "Target":
        return cls(KIND_LAYER_META, layer=layer, name=field)

    @classmethod
    def hardware_setting(cls, name: str) -> "Target":
        return cls(KIND_HARDWARE_SETTING, name=name)

    @classmethod
    def combo(cls, index: int, slot: int) -> "Target":
        return cls(KIND_COMBO, index=index, slot=slot)

    @classmethod
    def tapdance(cls, index: int, slot: str) -> "Target":
        return cls(KIND_TAPDANCE, index=index, slot=slot)

    @classmethod
    def override(cls, index: int, slot: str) -> "Target":
        return cls(KIND_OVERRIDE, index=index, slot=slot)

    @classmethod
    def macro(cls, index: int) -> "Target":
        return cls(KIND_MACRO, index=index)

    @property
    def is_key(self) -> bool:
        return self.kind == KIND_KEY

    def describe(self) -> str:
        """Stable short identifier, e.g. ``key_0_1_2`` or ``tapdance_3_hold``."""
        if self.kind == KIND_KEY:
            return f"key_{self.layer}_{self.row}_{self.col}"
        if self.kind == KIND_LAYER_META:
            return f"layer_{self.layer}_{self.name}"
        if self.kind == KIND_HARDWARE_SETTING:
            return f"setting_{self.name}"
        if self.kind == KIND_MACRO:
            return f"macro_{self.index}"
        return f"{self.kind}_{self.index}_{self.slot}"

    def __str__(self) -> str:
        return self.describe()
