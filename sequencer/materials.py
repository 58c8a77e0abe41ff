"""
Metal finishes every ring is rendered in.

Declaration order is the iteration order of a batch run and the order the
storefront material selector lists them.
"""

from __future__ import annotations

from .schemas import MaterialPreset

MATERIAL_PRESETS: tuple[MaterialPreset, ...] = (
    MaterialPreset(
        name="platinum",
        display_name="Platinum",
        base_color=(0.95, 0.95, 0.95),
        metallic=1.0,
        roughness=0.10,
    ),
    MaterialPreset(
        name="white-gold",
        display_name="18K White Gold",
        base_color=(0.93, 0.93, 0.93),
        metallic=1.0,
        roughness=0.15,
    ),
    MaterialPreset(
        name="yellow-gold",
        display_name="18K Yellow Gold",
        base_color=(1.0, 0.84, 0.0),
        metallic=1.0,
        roughness=0.12,
    ),
    MaterialPreset(
        name="rose-gold",
        display_name="18K Rose Gold",
        base_color=(0.95, 0.76, 0.76),
        metallic=1.0,
        roughness=0.13,
    ),
)


def material_names(presets: tuple[MaterialPreset, ...] = MATERIAL_PRESETS) -> list[str]:
    return [p.name for p in presets]
