"""
Supported games and their binary layouts.

The engine file carries a u32 signature at 0xA0 that identifies the game.
Each game fixes:
- the order of the pointer/count fields in the engine header
- the gameplay header (shared by every supported game)
- the size of the variable-length records (mobies, level variables) and the
  per-instance tie/shrub data strides

Header layouts are plain name -> offset dicts built from ordered field
lists; every field is a big-endian u32.
"""

from dataclasses import dataclass
from typing import Dict, List, Sequence

from rclevel.errors import UnsupportedVariantError

SIGNATURE_OFFSET = 0xA0

_ENGINE_ASSET_FIELDS = [
    "moby_models", "moby_model_count",
    "tie_models", "tie_model_count",
    "shrub_models", "shrub_model_count",
    "weapon_models", "weapon_model_count",
    "skybox",
    "collision_model",
    "terrain_chunks",
    "textures", "texture_count",
    "ui_elements", "ui_element_count",
    "texture_config_menus", "texture_config_menu_count",
    "player_animations", "player_animation_count",
]

_ENGINE_BLOB_FIELDS = [
    "render_def", "render_def_size",
    "collision", "collision_size",
    "billboard", "billboard_size",
    "sound_config", "sound_config_size",
    "terrain", "terrain_size",
    "light_config", "light_config_size",
]

GAMEPLAY_FIELDS = [
    "level_variables",
    "english", "lang2", "french", "german", "spanish", "italian", "lang7", "lang8",
    "unk6", "unk7", "unk13", "unk14", "unk17",
    "type04", "type0C", "type64", "type68", "type7C", "type80", "type88",
    "type50", "type5C",
    "mobies", "pvars", "splines", "lights", "ties", "shrubs",
    "terrain_elements", "spawn_points", "cameras",
    "tie_data", "shrub_data",
    "moby_ids", "tie_ids", "shrub_ids",
    "occlusion",
]


def build_layout(fields: Sequence[str]) -> Dict[str, int]:
    """Map each field name to its byte offset (4 bytes per field)."""
    return {name: index * 4 for index, name in enumerate(fields)}


RAC1_ENGINE_LAYOUT = build_layout(_ENGINE_ASSET_FIELDS + _ENGINE_BLOB_FIELDS)
RAC23_ENGINE_LAYOUT = build_layout(_ENGINE_BLOB_FIELDS + _ENGINE_ASSET_FIELDS)
GAMEPLAY_LAYOUT = build_layout(GAMEPLAY_FIELDS)

ENGINE_HEADER_SIZE = SIGNATURE_OFFSET + 4
GAMEPLAY_HEADER_SIZE = len(GAMEPLAY_FIELDS) * 4


@dataclass(frozen=True)
class GameVariant:
    """Binary layout parameters for one supported game."""
    name: str
    signature: int
    engine_layout: Dict[str, int]
    gameplay_layout: Dict[str, int]
    moby_size: int
    level_variables_size: int
    tie_data_stride: int
    shrub_data_stride: int

    def __hash__(self) -> int:
        return hash(self.name)

    def __repr__(self) -> str:
        return f"<GameVariant {self.name} 0x{self.signature:08X}>"


RAC1 = GameVariant(
    name="RAC1",
    signature=0x00000001,
    engine_layout=RAC1_ENGINE_LAYOUT,
    gameplay_layout=GAMEPLAY_LAYOUT,
    moby_size=0x78,
    level_variables_size=0x50,
    tie_data_stride=0x10,
    shrub_data_stride=0x10,
)

RAC2 = GameVariant(
    name="RAC2",
    signature=0xEAA90001,
    engine_layout=RAC23_ENGINE_LAYOUT,
    gameplay_layout=GAMEPLAY_LAYOUT,
    moby_size=0x88,
    level_variables_size=0x58,
    tie_data_stride=0x20,
    shrub_data_stride=0x10,
)

RAC3 = GameVariant(
    name="RAC3",
    signature=0xEAA60001,
    engine_layout=RAC23_ENGINE_LAYOUT,
    gameplay_layout=GAMEPLAY_LAYOUT,
    moby_size=0x88,
    level_variables_size=0x58,
    tie_data_stride=0x20,
    shrub_data_stride=0x10,
)

VARIANTS: List[GameVariant] = [RAC1, RAC2, RAC3]
_BY_SIGNATURE = {variant.signature: variant for variant in VARIANTS}


def variant_for_signature(signature: int) -> GameVariant:
    """
    Look up a variant by its engine signature.

    Raises:
        UnsupportedVariantError: If no supported game uses this signature
    """
    try:
        return _BY_SIGNATURE[signature]
    except KeyError:
        raise UnsupportedVariantError(
            f"Unsupported engine signature 0x{signature:08X}",
            {"signature": signature},
        ) from None


def detect_variant(source) -> GameVariant:
    """Read the signature from an engine file source and return its variant."""
    signature = source.read_u32(SIGNATURE_OFFSET)
    try:
        return variant_for_signature(signature)
    except UnsupportedVariantError as e:
        e.context["path"] = str(source.path)
        raise
