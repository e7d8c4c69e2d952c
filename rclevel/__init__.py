"""
rclevel - Lossless decoding of PS3 level files.

A level is three sibling files:
- the engine file (static assets: models, texture headers, UI, animations)
- vram.ps3 (texture pixel data)
- gameplay_ntsc (instances, level variables, localization, pvars)

load_level() decodes all three into one Level. Regions whose structure is
not understood are kept byte-for-byte as OpaqueBlob / OpaqueRecordList so a
level can be written back without loss.
"""

__version__ = "0.1.0"

from rclevel.errors import (
    LevelDecodeError,
    AssetNotFoundError,
    AssetIOError,
    UnsupportedVariantError,
    CorruptAssetError,
)
from rclevel.level import Level, LevelAssembler, AssemblyState, load_level
from rclevel.models import (
    ModelCategory,
    InstanceKind,
    LanguageTag,
    StaticModel,
    Texture,
    TextureFormat,
    OpaqueBlob,
    OpaqueRecordList,
)
from rclevel.variants import GameVariant, RAC1, RAC2, RAC3

__all__ = [
    "load_level",
    "Level",
    "LevelAssembler",
    "AssemblyState",
    "LevelDecodeError",
    "AssetNotFoundError",
    "AssetIOError",
    "UnsupportedVariantError",
    "CorruptAssetError",
    "ModelCategory",
    "InstanceKind",
    "LanguageTag",
    "StaticModel",
    "Texture",
    "TextureFormat",
    "OpaqueBlob",
    "OpaqueRecordList",
    "GameVariant",
    "RAC1",
    "RAC2",
    "RAC3",
]
