"""
Engine file decoder (static assets).

Engine file layout (big-endian):
- Header: u32 pointer/count fields, order depends on the game (see variants.py)
- Signature: u32 at 0xA0

Model tables (moby, tie, shrub, weapon):
- `count` entries of (i32 model_id, u32 model_ptr); a null pointer is a
  placeholder model without geometry

Terrain chunks:
- i32 chunk_count, then chunk_count u32 model pointers; chunk index = model ID

Model header (0x20 bytes):
- u32 vertex_ptr, i32 vertex_count
- u32 index_ptr, i32 index_count
- u32 tex_config_ptr, i32 tex_config_count
- f32 scale, u32 unknown

Vertices are f32 rows (8 components: position, normal, uv for mobies, ties,
shrubs and weapons; 5 components: position, uv for skybox and terrain;
3 for collision). Indices are u16 (u32 for collision).

Texture header (0x10 bytes):
- u16 width, u16 height, u8 format, u8 mip_count, u16 flags,
  u32 vram_hint, u32 reserved

Opaque regions (render_def, collision, billboard, sound_config, terrain,
light_config) are (u32 ptr, i32 size) header pairs and are returned verbatim.

A bad offset or count anywhere fails the whole file with CorruptAssetError:
later tables are located relative to earlier ones, so there is no useful
partial result.
"""

import logging
import struct
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import numpy as np

from rclevel.config import DEFAULT_MAX_WORKERS
from rclevel.errors import CorruptAssetError, decode_stage
from rclevel.models import (
    Animation,
    ModelCategory,
    ModelLists,
    OpaqueBlob,
    StaticModel,
    Texture,
    TextureConfig,
    TextureFormat,
    UiElement,
)
from rclevel.parallel import run_stages
from rclevel.source import RawFileSource
from rclevel.variants import GameVariant, detect_variant

logger = logging.getLogger(__name__)

MODEL_HEADER = struct.Struct(">IiIiIifI")
MODEL_TABLE_ENTRY = struct.Struct(">iI")
TEXTURE_HEADER = struct.Struct(">HHBBHII")
UI_ELEMENT = struct.Struct(">hhI")
ANIMATION_HEADER = struct.Struct(">ffii")

VERTEX_COMPONENTS = {
    ModelCategory.MOBY: 8,
    ModelCategory.TIE: 8,
    ModelCategory.SHRUB: 8,
    ModelCategory.WEAPON: 8,
    ModelCategory.SKYBOX: 5,
    ModelCategory.TERRAIN: 5,
    ModelCategory.COLLISION: 3,
}

INDEX_DTYPES = {category: ">u2" for category in ModelCategory}
INDEX_DTYPES[ModelCategory.COLLISION] = ">u4"

# category -> (table pointer field, count field)
MODEL_TABLES = {
    ModelCategory.MOBY: ("moby_models", "moby_model_count"),
    ModelCategory.TIE: ("tie_models", "tie_model_count"),
    ModelCategory.SHRUB: ("shrub_models", "shrub_model_count"),
    ModelCategory.WEAPON: ("weapon_models", "weapon_model_count"),
}

# category -> header field pointing at a single model
SINGLE_MODELS = {
    ModelCategory.SKYBOX: "skybox",
    ModelCategory.COLLISION: "collision_model",
}

BLOB_NAMES = ("render_def", "collision", "billboard", "sound_config", "terrain", "light_config")


@dataclass
class EngineAssets:
    """Everything decoded from one engine file."""
    variant: GameVariant
    models: ModelLists = field(default_factory=dict)
    textures: List[Texture] = field(default_factory=list)
    ui_elements: List[UiElement] = field(default_factory=list)
    texture_config_menus: List[int] = field(default_factory=list)
    player_animations: List[Animation] = field(default_factory=list)
    blobs: Dict[str, OpaqueBlob] = field(default_factory=dict)


class EngineDecoder:
    """
    Decoder for the engine file.

    Example:
        >>> with EngineDecoder.open("levels/03/engine.ps3") as engine:
        ...     variant = engine.detect_game_variant()
        ...     mobies = engine.get_static_models(ModelCategory.MOBY)
    """

    def __init__(self, source: RawFileSource, variant: Optional[GameVariant] = None):
        self.source = source
        self._variant = variant

    @classmethod
    def open(cls, path: Union[str, Path]) -> "EngineDecoder":
        return cls(RawFileSource.open(path))

    def close(self) -> None:
        self.source.close()

    def __enter__(self) -> "EngineDecoder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _stage(self, name: str):
        return decode_stage(f"engine: {name}", path=str(self.source.path))

    def _corrupt(self, message: str, **context) -> CorruptAssetError:
        context["path"] = str(self.source.path)
        return CorruptAssetError(message, context)

    # ------------------------------------------------------------------
    # Header access
    # ------------------------------------------------------------------

    def detect_game_variant(self) -> GameVariant:
        """Identify the game from the header signature (cached)."""
        if self._variant is None:
            with self._stage("signature"):
                self._variant = detect_variant(self.source)
            logger.info("Detected game variant %s", self._variant.name)
        return self._variant

    @property
    def variant(self) -> GameVariant:
        return self.detect_game_variant()

    def _header(self, name: str) -> int:
        return self.source.read_u32(self.variant.engine_layout[name])

    def _header_count(self, name: str) -> int:
        return self.source.read_i32(self.variant.engine_layout[name])

    def _table(self, pointer_field: str, count_field: str, record_size: int) -> Tuple[int, int]:
        """Read a (pointer, count) header pair and check the table fits."""
        pointer = self._header(pointer_field)
        count = self._header_count(count_field)
        if count and not pointer:
            raise self._corrupt(f"{pointer_field}: {count} entries behind a null pointer")
        self.source.check_count(count, record_size, pointer)
        return pointer, count

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def get_static_models(self, category: ModelCategory) -> List[StaticModel]:
        """
        Decode every model of one category.

        Raises:
            CorruptAssetError: On bad offsets/counts or duplicate model IDs
        """
        with self._stage(f"{category.value} models"):
            if category in MODEL_TABLES:
                models = self._read_model_table(category)
            elif category in SINGLE_MODELS:
                pointer = self._header(SINGLE_MODELS[category])
                models = [self._read_model(0, category, pointer)] if pointer else []
            else:
                models = self._read_terrain_chunks()

            seen = set()
            for model in models:
                if model.id in seen:
                    raise self._corrupt(f"Duplicate {category.value} model ID {model.id}", model_id=model.id)
                seen.add(model.id)

        logger.info("Added %d %s models", len(models), category.value)
        return models

    def _read_model_table(self, category: ModelCategory) -> List[StaticModel]:
        pointer_field, count_field = MODEL_TABLES[category]
        pointer, count = self._table(pointer_field, count_field, MODEL_TABLE_ENTRY.size)

        models = []
        for i in range(count):
            model_id, model_ptr = self.source.read_struct(pointer + i * MODEL_TABLE_ENTRY.size, MODEL_TABLE_ENTRY)
            models.append(self._read_model(model_id, category, model_ptr))
        return models

    def _read_terrain_chunks(self) -> List[StaticModel]:
        pointer = self._header("terrain_chunks")
        if not pointer:
            return []
        count = self.source.read_count(pointer, 4)
        chunk_pointers = self.source.read_array(pointer + 4, ">u4", count)
        return [
            self._read_model(index, ModelCategory.TERRAIN, int(chunk_ptr))
            for index, chunk_ptr in enumerate(chunk_pointers)
        ]

    def _read_model(self, model_id: int, category: ModelCategory, offset: int) -> StaticModel:
        components = VERTEX_COMPONENTS[category]
        index_dtype = INDEX_DTYPES[category]

        if not offset:
            return StaticModel(
                id=model_id,
                category=category,
                vertices=np.zeros((0, components), dtype=np.float32),
                indices=np.zeros(0, dtype=np.dtype(index_dtype).newbyteorder("=")),
            )

        (vertex_ptr, vertex_count, index_ptr, index_count,
         config_ptr, config_count, scale, unknown) = self.source.read_struct(offset, MODEL_HEADER)

        src = self.source
        src.check_count(vertex_count, components * 4, vertex_ptr)
        src.check_count(index_count, np.dtype(index_dtype).itemsize, index_ptr)
        src.check_count(config_count, TextureConfig.SIZE, config_ptr)

        vertices = src.read_array(vertex_ptr, ">f4", vertex_count * components).reshape(vertex_count, components)
        indices = src.read_array(index_ptr, index_dtype, index_count)
        if index_count and int(indices.max()) >= vertex_count:
            raise self._corrupt(
                f"{category.value} model {model_id}: index {int(indices.max())} out of range "
                f"for {vertex_count} vertices",
                model_id=model_id,
                offset=offset,
            )

        configs = [
            src.read_record(config_ptr + i * TextureConfig.SIZE, TextureConfig)
            for i in range(config_count)
        ]
        for config in configs:
            if config.start < 0 or config.size < 0 or config.start + config.size > index_count:
                raise self._corrupt(
                    f"{category.value} model {model_id}: draw range {config.start}+{config.size} "
                    f"exceeds {index_count} indices",
                    model_id=model_id,
                    offset=offset,
                )

        return StaticModel(
            id=model_id,
            category=category,
            vertices=vertices,
            indices=indices,
            texture_configs=configs,
            scale=scale,
            unknown=unknown,
        )

    # ------------------------------------------------------------------
    # Textures and UI
    # ------------------------------------------------------------------

    def get_textures(self) -> List[Texture]:
        """Decode texture headers. Payloads are left empty for the vram pass."""
        with self._stage("textures"):
            pointer, count = self._table("textures", "texture_count", TEXTURE_HEADER.size)
            textures = []
            for index in range(count):
                offset = pointer + index * TEXTURE_HEADER.size
                width, height, fmt, mip_count, flags, vram_hint, reserved = self.source.read_struct(
                    offset, TEXTURE_HEADER
                )
                try:
                    texture_format = TextureFormat(fmt)
                except ValueError:
                    raise self._corrupt(
                        f"Texture {index}: unknown pixel format 0x{fmt:02X}", texture=index, offset=offset
                    ) from None
                textures.append(Texture(
                    index=index,
                    width=width,
                    height=height,
                    format=texture_format,
                    mip_count=mip_count,
                    flags=flags,
                    vram_hint=vram_hint,
                    reserved=reserved,
                ))

        logger.info("Added %d textures", len(textures))
        return textures

    def get_ui_elements(self) -> List[UiElement]:
        with self._stage("ui elements"):
            pointer, count = self._table("ui_elements", "ui_element_count", UI_ELEMENT.size)
            elements = []
            for i in range(count):
                element_id, sprite_count, sprite_ptr = self.source.read_struct(
                    pointer + i * UI_ELEMENT.size, UI_ELEMENT
                )
                self.source.check_count(sprite_count, 4, sprite_ptr)
                sprites = self.source.read_array(sprite_ptr, ">i4", sprite_count).tolist()
                elements.append(UiElement(id=element_id, sprites=sprites))

        logger.info("Added %d ui elements", len(elements))
        return elements

    def get_texture_config_menus(self) -> List[int]:
        with self._stage("texture config menus"):
            pointer, count = self._table("texture_config_menus", "texture_config_menu_count", 4)
            return self.source.read_array(pointer, ">i4", count).tolist()

    def get_player_animations(self) -> List[Animation]:
        """Decode player animation headers; frame data is kept opaque."""
        with self._stage("player animations"):
            pointer, count = self._table("player_animations", "player_animation_count", 4)
            animations = []
            for index, anim_ptr in enumerate(self.source.read_array(pointer, ">u4", count)):
                animations.append(self._read_animation(index, int(anim_ptr)))

        logger.info("Added %d player animations", len(animations))
        return animations

    def _read_animation(self, index: int, offset: int) -> Animation:
        tag = f"animation_{index}"
        if not offset:
            return Animation(index, 0.0, 0.0, 0, 0, OpaqueBlob.empty(tag))

        unknown, speed, frame_count, frame_size = self.source.read_struct(offset, ANIMATION_HEADER)
        if frame_count < 0 or frame_size < 0:
            raise self._corrupt(
                f"Animation {index}: negative frame layout {frame_count}x{frame_size}", offset=offset
            )
        frames_offset = offset + ANIMATION_HEADER.size
        frames = self.source.read_at(frames_offset, frame_count * frame_size)
        return Animation(
            index=index,
            unknown=unknown,
            speed=speed,
            frame_count=frame_count,
            frame_size=frame_size,
            frames=OpaqueBlob(tag, frames, frames_offset),
        )

    # ------------------------------------------------------------------
    # Opaque regions
    # ------------------------------------------------------------------

    def get_opaque_blob(self, name: str) -> OpaqueBlob:
        """
        Return a named region verbatim.

        Raises:
            KeyError: If `name` is not one of BLOB_NAMES
        """
        if name not in BLOB_NAMES:
            raise KeyError(f"Unknown engine blob: {name}")

        with self._stage(f"{name} blob"):
            pointer = self._header(name)
            size = self._header_count(f"{name}_size")
            if size < 0:
                raise self._corrupt(f"{name}: negative size {size}")
            if not size:
                return OpaqueBlob.empty(name)
            if not pointer:
                raise self._corrupt(f"{name}: {size} bytes behind a null pointer")
            return OpaqueBlob(name, self.source.read_at(pointer, size), pointer)

    # ------------------------------------------------------------------

    def decode_all(self, max_workers: int = DEFAULT_MAX_WORKERS) -> EngineAssets:
        """
        Decode the whole file.

        Independent categories run on a thread pool when max_workers > 1;
        the result does not depend on the worker count.
        """
        variant = self.detect_game_variant()

        categories = list(ModelCategory)
        stages = [(f"{c.value} models", partial(self.get_static_models, c)) for c in categories]
        stages += [
            ("textures", self.get_textures),
            ("ui elements", self.get_ui_elements),
            ("texture config menus", self.get_texture_config_menus),
            ("player animations", self.get_player_animations),
        ]
        stages += [(f"{name} blob", partial(self.get_opaque_blob, name)) for name in BLOB_NAMES]

        results = run_stages(stages, max_workers)

        n = len(categories)
        models = dict(zip(categories, results[:n]))
        textures, ui_elements, menus, animations = results[n:n + 4]
        blobs = dict(zip(BLOB_NAMES, results[n + 4:]))

        return EngineAssets(
            variant=variant,
            models=models,
            textures=textures,
            ui_elements=ui_elements,
            texture_config_menus=menus,
            player_animations=animations,
            blobs=blobs,
        )
