"""
Decoded level data.

Plain dataclasses only: the decoders create these once and nothing in the
package mutates them afterwards, apart from the two one-shot backfills
(texture payloads from the vram file, model references on instances).

Object instances are modeled as one dataclass per kind rather than a shared
base type; each carries only its own fields plus `record`, the bytes of the
fixed-size record that are not understood yet, so the record can be
re-emitted unchanged.
"""

import struct
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Dict, List, Optional, Tuple

import numpy as np

Vec3 = Tuple[float, float, float]
Vec4 = Tuple[float, float, float, float]
Matrix4 = Tuple[float, ...]
RGBA = Tuple[int, int, int, int]


def unpack_rgba(value: int) -> RGBA:
    """Split a packed 0xRRGGBBAA colour into its channels."""
    return ((value >> 24) & 0xFF, (value >> 16) & 0xFF, (value >> 8) & 0xFF, value & 0xFF)


# ---------------------------------------------------------------------------
# Opaque regions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OpaqueBlob:
    """
    A byte region whose structure is not (fully) known.

    Stored verbatim so it can be written back unchanged.

    Attributes:
        tag: Region name, e.g. "render_def" or "unk13"
        data: The raw bytes
        offset: Where the region started in its source file (0 if absent)
    """
    tag: str
    data: bytes
    offset: int = 0

    @property
    def length(self) -> int:
        return len(self.data)

    @classmethod
    def empty(cls, tag: str) -> "OpaqueBlob":
        return cls(tag=tag, data=b"", offset=0)

    def __repr__(self) -> str:
        return f"OpaqueBlob(tag={self.tag!r}, length={self.length}, offset=0x{self.offset:X})"


@dataclass(frozen=True)
class OpaqueRecordList:
    """A counted array of fixed-size records kept as raw bytes ("type NN" lists)."""
    tag: str
    record_size: int
    records: Tuple[bytes, ...] = ()
    offset: int = 0

    @property
    def count(self) -> int:
        return len(self.records)

    @property
    def data(self) -> bytes:
        return b"".join(self.records)


# ---------------------------------------------------------------------------
# Engine file
# ---------------------------------------------------------------------------

class ModelCategory(Enum):
    MOBY = "moby"
    TIE = "tie"
    SHRUB = "shrub"
    WEAPON = "weapon"
    SKYBOX = "skybox"
    COLLISION = "collision"
    TERRAIN = "terrain"


_TEXTURE_CONFIG = struct.Struct(">iiii")


@dataclass(frozen=True)
class TextureConfig:
    """One submesh: which texture to bind and which index range to draw."""
    texture_id: int
    start: int
    size: int
    mode: int

    SIZE: ClassVar[int] = _TEXTURE_CONFIG.size

    @classmethod
    def from_bytes(cls, data: bytes) -> "TextureConfig":
        return cls(*_TEXTURE_CONFIG.unpack(data))

    def to_bytes(self) -> bytes:
        return _TEXTURE_CONFIG.pack(self.texture_id, self.start, self.size, self.mode)


@dataclass(eq=False)
class StaticModel:
    """
    A mesh asset from the engine file.

    Attributes:
        id: Model ID, unique within its category
        category: Which model list this belongs to
        vertices: (n, k) float32 array; the first three columns are the position
        indices: Index buffer (uint16, uint32 for collision)
        texture_configs: Per-submesh texture bindings
        scale: Model scale from the model header
        unknown: Trailing header word, kept for re-encoding
    """
    id: int
    category: ModelCategory
    vertices: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=np.float32))
    indices: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.uint16))
    texture_configs: List[TextureConfig] = field(default_factory=list)
    scale: float = 1.0
    unknown: int = 0

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def index_count(self) -> int:
        return len(self.indices)

    @property
    def positions(self) -> np.ndarray:
        return self.vertices[:, :3]

    @property
    def is_placeholder(self) -> bool:
        """True for table entries whose model pointer was null."""
        return self.vertex_count == 0 and self.index_count == 0

    def __repr__(self) -> str:
        return (
            f"StaticModel(id={self.id}, category={self.category.value}, "
            f"vertices={self.vertex_count}, indices={self.index_count})"
        )


class TextureFormat(Enum):
    RGBA8 = 0x05
    L8 = 0x06
    DXT1 = 0x86
    DXT5 = 0x88

    @property
    def bits_per_pixel(self) -> int:
        return _BITS_PER_PIXEL[self]

    @property
    def is_compressed(self) -> bool:
        return self in (TextureFormat.DXT1, TextureFormat.DXT5)


_BITS_PER_PIXEL = {
    TextureFormat.RGBA8: 32,
    TextureFormat.L8: 8,
    TextureFormat.DXT1: 4,
    TextureFormat.DXT5: 8,
}


@dataclass
class Texture:
    """
    A texture header from the engine file.

    `payload` stays empty until the vram file is read; textures without a
    vram entry keep an empty payload.
    """
    index: int
    width: int
    height: int
    format: TextureFormat
    mip_count: int = 1
    flags: int = 0
    vram_hint: int = 0
    reserved: int = 0
    payload: bytes = b""

    @property
    def expected_size(self) -> int:
        """Payload size in bytes: width * height * bytes per pixel."""
        return self.width * self.height * self.format.bits_per_pixel // 8

    @property
    def has_payload(self) -> bool:
        return len(self.payload) > 0


@dataclass
class UiElement:
    id: int
    sprites: List[int] = field(default_factory=list)


@dataclass
class Animation:
    """A player animation; frame data is not decoded."""
    index: int
    unknown: float
    speed: float
    frame_count: int
    frame_size: int
    frames: OpaqueBlob

    @property
    def is_empty(self) -> bool:
        return self.frame_count == 0


# ---------------------------------------------------------------------------
# Gameplay file
# ---------------------------------------------------------------------------

@dataclass
class LevelVariables:
    background_color: RGBA
    fog_color: RGBA
    fog_near_distance: float
    fog_far_distance: float
    fog_near_intensity: float
    fog_far_intensity: float
    death_plane_z: float
    is_spherical_world: bool
    sphere_center: Vec3
    ship_position: Vec3
    ship_rotation: float
    ship_path: int
    ship_camera_start: int
    ship_camera_end: int
    unknown: bytes = b""


class InstanceKind(Enum):
    MOBY = "moby"
    TIE = "tie"
    SHRUB = "shrub"
    LIGHT = "light"
    SPLINE = "spline"
    SPAWN_POINT = "spawn_point"
    CAMERA = "camera"
    TERRAIN = "terrain"

    @property
    def model_category(self) -> Optional[ModelCategory]:
        """The model list this kind's model IDs refer to, or None."""
        return _KIND_TO_CATEGORY.get(self)


_KIND_TO_CATEGORY = {
    InstanceKind.MOBY: ModelCategory.MOBY,
    InstanceKind.TIE: ModelCategory.TIE,
    InstanceKind.SHRUB: ModelCategory.SHRUB,
    InstanceKind.TERRAIN: ModelCategory.TERRAIN,
}


@dataclass
class Moby:
    kind: ClassVar[InstanceKind] = InstanceKind.MOBY

    instance_id: int
    mission_id: int
    model_id: int
    scale: float
    position: Vec3
    rotation: Vec3
    draw_distance: int
    update_distance: int
    group_index: int
    pvar_index: int
    light: int
    color: RGBA
    record: bytes = b""
    model: Optional[StaticModel] = field(default=None, repr=False, compare=False)

    @property
    def is_resolved(self) -> bool:
        return self.model is not None

    @property
    def has_pvars(self) -> bool:
        return self.pvar_index >= 0


@dataclass
class Tie:
    kind: ClassVar[InstanceKind] = InstanceKind.TIE

    instance_id: int
    model_id: int
    light: int
    unknown: int
    transform: Matrix4
    color: RGBA
    record: bytes = b""
    model: Optional[StaticModel] = field(default=None, repr=False, compare=False)

    @property
    def is_resolved(self) -> bool:
        return self.model is not None

    @property
    def matrix(self) -> np.ndarray:
        return np.array(self.transform, dtype=np.float32).reshape(4, 4)


@dataclass
class Shrub:
    kind: ClassVar[InstanceKind] = InstanceKind.SHRUB

    instance_id: int
    model_id: int
    draw_distance: float
    light: int
    transform: Matrix4
    color: RGBA
    record: bytes = b""
    model: Optional[StaticModel] = field(default=None, repr=False, compare=False)

    @property
    def is_resolved(self) -> bool:
        return self.model is not None

    @property
    def matrix(self) -> np.ndarray:
        return np.array(self.transform, dtype=np.float32).reshape(4, 4)


@dataclass
class TerrainElement:
    kind: ClassVar[InstanceKind] = InstanceKind.TERRAIN

    instance_id: int
    model_id: int
    position: Vec3
    flags: int
    record: bytes = b""
    model: Optional[StaticModel] = field(default=None, repr=False, compare=False)

    @property
    def is_resolved(self) -> bool:
        return self.model is not None


@dataclass
class Light:
    kind: ClassVar[InstanceKind] = InstanceKind.LIGHT

    instance_id: int
    color_a: Vec4
    direction_a: Vec4
    color_b: Vec4
    direction_b: Vec4


@dataclass(eq=False)
class Spline:
    kind: ClassVar[InstanceKind] = InstanceKind.SPLINE

    instance_id: int
    vertices: np.ndarray
    record: bytes = b""

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)


@dataclass
class SpawnPoint:
    kind: ClassVar[InstanceKind] = InstanceKind.SPAWN_POINT

    instance_id: int
    spawn_matrix: Matrix4
    rotation_matrix: Matrix4


@dataclass
class GameCamera:
    kind: ClassVar[InstanceKind] = InstanceKind.CAMERA

    instance_id: int
    position: Vec3
    rotation: Vec3
    unknown: int


@dataclass
class IdTables:
    """Gameplay-order -> engine-order ID lists for mobies, ties and shrubs."""
    moby_ids: List[int] = field(default_factory=list)
    tie_ids: List[int] = field(default_factory=list)
    shrub_ids: List[int] = field(default_factory=list)


@dataclass
class OcclusionData:
    mobies: List[Tuple[int, int]] = field(default_factory=list)
    ties: List[Tuple[int, int]] = field(default_factory=list)
    shrubs: List[Tuple[int, int]] = field(default_factory=list)


class LanguageTag(Enum):
    ENGLISH = "english"
    LANG2 = "lang2"
    FRENCH = "french"
    GERMAN = "german"
    SPANISH = "spanish"
    ITALIAN = "italian"
    LANG7 = "lang7"
    LANG8 = "lang8"

    @property
    def identified(self) -> bool:
        return self not in (LanguageTag.LANG2, LanguageTag.LANG7)


ModelLists = Dict[ModelCategory, List[StaticModel]]
