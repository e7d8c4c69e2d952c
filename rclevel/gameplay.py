"""
Gameplay file decoder (per-level dynamic state).

The gameplay file starts with a table of u32 pointers (see
variants.GAMEPLAY_FIELDS). A null pointer means the section is absent;
absent optional sections decode to empty results.

Most sections are counted arrays: an i32 count followed by fixed-size
records. Record layouts (big-endian, unmodeled tail bytes kept in `record`):

- moby (0x78 RAC1, 0x88 RAC2/3): i32 mission_id, i32 instance_id,
  i32 model_id, f32 scale, 3f position, 3f rotation, i32 draw_distance,
  i32 update_distance, i32 group_index, i32 pvar_index, i32 light, u32 color
- tie (0x60): i32 model_id, i32 instance_id, i32 light, i32 unknown,
  16f transform, u32 color
- shrub (0x70): i32 model_id, i32 instance_id, f32 draw_distance, i32 light,
  16f transform, u32 color
- terrain element (0x20): i32 model_id, i32 instance_id, 3f position, u32 flags
- light (0x40): 4f color_a, 4f direction_a, 4f color_b, 4f direction_b
- spawn point (0x80): 16f spawn_matrix, 16f rotation_matrix
- camera (0x20): i32 camera_id, 3f position, 3f rotation, i32 unknown

Splines are an i32 count plus u32 offsets (relative to the spline table);
each spline is i32 vertex_count, 12 unknown bytes, then vertex_count 4f rows.

Behaviour variables ("pvars") are an i32 count, count (u32 offset, u32 size)
pairs, then the data the offsets point into. Their count must match the
number of mobies that declare a pvar index, and those indices must run
0..count-1 without gaps or repeats.
"""

import logging
import struct
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from rclevel.config import DEFAULT_MAX_WORKERS
from rclevel.errors import CorruptAssetError, decode_stage
from rclevel.models import (
    GameCamera,
    IdTables,
    InstanceKind,
    LanguageTag,
    LevelVariables,
    Light,
    Moby,
    OcclusionData,
    OpaqueBlob,
    OpaqueRecordList,
    Shrub,
    SpawnPoint,
    Spline,
    StaticModel,
    TerrainElement,
    Tie,
    unpack_rgba,
)
from rclevel.parallel import run_stages
from rclevel.resolve import ModelIndex, resolve_instances
from rclevel.source import RawFileSource
from rclevel.variants import GameVariant

logger = logging.getLogger(__name__)

LEVEL_VARIABLES = struct.Struct(">IIfffffi3f3ffiii")
MOBY = struct.Struct(">iiif3f3fiiiiiI")
TIE = struct.Struct(">iiii16fI")
SHRUB = struct.Struct(">iifi16fI")
TERRAIN_ELEMENT = struct.Struct(">ii3fI")
LIGHT = struct.Struct(">16f")
SPAWN_POINT = struct.Struct(">32f")
CAMERA = struct.Struct(">i3f3fi")
SPLINE_HEADER = struct.Struct(">i12s")
LANGUAGE_HEADER = struct.Struct(">ii")
PAIR = struct.Struct(">ii")
OCCLUSION_HEADER = struct.Struct(">iii")

FIXED_RECORD_SIZES = {
    InstanceKind.TIE: 0x60,
    InstanceKind.SHRUB: 0x70,
    InstanceKind.TERRAIN: 0x20,
    InstanceKind.LIGHT: LIGHT.size,
    InstanceKind.SPAWN_POINT: SPAWN_POINT.size,
    InstanceKind.CAMERA: CAMERA.size,
}

INSTANCE_FIELDS = {
    InstanceKind.MOBY: "mobies",
    InstanceKind.TIE: "ties",
    InstanceKind.SHRUB: "shrubs",
    InstanceKind.LIGHT: "lights",
    InstanceKind.SPLINE: "splines",
    InstanceKind.SPAWN_POINT: "spawn_points",
    InstanceKind.CAMERA: "cameras",
    InstanceKind.TERRAIN: "terrain_elements",
}

# Reverse-engineered only far enough to know their record sizes
TYPED_RECORD_SIZES = {
    "type04": 0x20,
    "type0C": 0x90,
    "type64": 0x10,
    "type68": 0x10,
    "type7C": 0x20,
    "type80": 0x90,
    "type88": 0x08,
}

PAIR_RECORD_TAGS = ("type50", "type5C")

UNKNOWN_BLOB_TAGS = ("unk6", "unk7", "unk13", "unk14", "unk17")

# kind -> (header field, variant stride attribute)
INSTANCE_DATA = {
    InstanceKind.TIE: ("tie_data", "tie_data_stride"),
    InstanceKind.SHRUB: ("shrub_data", "shrub_data_stride"),
}

Pair = Tuple[int, int]


def _matrix(values: Sequence[float]) -> Tuple[float, ...]:
    return tuple(values)


@dataclass
class GameplayAssets:
    """Everything decoded from one gameplay file (model references unresolved)."""
    level_variables: LevelVariables
    instances: Dict[InstanceKind, list] = field(default_factory=dict)
    localization: Dict[LanguageTag, bytes] = field(default_factory=dict)
    pvars: List[bytes] = field(default_factory=list)
    typed_records: Dict[str, OpaqueRecordList] = field(default_factory=dict)
    pair_records: Dict[str, List[Pair]] = field(default_factory=dict)
    blobs: Dict[str, OpaqueBlob] = field(default_factory=dict)
    id_tables: IdTables = field(default_factory=IdTables)
    occlusion: OcclusionData = field(default_factory=OcclusionData)


class GameplayDecoder:
    """
    Decoder for the gameplay file.

    The gameplay file has no signature of its own; the variant comes from
    the engine file.

    Example:
        >>> with GameplayDecoder.open("levels/03/gameplay_ntsc", variant) as gameplay:
        ...     ties = gameplay.get_instances(InstanceKind.TIE, tie_models)
    """

    def __init__(self, source: RawFileSource, variant: GameVariant):
        self.source = source
        self.variant = variant
        self._decoders: Dict[InstanceKind, Callable[[int, bytes], object]] = {
            InstanceKind.MOBY: self._decode_moby,
            InstanceKind.TIE: self._decode_tie,
            InstanceKind.SHRUB: self._decode_shrub,
            InstanceKind.TERRAIN: self._decode_terrain_element,
            InstanceKind.LIGHT: self._decode_light,
            InstanceKind.SPAWN_POINT: self._decode_spawn_point,
            InstanceKind.CAMERA: self._decode_camera,
        }

    @classmethod
    def open(cls, path: Union[str, Path], variant: GameVariant) -> "GameplayDecoder":
        return cls(RawFileSource.open(path), variant)

    def close(self) -> None:
        self.source.close()

    def __enter__(self) -> "GameplayDecoder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _stage(self, name: str):
        return decode_stage(f"gameplay: {name}", path=str(self.source.path))

    def _corrupt(self, message: str, **context) -> CorruptAssetError:
        context["path"] = str(self.source.path)
        return CorruptAssetError(message, context)

    def _header(self, name: str) -> int:
        return self.source.read_u32(self.variant.gameplay_layout[name])

    def _counted_block(self, pointer: int, record_size: int) -> List[bytes]:
        """Read an i32-counted array and split it into records."""
        count = self.source.read_count(pointer, record_size)
        block = self.source.read_at(pointer + 4, count * record_size)
        return [block[i * record_size:(i + 1) * record_size] for i in range(count)]

    # ------------------------------------------------------------------
    # Level variables
    # ------------------------------------------------------------------

    def get_level_variables(self) -> LevelVariables:
        with self._stage("level variables"):
            pointer = self._header("level_variables")
            if not pointer:
                raise self._corrupt("Level variables pointer is null")

            data = self.source.read_at(pointer, self.variant.level_variables_size)
            (background, fog, fog_near, fog_far, fog_near_intensity, fog_far_intensity,
             death_plane_z, spherical, cx, cy, cz, sx, sy, sz,
             ship_rotation, ship_path, cam_start, cam_end) = LEVEL_VARIABLES.unpack_from(data)

        return LevelVariables(
            background_color=unpack_rgba(background),
            fog_color=unpack_rgba(fog),
            fog_near_distance=fog_near,
            fog_far_distance=fog_far,
            fog_near_intensity=fog_near_intensity,
            fog_far_intensity=fog_far_intensity,
            death_plane_z=death_plane_z,
            is_spherical_world=bool(spherical),
            sphere_center=(cx, cy, cz),
            ship_position=(sx, sy, sz),
            ship_rotation=ship_rotation,
            ship_path=ship_path,
            ship_camera_start=cam_start,
            ship_camera_end=cam_end,
            unknown=data[LEVEL_VARIABLES.size:],
        )

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------

    def record_size(self, kind: InstanceKind) -> int:
        if kind is InstanceKind.MOBY:
            return self.variant.moby_size
        return FIXED_RECORD_SIZES[kind]

    def get_instances(self, kind: InstanceKind, models: Optional[Sequence[StaticModel]] = None) -> list:
        """
        Decode every instance of one kind.

        Args:
            kind: Which instance list to read
            models: Model list to resolve `model_id` against (only used for
                kinds that carry a model ID)

        Returns:
            List of instances; empty if the section is absent
        """
        with self._stage(f"{kind.value} instances"):
            pointer = self._header(INSTANCE_FIELDS[kind])
            if not pointer:
                instances = []
            elif kind is InstanceKind.SPLINE:
                instances = self._read_splines(pointer)
            else:
                decode = self._decoders[kind]
                records = self._counted_block(pointer, self.record_size(kind))
                instances = [decode(index, record) for index, record in enumerate(records)]

            if models is not None and kind.model_category is not None:
                resolve_instances(instances, ModelIndex(models))

        logger.info("Added %d %s instances", len(instances), kind.value)
        return instances

    def _decode_moby(self, index: int, data: bytes) -> Moby:
        (mission_id, instance_id, model_id, scale, px, py, pz, rx, ry, rz,
         draw_distance, update_distance, group_index, pvar_index, light, color) = MOBY.unpack_from(data)
        return Moby(
            instance_id=instance_id,
            mission_id=mission_id,
            model_id=model_id,
            scale=scale,
            position=(px, py, pz),
            rotation=(rx, ry, rz),
            draw_distance=draw_distance,
            update_distance=update_distance,
            group_index=group_index,
            pvar_index=pvar_index,
            light=light,
            color=unpack_rgba(color),
            record=data[MOBY.size:],
        )

    def _decode_tie(self, index: int, data: bytes) -> Tie:
        values = TIE.unpack_from(data)
        model_id, instance_id, light, unknown = values[:4]
        return Tie(
            instance_id=instance_id,
            model_id=model_id,
            light=light,
            unknown=unknown,
            transform=_matrix(values[4:20]),
            color=unpack_rgba(values[20]),
            record=data[TIE.size:],
        )

    def _decode_shrub(self, index: int, data: bytes) -> Shrub:
        values = SHRUB.unpack_from(data)
        model_id, instance_id, draw_distance, light = values[:4]
        return Shrub(
            instance_id=instance_id,
            model_id=model_id,
            draw_distance=draw_distance,
            light=light,
            transform=_matrix(values[4:20]),
            color=unpack_rgba(values[20]),
            record=data[SHRUB.size:],
        )

    def _decode_terrain_element(self, index: int, data: bytes) -> TerrainElement:
        model_id, instance_id, x, y, z, flags = TERRAIN_ELEMENT.unpack_from(data)
        return TerrainElement(
            instance_id=instance_id,
            model_id=model_id,
            position=(x, y, z),
            flags=flags,
            record=data[TERRAIN_ELEMENT.size:],
        )

    def _decode_light(self, index: int, data: bytes) -> Light:
        v = LIGHT.unpack(data)
        return Light(
            instance_id=index,
            color_a=v[0:4],
            direction_a=v[4:8],
            color_b=v[8:12],
            direction_b=v[12:16],
        )

    def _decode_spawn_point(self, index: int, data: bytes) -> SpawnPoint:
        v = SPAWN_POINT.unpack(data)
        return SpawnPoint(instance_id=index, spawn_matrix=_matrix(v[:16]), rotation_matrix=_matrix(v[16:]))

    def _decode_camera(self, index: int, data: bytes) -> GameCamera:
        camera_id, x, y, z, rx, ry, rz, unknown = CAMERA.unpack(data)
        return GameCamera(instance_id=camera_id, position=(x, y, z), rotation=(rx, ry, rz), unknown=unknown)

    def _read_splines(self, pointer: int) -> List[Spline]:
        src = self.source
        count = src.read_count(pointer, 4)
        offsets = src.read_array(pointer + 4, ">u4", count)

        splines = []
        for index, relative in enumerate(offsets):
            offset = pointer + int(relative)
            vertex_count, unknown = src.read_struct(offset, SPLINE_HEADER)
            base = offset + SPLINE_HEADER.size
            src.check_count(vertex_count, 16, base)
            vertices = src.read_array(base, ">f4", vertex_count * 4).reshape(vertex_count, 4)
            splines.append(Spline(instance_id=index, vertices=vertices, record=unknown))
        return splines

    # ------------------------------------------------------------------
    # Per-instance data sized by earlier counts
    # ------------------------------------------------------------------

    def get_behavior_variables(self, instance_count: int) -> List[bytes]:
        """
        Read one pvar blob per instance that declared behaviour data.

        Args:
            instance_count: Number of mobies with a pvar index, from the
                already-decoded moby list

        Raises:
            CorruptAssetError: If the pvar table holds a different count
        """
        with self._stage("behavior variables"):
            pointer = self._header("pvars")
            count = self.source.read_count(pointer, 8) if pointer else 0
            if count != instance_count:
                raise self._corrupt(
                    f"Pvar table holds {count} entries, mobies declare {instance_count}",
                    count=count,
                    expected=instance_count,
                )
            if not count:
                return []

            table = self.source.read_array(pointer + 4, ">u4", count * 2).reshape(count, 2)
            base = pointer + 4 + count * 8
            pvars = [self.source.read_at(base + int(offset), int(size)) for offset, size in table]

        logger.info("Added %d pvars", len(pvars))
        return pvars

    def _pvar_count(self, mobies: Sequence[Moby]) -> int:
        """
        Number of pvar entries the mobies declare.

        Declared indices must be exactly 0..n-1, one per moby.
        """
        indices = sorted(moby.pvar_index for moby in mobies if moby.has_pvars)
        if indices != list(range(len(indices))):
            with self._stage("behavior variables"):
                raise self._corrupt(
                    f"Moby pvar indices {indices} are not 0..{len(indices) - 1}",
                    pvar_indices=indices,
                )
        return len(indices)

    def get_instance_data(self, kind: InstanceKind, instance_count: int) -> OpaqueBlob:
        """
        Read the per-instance tie or shrub data region.

        Its size is instance_count times the variant's stride, so the
        instances must be decoded first.
        """
        if kind not in INSTANCE_DATA:
            raise KeyError(f"No per-instance data for {kind.value}")
        field_name, stride_attr = INSTANCE_DATA[kind]

        with self._stage(field_name):
            pointer = self._header(field_name)
            length = instance_count * getattr(self.variant, stride_attr)
            if not length:
                return OpaqueBlob.empty(field_name)
            if not pointer:
                raise self._corrupt(f"{field_name}: {instance_count} instances but null pointer")
            return OpaqueBlob(field_name, self.source.read_at(pointer, length), pointer)

    # ------------------------------------------------------------------
    # Localization and opaque sections
    # ------------------------------------------------------------------

    def get_localization_tables(self) -> Dict[LanguageTag, bytes]:
        """
        Return every language table verbatim, including its 8-byte header.

        Absent slots map to b"".
        """
        tables = {}
        with self._stage("localization"):
            for tag in LanguageTag:
                pointer = self._header(tag.value)
                if not pointer:
                    tables[tag] = b""
                    continue
                string_count, byte_length = self.source.read_struct(pointer, LANGUAGE_HEADER)
                if string_count < 0 or byte_length < LANGUAGE_HEADER.size:
                    raise self._corrupt(
                        f"{tag.value} table: {string_count} strings in {byte_length} bytes", offset=pointer
                    )
                tables[tag] = self.source.read_at(pointer, byte_length)
        return tables

    def get_opaque_typed_records(self, tag: str) -> OpaqueRecordList:
        """
        Read a "type NN" list verbatim.

        Raises:
            KeyError: If `tag` is not in TYPED_RECORD_SIZES
        """
        record_size = TYPED_RECORD_SIZES[tag]
        with self._stage(tag):
            pointer = self._header(tag)
            if not pointer:
                return OpaqueRecordList(tag, record_size)
            records = self._counted_block(pointer, record_size)
        return OpaqueRecordList(tag, record_size, tuple(records), pointer)

    def get_pair_records(self, tag: str) -> List[Pair]:
        """Read a list of (i32, i32) pairs (type50 / type5C)."""
        if tag not in PAIR_RECORD_TAGS:
            raise KeyError(f"Unknown pair record list: {tag}")
        with self._stage(tag):
            pointer = self._header(tag)
            if not pointer:
                return []
            return self._read_pairs(pointer + 4, self.source.read_count(pointer, PAIR.size))

    def _read_pairs(self, offset: int, count: int) -> List[Pair]:
        values = self.source.read_array(offset, ">i4", count * 2).tolist()
        return list(zip(values[0::2], values[1::2]))

    def get_opaque_blob(self, tag: str) -> OpaqueBlob:
        """Read a length-prefixed unknown section (unk6, unk7, unk13, unk14, unk17)."""
        if tag not in UNKNOWN_BLOB_TAGS:
            raise KeyError(f"Unknown gameplay blob: {tag}")
        with self._stage(tag):
            pointer = self._header(tag)
            if not pointer:
                return OpaqueBlob.empty(tag)
            length = self.source.read_i32(pointer)
            if length < 0:
                raise self._corrupt(f"{tag}: negative length {length}", offset=pointer)
            return OpaqueBlob(tag, self.source.read_at(pointer + 4, length), pointer + 4)

    def get_id_tables(self) -> IdTables:
        """Read the gameplay-order ID lists used to map back to engine order."""
        with self._stage("id tables"):
            lists = []
            for name in ("moby_ids", "tie_ids", "shrub_ids"):
                pointer = self._header(name)
                if not pointer:
                    lists.append([])
                    continue
                count = self.source.read_count(pointer, 4)
                lists.append(self.source.read_array(pointer + 4, ">i4", count).tolist())
        return IdTables(*lists)

    def get_occlusion_data(self) -> OcclusionData:
        with self._stage("occlusion"):
            pointer = self._header("occlusion")
            if not pointer:
                return OcclusionData()

            counts = self.source.read_struct(pointer, OCCLUSION_HEADER)
            offset = pointer + OCCLUSION_HEADER.size
            groups = []
            for count in counts:
                self.source.check_count(count, PAIR.size, offset)
                groups.append(self._read_pairs(offset, count))
                offset += count * PAIR.size
        return OcclusionData(*groups)

    # ------------------------------------------------------------------

    def decode_all(self, max_workers: int = DEFAULT_MAX_WORKERS) -> GameplayAssets:
        """
        Decode the whole file without resolving model references.

        Sections are decoded in two waves: everything independent first,
        then the sections whose size depends on decoded instance counts.
        """
        kinds = list(InstanceKind)
        tags = list(TYPED_RECORD_SIZES)

        stages = [("level variables", self.get_level_variables)]
        stages += [(kind.value, partial(self.get_instances, kind)) for kind in kinds]
        stages += [(tag, partial(self.get_opaque_typed_records, tag)) for tag in tags]
        stages += [(tag, partial(self.get_pair_records, tag)) for tag in PAIR_RECORD_TAGS]
        stages += [(tag, partial(self.get_opaque_blob, tag)) for tag in UNKNOWN_BLOB_TAGS]
        stages += [
            ("localization", self.get_localization_tables),
            ("id tables", self.get_id_tables),
            ("occlusion", self.get_occlusion_data),
        ]
        results = iter(run_stages(stages, max_workers))

        level_variables = next(results)
        instances = {kind: next(results) for kind in kinds}
        typed_records = {tag: next(results) for tag in tags}
        pair_records = {tag: next(results) for tag in PAIR_RECORD_TAGS}
        blobs = {tag: next(results) for tag in UNKNOWN_BLOB_TAGS}
        localization, id_tables, occlusion = next(results), next(results), next(results)

        pvars = self.get_behavior_variables(self._pvar_count(instances[InstanceKind.MOBY]))
        for kind in INSTANCE_DATA:
            blob = self.get_instance_data(kind, len(instances[kind]))
            blobs[blob.tag] = blob

        return GameplayAssets(
            level_variables=level_variables,
            instances=instances,
            localization=localization,
            pvars=pvars,
            typed_records=typed_records,
            pair_records=pair_records,
            blobs=blobs,
            id_tables=id_tables,
            occlusion=occlusion,
        )
