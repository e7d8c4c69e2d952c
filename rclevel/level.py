"""
The decoded level and the assembler that builds it.

Decode order is fixed by the data dependencies:

    engine file  -> models, texture headers
    vram file    -> texture payloads (needs texture headers)
    gameplay     -> instances, then pvars / tie data / shrub data (need counts)
    resolution   -> instance.model for every kind that carries a model ID

A missing or unreadable vram file is the one soft failure: the result is a
Level with valid=False. Every other error propagates to the caller.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from rclevel.config import DEFAULT_MAX_WORKERS, level_paths
from rclevel.engine import EngineAssets, EngineDecoder
from rclevel.errors import AssetIOError, AssetNotFoundError
from rclevel.gameplay import GameplayAssets, GameplayDecoder
from rclevel.models import (
    Animation,
    GameCamera,
    IdTables,
    InstanceKind,
    LanguageTag,
    LevelVariables,
    Light,
    ModelCategory,
    Moby,
    OcclusionData,
    OpaqueBlob,
    OpaqueRecordList,
    Shrub,
    SpawnPoint,
    Spline,
    StaticModel,
    TerrainElement,
    Texture,
    Tie,
    UiElement,
)
from rclevel.resolve import ModelIndex, resolve_instances
from rclevel.variants import GameVariant
from rclevel.vram import VramDecoder

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class Level:
    """
    One fully decoded level.

    If `valid` is False the decode was aborted (see `invalid_reason`) and no
    other field should be relied on.
    """
    valid: bool = False
    invalid_reason: Optional[str] = None
    path: Optional[Path] = None
    variant: Optional[GameVariant] = None

    # Engine file
    moby_models: List[StaticModel] = field(default_factory=list)
    tie_models: List[StaticModel] = field(default_factory=list)
    shrub_models: List[StaticModel] = field(default_factory=list)
    weapon_models: List[StaticModel] = field(default_factory=list)
    skybox: Optional[StaticModel] = None
    collision_model: Optional[StaticModel] = None
    terrain_chunks: List[StaticModel] = field(default_factory=list)
    textures: List[Texture] = field(default_factory=list)
    ui_elements: List[UiElement] = field(default_factory=list)
    texture_config_menus: List[int] = field(default_factory=list)
    player_animations: List[Animation] = field(default_factory=list)

    # Opaque regions from both files, keyed by tag
    blobs: Dict[str, OpaqueBlob] = field(default_factory=dict)

    # Gameplay file
    level_variables: Optional[LevelVariables] = None
    mobies: List[Moby] = field(default_factory=list)
    ties: List[Tie] = field(default_factory=list)
    shrubs: List[Shrub] = field(default_factory=list)
    lights: List[Light] = field(default_factory=list)
    splines: List[Spline] = field(default_factory=list)
    terrain_elements: List[TerrainElement] = field(default_factory=list)
    spawn_points: List[SpawnPoint] = field(default_factory=list)
    cameras: List[GameCamera] = field(default_factory=list)
    localization: Dict[LanguageTag, bytes] = field(default_factory=dict)
    pvars: List[bytes] = field(default_factory=list)
    typed_records: Dict[str, OpaqueRecordList] = field(default_factory=dict)
    type50s: List[tuple] = field(default_factory=list)
    type5Cs: List[tuple] = field(default_factory=list)
    id_tables: IdTables = field(default_factory=IdTables)
    occlusion: OcclusionData = field(default_factory=OcclusionData)

    def models(self, category: ModelCategory) -> List[StaticModel]:
        """All models of one category (skybox/collision as 0- or 1-item lists)."""
        if category is ModelCategory.SKYBOX:
            return [self.skybox] if self.skybox is not None else []
        if category is ModelCategory.COLLISION:
            return [self.collision_model] if self.collision_model is not None else []
        return getattr(self, _MODEL_ATTRS[category])

    def instances(self, kind: InstanceKind) -> list:
        return getattr(self, _INSTANCE_ATTRS[kind])

    def unresolved_instances(self) -> list:
        """Instances whose model ID did not match any model."""
        return [
            instance
            for kind in InstanceKind if kind.model_category is not None
            for instance in self.instances(kind)
            if not instance.is_resolved
        ]

    def __repr__(self) -> str:
        if not self.valid:
            return f"<Level invalid: {self.invalid_reason}>"
        return (
            f"<Level {self.path} {self.variant.name}: {len(self.moby_models)} moby models, "
            f"{len(self.textures)} textures, {len(self.mobies)} mobies, {len(self.ties)} ties>"
        )


_MODEL_ATTRS = {
    ModelCategory.MOBY: "moby_models",
    ModelCategory.TIE: "tie_models",
    ModelCategory.SHRUB: "shrub_models",
    ModelCategory.WEAPON: "weapon_models",
    ModelCategory.TERRAIN: "terrain_chunks",
}

_INSTANCE_ATTRS = {
    InstanceKind.MOBY: "mobies",
    InstanceKind.TIE: "ties",
    InstanceKind.SHRUB: "shrubs",
    InstanceKind.LIGHT: "lights",
    InstanceKind.SPLINE: "splines",
    InstanceKind.SPAWN_POINT: "spawn_points",
    InstanceKind.CAMERA: "cameras",
    InstanceKind.TERRAIN: "terrain_elements",
}


class AssemblyState(Enum):
    START = "start"
    ENGINE_DECODED = "engine_decoded"
    VRAM_CHECKED = "vram_checked"
    ABORTED = "aborted"
    GAMEPLAY_DECODED = "gameplay_decoded"
    ASSEMBLED = "assembled"


class LevelAssembler:
    """
    Runs the three decoders in order and builds a Level.

    One assembler decodes one level once; create a new one to retry.

    Example:
        >>> assembler = LevelAssembler("levels/03/engine.ps3")
        >>> level = assembler.assemble()
        >>> assembler.state
        <AssemblyState.ASSEMBLED: 'assembled'>
    """

    def __init__(self, engine_path: Union[str, Path], max_workers: int = DEFAULT_MAX_WORKERS):
        self.paths = level_paths(engine_path)
        self.max_workers = max_workers
        self.state = AssemblyState.START

    def assemble(self) -> Level:
        """
        Decode the level.

        Returns:
            A valid Level, or an invalid one if the vram file is missing or
            unreadable

        Raises:
            AssetNotFoundError: If the engine or gameplay file is missing
            UnsupportedVariantError: If the engine signature is unknown
            CorruptAssetError: If any table fails bounds or sanity checks
        """
        if self.state is not AssemblyState.START:
            raise RuntimeError(f"Assembler already ran (state: {self.state.value})")

        logger.info("Loading level from %s", self.paths.engine.parent)

        with EngineDecoder.open(self.paths.engine) as engine:
            engine_assets = engine.decode_all(self.max_workers)
        self.state = AssemblyState.ENGINE_DECODED

        try:
            vram = VramDecoder.open(self.paths.vram)
        except (AssetNotFoundError, AssetIOError) as e:
            logger.warning("Level aborted, vram unavailable: %s", e)
            self.state = AssemblyState.ABORTED
            return Level(valid=False, invalid_reason=e.message, path=self.paths.engine.parent)

        with vram:
            vram.fill(engine_assets.textures)
        self.state = AssemblyState.VRAM_CHECKED

        with GameplayDecoder.open(self.paths.gameplay, engine_assets.variant) as gameplay:
            gameplay_assets = gameplay.decode_all(self.max_workers)
        self.state = AssemblyState.GAMEPLAY_DECODED

        self._resolve(engine_assets, gameplay_assets)
        level = self._build(engine_assets, gameplay_assets)
        self.state = AssemblyState.ASSEMBLED

        logger.info("Level parsing done: %r", level)
        return level

    def _resolve(self, engine: EngineAssets, gameplay: GameplayAssets) -> None:
        for kind, instances in gameplay.instances.items():
            category = kind.model_category
            if category is None or not instances:
                continue
            resolve_instances(instances, ModelIndex(engine.models[category]))

    def _build(self, engine: EngineAssets, gameplay: GameplayAssets) -> Level:
        models = engine.models
        instances = gameplay.instances

        skybox = models[ModelCategory.SKYBOX]
        collision = models[ModelCategory.COLLISION]

        blobs = dict(engine.blobs)
        blobs.update(gameplay.blobs)

        return Level(
            valid=True,
            path=self.paths.engine.parent,
            variant=engine.variant,
            moby_models=models[ModelCategory.MOBY],
            tie_models=models[ModelCategory.TIE],
            shrub_models=models[ModelCategory.SHRUB],
            weapon_models=models[ModelCategory.WEAPON],
            skybox=skybox[0] if skybox else None,
            collision_model=collision[0] if collision else None,
            terrain_chunks=models[ModelCategory.TERRAIN],
            textures=engine.textures,
            ui_elements=engine.ui_elements,
            texture_config_menus=engine.texture_config_menus,
            player_animations=engine.player_animations,
            blobs=blobs,
            level_variables=gameplay.level_variables,
            mobies=instances[InstanceKind.MOBY],
            ties=instances[InstanceKind.TIE],
            shrubs=instances[InstanceKind.SHRUB],
            lights=instances[InstanceKind.LIGHT],
            splines=instances[InstanceKind.SPLINE],
            terrain_elements=instances[InstanceKind.TERRAIN],
            spawn_points=instances[InstanceKind.SPAWN_POINT],
            cameras=instances[InstanceKind.CAMERA],
            localization=gameplay.localization,
            pvars=gameplay.pvars,
            typed_records=gameplay.typed_records,
            type50s=gameplay.pair_records["type50"],
            type5Cs=gameplay.pair_records["type5C"],
            id_tables=gameplay.id_tables,
            occlusion=gameplay.occlusion,
        )


def load_level(engine_path: Union[str, Path], max_workers: int = DEFAULT_MAX_WORKERS) -> Level:
    """
    Decode the level whose engine file is `engine_path`.

    The vram and gameplay files are read from the same directory.

    Example:
        >>> level = load_level("levels/03/engine.ps3")
        >>> if not level.valid:
        ...     print(f"Could not load level: {level.invalid_reason}")
    """
    return LevelAssembler(engine_path, max_workers).assemble()
