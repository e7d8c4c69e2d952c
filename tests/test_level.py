"""Tests for level.py - assembling a level from its three files."""

import struct
import pytest

import rclevel.source

from rclevel import (
    AssemblyState,
    AssetNotFoundError,
    CorruptAssetError,
    InstanceKind,
    LevelAssembler,
    ModelCategory,
    RAC1,
    RAC2,
    UnsupportedVariantError,
    load_level,
)
from rclevel.config import GAMEPLAY_FILENAME, VRAM_FILENAME
from rclevel.engine import BLOB_NAMES

from level_builder import build_engine, default_level


class TestLoadLevel:
    """Test decoding a complete level."""

    def test_valid_level(self, engine_path):
        level = load_level(engine_path)

        assert level.valid
        assert level.invalid_reason is None
        assert level.variant is RAC1
        assert level.path == engine_path.parent

    def test_models_and_textures(self, engine_path):
        """Test engine assets reach the level with payloads attached."""
        level = load_level(engine_path)

        assert [m.id for m in level.moby_models] == [100, 101, 102]
        assert [m.id for m in level.tie_models] == [10, 11, 12]
        assert level.skybox is not None and level.collision_model is not None
        assert level.models(ModelCategory.SKYBOX) == [level.skybox]
        assert len(level.terrain_chunks) == 2
        assert [t.has_payload for t in level.textures] == [True, True, False, True, False]
        assert len(level.player_animations) == 2
        assert level.texture_config_menus == [4, 2]

    def test_tie_resolution(self, engine_path):
        """Test that four of five ties resolve and the unknown ID stays unresolved."""
        level = load_level(engine_path)

        ties = level.ties
        assert len(ties) == 5
        assert sum(t.is_resolved for t in ties) == 4
        assert ties[3].model_id == 99
        assert ties[3].model is None
        assert ties[4].model is level.tie_models[2]

    def test_unresolved_instances(self, engine_path):
        """Test that unresolved instances are collected across kinds."""
        level = load_level(engine_path)

        unresolved = level.unresolved_instances()

        assert sorted((i.kind.value, i.model_id) for i in unresolved) == [
            ("moby", 555), ("shrub", 21), ("tie", 99),
        ]
        assert all(e.is_resolved for e in level.terrain_elements)

    def test_gameplay_sections(self, engine_path, level_files):
        level = load_level(engine_path)

        assert level.pvars == level_files.pvars
        assert level.level_variables.ship_path == 7
        assert len(level.instances(InstanceKind.CAMERA)) == 2
        assert level.type50s == [(1, 2), (3, 4)]
        assert level.type5Cs == [(-1, 9)]
        assert level.typed_records["type88"].count == 2
        assert level.id_tables.moby_ids == [4, 3, 2, 1]
        assert level.occlusion.ties == [(0, 1), (2, 3)]

    def test_blobs_from_both_files(self, engine_path):
        """Test that engine and gameplay blobs share one mapping."""
        level = load_level(engine_path)

        for name in BLOB_NAMES:
            assert name in level.blobs
        assert level.blobs["unk6"].data == b"UNK06"
        assert level.blobs["tie_data"].length == 5 * RAC1.tie_data_stride
        assert level.blobs["shrub_data"].length == 2 * RAC1.shrub_data_stride

    def test_rac2_level(self, tmp_path):
        """Test a level using the RAC2 layouts end to end."""
        engine_path = default_level(RAC2).write(tmp_path / "rac2")

        level = load_level(engine_path)

        assert level.valid
        assert level.variant is RAC2
        assert len(level.mobies) == 4
        assert level.blobs["tie_data"].length == 5 * RAC2.tie_data_stride


class TestDeterminism:
    """Test that repeated and threaded decodes agree."""

    def assert_same(self, a, b):
        assert a.variant is b.variant
        for category in ModelCategory:
            assert [m.id for m in a.models(category)] == [m.id for m in b.models(category)]
        assert a.textures == b.textures
        assert a.blobs == b.blobs
        for kind in InstanceKind:
            if kind is InstanceKind.SPLINE:
                assert [s.vertices.tolist() for s in a.splines] == [s.vertices.tolist() for s in b.splines]
            else:
                assert a.instances(kind) == b.instances(kind)
        assert [i.model_id for i in a.unresolved_instances()] == [i.model_id for i in b.unresolved_instances()]
        assert a.localization == b.localization
        assert a.pvars == b.pvars

    def test_repeat_decode(self, engine_path):
        self.assert_same(load_level(engine_path), load_level(engine_path))

    def test_threaded_decode(self, engine_path):
        """Test that the worker count does not change the result."""
        self.assert_same(load_level(engine_path, max_workers=1), load_level(engine_path, max_workers=4))


class TestAssembler:
    """Test assembler states and failure modes."""

    def test_states(self, engine_path):
        assembler = LevelAssembler(engine_path)
        assert assembler.state is AssemblyState.START

        assembler.assemble()

        assert assembler.state is AssemblyState.ASSEMBLED

    def test_runs_once(self, engine_path):
        assembler = LevelAssembler(engine_path)
        assembler.assemble()

        with pytest.raises(RuntimeError, match="already ran"):
            assembler.assemble()

    def test_paths(self, engine_path):
        assembler = LevelAssembler(engine_path)

        assert assembler.paths.vram == engine_path.parent / VRAM_FILENAME
        assert assembler.paths.gameplay == engine_path.parent / GAMEPLAY_FILENAME

    def test_missing_vram(self, tmp_path, level_files):
        """Test that a missing vram file gives an invalid level, not an exception."""
        engine_path = level_files.write(tmp_path / "novram", vram=False)
        assembler = LevelAssembler(engine_path)

        level = assembler.assemble()

        assert not level.valid
        assert level.invalid_reason.count(VRAM_FILENAME) == 1
        assert level.path == engine_path.parent
        assert assembler.state is AssemblyState.ABORTED
        assert "invalid" in repr(level)

    def test_unreadable_vram(self, engine_path, monkeypatch):
        """Test that a vram file that cannot be opened also gives an invalid level."""
        real_open = open

        def deny_vram(path, *args, **kwargs):
            if str(path).endswith(VRAM_FILENAME):
                raise PermissionError(13, "Permission denied", str(path))
            return real_open(path, *args, **kwargs)

        monkeypatch.setattr(rclevel.source, "open", deny_vram, raising=False)
        assembler = LevelAssembler(engine_path)

        level = assembler.assemble()

        assert level.valid is False
        assert "Permission denied" in level.invalid_reason
        assert level.invalid_reason.count(VRAM_FILENAME) == 1
        assert assembler.state is AssemblyState.ABORTED

    def test_vram_is_directory(self, tmp_path, level_files):
        """Test that a vram path that is not a regular file gives an invalid level."""
        engine_path = level_files.write(tmp_path / "dirvram", vram=False)
        (engine_path.parent / VRAM_FILENAME).mkdir()
        assembler = LevelAssembler(engine_path)

        level = assembler.assemble()

        assert level.valid is False
        assert assembler.state is AssemblyState.ABORTED

    def test_corrupt_vram_raises(self, tmp_path, level_files):
        """Test that a vram file that exists but is corrupt is a hard failure."""
        level_files.vram = struct.pack(">i", -1)
        engine_path = level_files.write(tmp_path / "badvram")

        with pytest.raises(CorruptAssetError) as excinfo:
            load_level(engine_path)

        assert excinfo.value.path == str(engine_path.parent / VRAM_FILENAME)

    def test_missing_engine(self, tmp_path):
        with pytest.raises(AssetNotFoundError):
            load_level(tmp_path / "engine.ps3")

    def test_missing_gameplay(self, engine_path):
        (engine_path.parent / GAMEPLAY_FILENAME).unlink()

        with pytest.raises(AssetNotFoundError) as excinfo:
            load_level(engine_path)

        assert excinfo.value.path == str(engine_path.parent / GAMEPLAY_FILENAME)

    def test_corrupt_engine(self, tmp_path, level_files):
        """Test that a bad count in the engine file names the file and stage."""
        data = bytearray(level_files.engine)
        struct.pack_into(">i", data, RAC1.engine_layout["tie_model_count"], -3)
        level_files.engine = bytes(data)
        engine_path = level_files.write(tmp_path / "badengine")

        with pytest.raises(CorruptAssetError) as excinfo:
            load_level(engine_path)

        assert excinfo.value.path == str(engine_path)
        assert excinfo.value.stage == "engine: tie models"
        assert str(engine_path) in str(excinfo.value)

    def test_unsupported_variant(self, tmp_path, level_files):
        level_files.engine = build_engine(signature=0xCAFE0001)
        engine_path = level_files.write(tmp_path / "unknown")

        with pytest.raises(UnsupportedVariantError):
            load_level(engine_path)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
