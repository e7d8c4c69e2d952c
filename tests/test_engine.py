"""Tests for engine.py - static asset decoding."""

import struct
import pytest

import numpy as np

from rclevel.engine import BLOB_NAMES, EngineDecoder
from rclevel.errors import CorruptAssetError, UnsupportedVariantError
from rclevel.models import ModelCategory, TextureConfig
from rclevel.source import RawFileSource
from rclevel.variants import RAC1, RAC2, RAC3, SIGNATURE_OFFSET

from level_builder import ENGINE_BLOBS, TEXTURES, ModelDef, build_engine, default_engine, quad_model, triangle_model


def decoder_for(data: bytes) -> EngineDecoder:
    return EngineDecoder(RawFileSource.from_bytes(data, "engine.ps3"))


class TestVariantDetection:
    """Test game variant detection."""

    @pytest.mark.parametrize("variant", [RAC1, RAC2, RAC3])
    def test_known_signatures(self, variant):
        """Test each supported signature is recognised."""
        engine = decoder_for(build_engine(variant=variant))

        assert engine.detect_game_variant() is variant

    def test_unknown_signature(self):
        """Test that an unknown signature raises UnsupportedVariantError."""
        engine = decoder_for(build_engine(signature=0x12345678))

        with pytest.raises(UnsupportedVariantError) as excinfo:
            engine.detect_game_variant()

        assert excinfo.value.path == "engine.ps3"
        assert "0x12345678" in str(excinfo.value)

    def test_truncated_header(self):
        """Test that a file too short for the signature is corrupt."""
        engine = decoder_for(b"\x00" * SIGNATURE_OFFSET)

        with pytest.raises(CorruptAssetError) as excinfo:
            engine.detect_game_variant()

        assert excinfo.value.stage == "engine: signature"

    def test_layouts_differ_between_variants(self):
        """Test that RAC2 reads its header through its own layout."""
        data = build_engine(variant=RAC2, tie_models={10: triangle_model()})

        assert len(decoder_for(data).get_static_models(ModelCategory.TIE)) == 1
        assert RAC1.engine_layout["tie_models"] != RAC2.engine_layout["tie_models"]


class TestStaticModels:
    """Test model decoding."""

    def test_model_table(self):
        """Test that table entries keep their IDs, geometry and texture configs."""
        engine = decoder_for(default_engine())

        ties = engine.get_static_models(ModelCategory.TIE)

        assert [m.id for m in ties] == [10, 11, 12]
        assert ties[0].vertices.shape == (3, 8)
        assert ties[0].vertices.dtype == np.float32
        np.testing.assert_array_equal(ties[1].indices, [0, 1, 2, 0, 2, 3])
        assert ties[0].texture_configs == [TextureConfig(1, 0, 3, 0)]
        np.testing.assert_array_almost_equal(ties[2].positions[0], [5.0, 0.0, 0.0])

    def test_null_model_pointer_is_placeholder(self):
        """Test that a null model pointer yields an empty placeholder model."""
        engine = decoder_for(default_engine())

        mobies = engine.get_static_models(ModelCategory.MOBY)

        assert [m.id for m in mobies] == [100, 101, 102]
        assert mobies[2].is_placeholder
        assert not mobies[0].is_placeholder

    def test_single_models(self):
        """Test skybox and collision decode with their own vertex formats."""
        engine = decoder_for(default_engine())

        skybox = engine.get_static_models(ModelCategory.SKYBOX)
        collision = engine.get_static_models(ModelCategory.COLLISION)

        assert len(skybox) == 1 and skybox[0].vertices.shape == (3, 5)
        assert len(collision) == 1 and collision[0].vertices.shape == (3, 3)
        assert collision[0].indices.dtype == np.uint32

    def test_terrain_chunks(self):
        """Test terrain chunks get their chunk index as ID."""
        engine = decoder_for(default_engine())

        chunks = engine.get_static_models(ModelCategory.TERRAIN)

        assert [c.id for c in chunks] == [0, 1]
        assert chunks[0].index_count == 6

    def test_missing_categories_are_empty(self):
        """Test that absent tables decode to empty lists."""
        engine = decoder_for(build_engine())

        for category in ModelCategory:
            assert engine.get_static_models(category) == []

    def test_duplicate_ids(self):
        """Test that duplicate IDs within one category are corrupt."""
        data = bytearray(build_engine(moby_models={1: triangle_model(), 2: triangle_model()}))
        # Rewrite the second table entry's ID to 1
        table = struct.unpack_from(">I", data, RAC1.engine_layout["moby_models"])[0]
        struct.pack_into(">i", data, table + 8, 1)

        with pytest.raises(CorruptAssetError, match="Duplicate moby model ID 1"):
            decoder_for(bytes(data)).get_static_models(ModelCategory.MOBY)

    def test_negative_count(self):
        """Test that a negative model count fails the file."""
        data = bytearray(build_engine(tie_models={10: triangle_model()}))
        struct.pack_into(">i", data, RAC1.engine_layout["tie_model_count"], -3)

        with pytest.raises(CorruptAssetError) as excinfo:
            decoder_for(bytes(data)).get_static_models(ModelCategory.TIE)

        assert excinfo.value.stage == "engine: tie models"
        assert excinfo.value.path == "engine.ps3"

    def test_table_pointer_out_of_bounds(self):
        """Test that a table pointer past the end of file fails."""
        data = bytearray(build_engine(tie_models={10: triangle_model()}))
        struct.pack_into(">I", data, RAC1.engine_layout["tie_models"], len(data) + 0x100)

        with pytest.raises(CorruptAssetError):
            decoder_for(bytes(data)).get_static_models(ModelCategory.TIE)

    def test_index_out_of_range(self):
        """Test that an index referencing a missing vertex is corrupt."""
        bad = ModelDef(np.zeros((3, 8), dtype=np.float32), [0, 1, 7])
        engine = decoder_for(build_engine(shrub_models={5: bad}))

        with pytest.raises(CorruptAssetError, match="index 7 out of range"):
            engine.get_static_models(ModelCategory.SHRUB)

    def test_draw_range_past_index_count(self):
        """Test that a texture config drawing past the index buffer is corrupt."""
        bad = quad_model()
        bad.configs = [TextureConfig(0, 3, 6, 0)]
        engine = decoder_for(build_engine(weapon_models={1: bad}))

        with pytest.raises(CorruptAssetError, match="draw range"):
            engine.get_static_models(ModelCategory.WEAPON)


class TestTexturesAndUi:
    """Test texture headers, UI elements and animations."""

    def test_texture_headers(self):
        """Test that headers decode in order with empty payloads."""
        textures = decoder_for(default_engine()).get_textures()

        assert [t.index for t in textures] == [0, 1, 2, 3, 4]
        assert [(t.width, t.height, t.format) for t in textures] == TEXTURES
        assert all(t.payload == b"" for t in textures)
        assert textures[1].vram_hint == 0x100

    def test_expected_sizes(self):
        """Test payload sizes follow width * height * bytes per pixel."""
        textures = decoder_for(default_engine()).get_textures()

        assert [t.expected_size for t in textures] == [64, 64, 32, 16, 16]

    def test_unknown_texture_format(self):
        """Test that an unknown pixel format code is corrupt."""
        data = bytearray(default_engine())
        table = struct.unpack_from(">I", data, RAC1.engine_layout["textures"])[0]
        data[table + 4] = 0x42

        with pytest.raises(CorruptAssetError, match="unknown pixel format 0x42"):
            decoder_for(bytes(data)).get_textures()

    def test_ui_elements(self):
        engine = decoder_for(default_engine())

        elements = engine.get_ui_elements()

        assert [(e.id, e.sprites) for e in elements] == [(1, [0, 1]), (2, [3])]

    def test_texture_config_menus(self):
        assert decoder_for(default_engine()).get_texture_config_menus() == [4, 2]

    def test_player_animations(self):
        """Test animation headers decode and frames stay opaque."""
        animations = decoder_for(default_engine()).get_player_animations()

        assert len(animations) == 2
        assert animations[0].speed == 1.5
        assert animations[0].frame_count == 3
        assert animations[0].frames.length == 24
        assert animations[1].is_empty


class TestOpaqueBlobs:
    """Test verbatim blob extraction."""

    def test_blobs_verbatim(self):
        """Test every blob comes back byte-identical with its offset."""
        engine = decoder_for(default_engine())

        for name in BLOB_NAMES:
            blob = engine.get_opaque_blob(name)
            assert blob.tag == name
            assert blob.data == ENGINE_BLOBS[name]
            assert blob.length == len(ENGINE_BLOBS[name])
            assert blob.offset > 0

    def test_absent_blob(self):
        """Test that an absent blob is empty, not an error."""
        blob = decoder_for(build_engine()).get_opaque_blob("billboard")

        assert blob.length == 0

    def test_unknown_blob_name(self):
        with pytest.raises(KeyError):
            decoder_for(build_engine()).get_opaque_blob("does_not_exist")


class TestDecodeAll:
    """Test whole-file decoding."""

    def test_threaded_matches_sequential(self):
        """Test that decoding on a thread pool gives the same result."""
        data = default_engine()

        sequential = decoder_for(data).decode_all(max_workers=1)
        threaded = decoder_for(data).decode_all(max_workers=4)

        for category in ModelCategory:
            a, b = sequential.models[category], threaded.models[category]
            assert [m.id for m in a] == [m.id for m in b]
            for ma, mb in zip(a, b):
                np.testing.assert_array_equal(ma.vertices, mb.vertices)
                np.testing.assert_array_equal(ma.indices, mb.indices)
        assert sequential.textures == threaded.textures
        assert sequential.blobs == threaded.blobs
        assert sequential.ui_elements == threaded.ui_elements

    def test_threaded_failure_propagates(self):
        """Test that a failing category surfaces from the thread pool."""
        data = bytearray(default_engine())
        struct.pack_into(">i", data, RAC1.engine_layout["shrub_model_count"], -1)

        with pytest.raises(CorruptAssetError) as excinfo:
            decoder_for(bytes(data)).decode_all(max_workers=4)

        assert excinfo.value.stage == "engine: shrub models"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
