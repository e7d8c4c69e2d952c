"""Tests for vram.py - texture payload backfill."""

import logging
import struct
import pytest

from rclevel.engine import EngineDecoder
from rclevel.errors import CorruptAssetError, OutOfBoundsError
from rclevel.source import RawFileSource
from rclevel.vram import VramDecoder

from level_builder import TEXTURES, build_vram, default_engine, default_vram, texture_payload


@pytest.fixture
def textures():
    """Texture headers of the default engine file, payloads still empty."""
    return EngineDecoder(RawFileSource.from_bytes(default_engine())).get_textures()


def vram_for(data: bytes) -> VramDecoder:
    return VramDecoder(RawFileSource.from_bytes(data, "vram.ps3"))


class TestFill:
    """Test attaching payloads to texture headers."""

    def test_fill_default(self, textures):
        """Test that listed textures get their bytes and the rest stay empty."""
        filled = vram_for(default_vram()).fill(textures)

        assert filled == 3
        assert [t.has_payload for t in textures] == [True, True, False, True, False]
        for index in (0, 1, 3):
            assert textures[index].payload == texture_payload(*TEXTURES[index], seed=index)

    def test_payload_length_matches_format(self, textures):
        """Test every attached payload has the size its header implies."""
        vram_for(default_vram()).fill(textures)

        for texture in textures:
            if texture.has_payload:
                assert len(texture.payload) == texture.expected_size

    def test_empty_table(self, textures):
        """Test that a vram file with no entries fills nothing."""
        assert vram_for(build_vram({})).fill(textures) == 0
        assert not any(t.has_payload for t in textures)

    def test_entry_order_does_not_matter(self, textures):
        """Test that entries may list textures in any order."""
        payloads = {i: texture_payload(*TEXTURES[i], seed=i) for i in (3, 0)}

        assert vram_for(build_vram(payloads)).fill(textures) == 2
        assert textures[3].payload == payloads[3]
        assert textures[0].payload == payloads[0]


class TestFillErrors:
    """Test corrupt vram files."""

    def test_length_mismatch(self, textures):
        """Test that a region sized differently from the header is corrupt."""
        with pytest.raises(CorruptAssetError, match="vram region is 10 bytes, expected 64") as excinfo:
            vram_for(build_vram({0: b"\x00" * 10})).fill(textures)

        assert excinfo.value.path == "vram.ps3"
        assert excinfo.value.stage == "vram: texture payloads"

    def test_duplicate_entry(self, textures):
        """Test that two entries for one texture are corrupt."""
        data = bytearray(build_vram({
            0: texture_payload(*TEXTURES[0]),
            1: texture_payload(*TEXTURES[1]),
        }))
        struct.pack_into(">i", data, 4 + 12, 0)

        with pytest.raises(CorruptAssetError, match="Duplicate vram entry for texture 0"):
            vram_for(bytes(data)).fill(textures)

    def test_unknown_texture_index(self, textures, caplog):
        """Test that an entry for a nonexistent texture is logged and skipped."""
        with caplog.at_level(logging.WARNING, logger="rclevel.vram"):
            filled = vram_for(build_vram({9: b"\x00" * 4})).fill(textures)

        assert filled == 0
        assert "missing texture 9" in caplog.text

    def test_region_past_end(self, textures):
        """Test that an entry pointing past the end of file fails."""
        data = bytearray(build_vram({0: texture_payload(*TEXTURES[0])}))
        struct.pack_into(">I", data, 8, len(data))

        with pytest.raises(OutOfBoundsError):
            vram_for(bytes(data)).fill(textures)

    def test_implausible_count(self, textures):
        with pytest.raises(CorruptAssetError):
            vram_for(struct.pack(">i", -2)).fill(textures)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
