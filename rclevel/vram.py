"""
Vram file decoder (texture pixel data).

Vram file layout (big-endian):
- Entry count: i32
- Entries: (i32 texture_index, u32 offset, u32 length), 12 bytes each
- Pixel regions at the absolute offsets named by the entries

Payloads are attached to the texture headers decoded from the engine file.
A texture without an entry keeps its empty payload.
"""

import logging
import struct
from pathlib import Path
from typing import List, Union

from rclevel.errors import CorruptAssetError, decode_stage
from rclevel.models import Texture
from rclevel.source import RawFileSource

logger = logging.getLogger(__name__)

VRAM_ENTRY = struct.Struct(">iII")


class VramDecoder:
    """
    Decoder for the vram file.

    Opening is the only step that may fail "softly": the level assembler
    turns AssetNotFoundError/AssetIOError from open() into an invalid level.

    Example:
        >>> with VramDecoder.open("levels/03/vram.ps3") as vram:
        ...     filled = vram.fill(textures)
    """

    def __init__(self, source: RawFileSource):
        self.source = source

    @classmethod
    def open(cls, path: Union[str, Path]) -> "VramDecoder":
        return cls(RawFileSource.open(path))

    def close(self) -> None:
        self.source.close()

    def __enter__(self) -> "VramDecoder":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def fill(self, textures: List[Texture]) -> int:
        """
        Attach pixel payloads to `textures` in place.

        Args:
            textures: Texture headers, indexed by position

        Returns:
            Number of textures that received a payload

        Raises:
            CorruptAssetError: On bad offsets, duplicate entries, or a payload
                whose length does not match the texture's dimensions and format
        """
        path = str(self.source.path)
        with decode_stage("vram: texture payloads", path=path):
            count = self.source.read_count(0, VRAM_ENTRY.size)
            seen = set()
            filled = 0

            for i in range(count):
                index, offset, length = self.source.read_struct(4 + i * VRAM_ENTRY.size, VRAM_ENTRY)

                if index in seen:
                    raise CorruptAssetError(
                        f"Duplicate vram entry for texture {index}", {"path": path, "texture": index}
                    )
                seen.add(index)

                if not 0 <= index < len(textures):
                    logger.warning("Vram entry %d names missing texture %d, ignoring", i, index)
                    continue

                texture = textures[index]
                if length != texture.expected_size:
                    raise CorruptAssetError(
                        f"Texture {index}: vram region is {length} bytes, expected {texture.expected_size} "
                        f"({texture.width}x{texture.height} {texture.format.name})",
                        {"path": path, "texture": index, "offset": offset},
                    )

                texture.payload = self.source.read_at(offset, length)
                filled += 1

        missing = len(textures) - filled
        if missing:
            logger.info("%d of %d textures have no vram data", missing, len(textures))
        logger.info("Filled %d texture payloads", filled)
        return filled
