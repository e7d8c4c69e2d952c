"""
File names and global limits.

A level lives in one directory: the engine file is passed in by the caller,
the vram and gameplay files are always its siblings.
"""

from pathlib import Path
from typing import NamedTuple, Union

VRAM_FILENAME = "vram.ps3"
GAMEPLAY_FILENAME = "gameplay_ntsc"

# Any decoded count above this is treated as corrupt
MAX_RECORD_COUNT = 0x100000

# 1 = decode categories sequentially
DEFAULT_MAX_WORKERS = 1


class LevelPaths(NamedTuple):
    engine: Path
    vram: Path
    gameplay: Path


def level_paths(engine_path: Union[str, Path]) -> LevelPaths:
    """
    Derive the vram and gameplay paths from the engine file's directory.

    Example:
        >>> level_paths("levels/03/engine.ps3").vram
        PosixPath('levels/03/vram.ps3')
    """
    engine = Path(engine_path)
    directory = engine.parent
    return LevelPaths(
        engine=engine,
        vram=directory / VRAM_FILENAME,
        gameplay=directory / GAMEPLAY_FILENAME,
    )
