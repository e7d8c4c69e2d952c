"""
Exceptions raised while decoding a level.

Every error carries a ``context`` dict. Decoders fill in ``path`` (the file
being read) and ``stage`` (what was being decoded) so the caller can report
exactly where a decode attempt failed.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional


class LevelDecodeError(Exception):
    """Base exception for level decoding errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    @property
    def path(self) -> Optional[str]:
        return self.context.get("path")

    @property
    def stage(self) -> Optional[str]:
        return self.context.get("stage")

    def __str__(self) -> str:
        where = [f"{key}={self.context[key]}" for key in ("path", "stage") if self.context.get(key)]
        if where:
            return f"{self.message} ({', '.join(where)})"
        return self.message


class AssetNotFoundError(LevelDecodeError, FileNotFoundError):
    """A required level file does not exist."""

    pass


class AssetIOError(LevelDecodeError, OSError):
    """A level file exists but could not be read."""

    pass


class UnsupportedVariantError(LevelDecodeError, ValueError):
    """The engine file signature does not match any known game."""

    pass


class CorruptAssetError(LevelDecodeError, ValueError):
    """An offset or count failed bounds or sanity checks."""

    pass


class OutOfBoundsError(CorruptAssetError):
    """A read reached past the end of the file."""

    pass


class MalformedRecordError(CorruptAssetError):
    """A fixed-size record could not be unpacked."""

    pass


@contextmanager
def decode_stage(stage: str, path: Optional[str] = None) -> Iterator[None]:
    """
    Tag any LevelDecodeError leaving the block with the stage (and path).

    Inner stages win: context that is already set is left alone.

    Example:
        >>> with decode_stage("moby models", path="engine.ps3"):
        ...     models = decoder.get_static_models(ModelCategory.MOBY)
    """
    try:
        yield
    except LevelDecodeError as e:
        e.context.setdefault("stage", stage)
        if path is not None:
            e.context.setdefault("path", path)
        raise
