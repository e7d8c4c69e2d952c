"""
Random-access reads over a memory-mapped level file.

Decoders jump between header tables and payload regions, so there is no
cursor: every read names its absolute byte offset. All reads are bounds
checked and raise OutOfBoundsError instead of returning short data.
Reads never mutate shared state, which makes one source safe to use from
several decoding threads at once.
"""

import mmap
import struct
from pathlib import Path
from typing import Any, Optional, Tuple, Type, TypeVar, Union

import numpy as np

from rclevel.config import MAX_RECORD_COUNT
from rclevel.errors import (
    AssetIOError,
    AssetNotFoundError,
    CorruptAssetError,
    MalformedRecordError,
    OutOfBoundsError,
)

T = TypeVar("T")

U32 = struct.Struct(">I")
I32 = struct.Struct(">i")
F32 = struct.Struct(">f")


class RawFileSource:
    """
    A read-only, bounds-checked view of one binary file.

    Use RawFileSource.open() rather than the constructor; the source must be
    closed by its owner (or used as a context manager).

    Example:
        >>> with RawFileSource.open("engine.ps3") as src:
        ...     signature = src.read_u32(0xA0)
    """

    def __init__(self, path: Path, buffer: Union[bytes, mmap.mmap], handle: Optional[Any] = None):
        self.path = path
        self._buffer = buffer
        self._handle = handle
        self.size = len(buffer)

    @classmethod
    def open(cls, path: Union[str, Path]) -> "RawFileSource":
        """
        Open and memory-map a file.

        Raises:
            AssetNotFoundError: If the file does not exist
            AssetIOError: If the file exists but cannot be read
        """
        path = Path(path)
        if not path.exists():
            raise AssetNotFoundError(f"File not found: {path}", {"path": str(path)})

        try:
            handle = open(path, "rb")
        except OSError as e:
            raise AssetIOError(f"Could not open {path}: {e.strerror or e}", {"path": str(path)}) from e

        try:
            if path.stat().st_size == 0:
                # mmap refuses empty files
                handle.close()
                return cls(path, b"")
            buffer = mmap.mmap(handle.fileno(), 0, access=mmap.ACCESS_READ)
        except (OSError, ValueError) as e:
            handle.close()
            raise AssetIOError(f"Could not map {path}: {e}", {"path": str(path)}) from e

        return cls(path, buffer, handle)

    @classmethod
    def from_bytes(cls, data: bytes, name: str = "<memory>") -> "RawFileSource":
        """Wrap an in-memory buffer (used for already-loaded files)."""
        return cls(Path(name), bytes(data))

    def close(self) -> None:
        if isinstance(self._buffer, mmap.mmap) and not self._buffer.closed:
            self._buffer.close()
        if self._handle is not None:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "RawFileSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<RawFileSource {self.path} ({self.size} bytes)>"

    def _context(self, **extra) -> dict:
        context = {"path": str(self.path)}
        context.update(extra)
        return context

    def check_range(self, offset: int, length: int) -> None:
        """Raise OutOfBoundsError unless [offset, offset + length) is inside the file."""
        if offset < 0 or length < 0 or offset + length > self.size:
            raise OutOfBoundsError(
                f"Read of {length} bytes at 0x{offset:X} exceeds file size 0x{self.size:X}",
                self._context(offset=offset, length=length),
            )

    def read_at(self, offset: int, length: int) -> bytes:
        """Read exactly `length` bytes at `offset`."""
        self.check_range(offset, length)
        return bytes(self._buffer[offset:offset + length])

    def read_struct(self, offset: int, layout: struct.Struct) -> Tuple[Any, ...]:
        """Unpack a struct.Struct at `offset`."""
        data = self.read_at(offset, layout.size)
        try:
            return layout.unpack(data)
        except struct.error as e:
            raise MalformedRecordError(str(e), self._context(offset=offset)) from e

    def read_record(self, offset: int, record_type: Type[T]) -> T:
        """
        Read a fixed-width record.

        `record_type` must expose a SIZE attribute and a from_bytes() classmethod.
        """
        data = self.read_at(offset, record_type.SIZE)  # type: ignore[attr-defined]
        try:
            return record_type.from_bytes(data)  # type: ignore[attr-defined]
        except (struct.error, ValueError) as e:
            raise MalformedRecordError(
                f"Malformed {record_type.__name__} at 0x{offset:X}: {e}",
                self._context(offset=offset),
            ) from e

    def read_u32(self, offset: int) -> int:
        return self.read_struct(offset, U32)[0]

    def read_i32(self, offset: int) -> int:
        return self.read_struct(offset, I32)[0]

    def read_f32(self, offset: int) -> float:
        return self.read_struct(offset, F32)[0]

    def read_count(self, offset: int, record_size: int, base: Optional[int] = None) -> int:
        """
        Read an i32 element count and check that `count` records fit in the file.

        Args:
            offset: Where the count is stored
            record_size: Size of one record in bytes
            base: Where the records start (defaults to right after the count)

        Returns:
            The validated count
        """
        count = self.read_i32(offset)
        self.check_count(count, record_size, offset + 4 if base is None else base)
        return count

    def check_count(self, count: int, record_size: int, base: int) -> None:
        if count < 0 or count > MAX_RECORD_COUNT:
            raise CorruptAssetError(
                f"Implausible record count {count} at 0x{base:X}",
                self._context(offset=base, count=count),
            )
        self.check_range(base, count * record_size)

    def read_array(self, offset: int, dtype: str, count: int) -> np.ndarray:
        """
        Read `count` big-endian elements into a native-endian numpy array.

        Example:
            >>> src.read_array(0x400, ">f4", 24).reshape(-1, 8)
        """
        dt = np.dtype(dtype)
        data = self.read_at(offset, dt.itemsize * count)
        return np.frombuffer(data, dtype=dt).astype(dt.newbyteorder("="))
