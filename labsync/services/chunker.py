"""Split a file's bytes into fixed-size chunks for sequential upload."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterator

DEFAULT_CHUNK_SIZE = 1 * 1024 * 1024


@dataclass(frozen=True)
class Chunk:
    file_id: str
    index: int
    total_chunks: int
    offset: int
    is_last: bool
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class ChunkPlan:
    """Lazy view of a file as chunks.

    Each ``iter()`` starts a fresh pass from the first byte, so a plan can be
    walked again when an upload is retried from the beginning.
    """

    def __init__(self, file_id: str, data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.file_id = file_id
        self.chunk_size = chunk_size
        self._data = memoryview(data)

    @property
    def file_size(self) -> int:
        return len(self._data)

    @property
    def total_chunks(self) -> int:
        # a zero-byte file still goes out as one empty chunk
        return max(1, math.ceil(self.file_size / self.chunk_size))

    def __len__(self) -> int:
        return self.total_chunks

    def __iter__(self) -> Iterator[Chunk]:
        total = self.total_chunks
        for index in range(total):
            offset = index * self.chunk_size
            yield Chunk(
                file_id=self.file_id,
                index=index,
                total_chunks=total,
                offset=offset,
                is_last=index == total - 1,
                data=bytes(self._data[offset:offset + self.chunk_size]),
            )


def split(file_id: str, data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> ChunkPlan:
    return ChunkPlan(file_id, data, chunk_size)


__all__ = ["Chunk", "ChunkPlan", "split", "DEFAULT_CHUNK_SIZE"]
