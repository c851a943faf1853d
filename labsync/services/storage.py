"""Local disk storage for uploaded chunks and assembled files."""
from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import List, Tuple

logger = logging.getLogger("labsync")

DEFAULT_UPLOAD_DIR = Path(
    os.getenv("UPLOAD_ROOT")
    or (Path(__file__).resolve().parent.parent / "uploads")
)


class MissingChunksError(Exception):
    def __init__(self, found: int, expected: int):
        super().__init__(f"Missing chunks. Found {found} of {expected} expected chunks.")
        self.found = found
        self.expected = expected


def sanitize_filename(name: str) -> str:
    name = os.path.basename(name or "file")
    name = re.sub(r"[^A-Za-z0-9_.-]", "_", name)
    return name.lstrip(".") or "file"


def upload_dir() -> Path:
    DEFAULT_UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    return DEFAULT_UPLOAD_DIR


def _temp_dir() -> Path:
    path = upload_dir() / "temp"
    path.mkdir(parents=True, exist_ok=True)
    return path


def chunk_path(file_name: str, chunk_number: int) -> Path:
    return _temp_dir() / f"{sanitize_filename(file_name)}.chunk{chunk_number}"


def store_chunk(file_name: str, chunk_number: int, data: bytes) -> Path:
    """Write one chunk; re-sending the same index overwrites it."""
    path = chunk_path(file_name, chunk_number)
    path.write_bytes(data)
    return path


def list_chunks(file_name: str) -> List[Tuple[int, Path]]:
    prefix = f"{sanitize_filename(file_name)}.chunk"
    parts: List[Tuple[int, Path]] = []
    for path in _temp_dir().glob(f"{prefix}*"):
        suffix = path.name[len(prefix):]
        if suffix.isdigit():
            parts.append((int(suffix), path))
    return sorted(parts)


def assemble_chunks(file_name: str, total_chunks: int) -> Tuple[Path, int]:
    """Concatenate chunks 0..total_chunks-1 into one file and drop the parts."""
    parts = list_chunks(file_name)
    indexes = [i for i, _ in parts]
    if indexes != list(range(total_chunks)):
        raise MissingChunksError(len(parts), total_chunks)

    target = upload_dir() / sanitize_filename(file_name)
    size = 0
    with target.open("wb") as out:
        for _, path in parts:
            data = path.read_bytes()
            out.write(data)
            size += len(data)
    for _, path in parts:
        path.unlink(missing_ok=True)
    logger.info({
        "function": "assemble_chunks",
        "file": target.name,
        "chunks": total_chunks,
        "size": size,
    })
    return target, size


__all__ = [
    "DEFAULT_UPLOAD_DIR",
    "MissingChunksError",
    "sanitize_filename",
    "store_chunk",
    "list_chunks",
    "assemble_chunks",
]
