"""Fixed-size transfer blocks for cloudbackup.

Files are transferred in 1 MiB blocks so that memory use stays bounded
and an interrupted upload can resume at block granularity.
"""

from __future__ import annotations

import base64
import hashlib
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

TRANSFER_BLOCK_SIZE = 1024 * 1024  # 1 MiB

FILE_HASH_ALGORITHM = "SHA256"


@dataclass
class Block:
    """A block of file data with its position and hash."""

    index: int
    offset: int
    data: bytes
    hash: str

    @property
    def size(self) -> int:
        """Return the size of this block in bytes."""
        return len(self.data)


def get_block_hash(data: bytes) -> str:
    """Compute the base64-encoded MD5 of a block.

    This is the form storage backends accept for server-side integrity
    checks (Content-MD5).

    Args:
        data: Raw block bytes.

    Returns:
        Base64 MD5 digest (24 characters).
    """
    return base64.b64encode(hashlib.md5(data).digest()).decode("ascii")


def compute_total_blocks(size: int, block_size: int = TRANSFER_BLOCK_SIZE) -> int:
    """Number of blocks a file of ``size`` bytes is split into.

    An empty file still has one (empty) block so that it can be committed.
    """
    if size <= 0:
        return 1
    return (size + block_size - 1) // block_size


def read_block(path: Path, index: int, block_size: int = TRANSFER_BLOCK_SIZE) -> Block:
    """Read a single block from a file.

    Args:
        path: File to read.
        index: Zero-based block index.
        block_size: Block size in bytes.

    Returns:
        The Block at ``index`` (shorter than block_size for the last one).

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    offset = index * block_size
    with open(path, "rb") as f:
        f.seek(offset)
        data = f.read(block_size)
    return Block(index=index, offset=offset, data=data, hash=get_block_hash(data))


def iter_blocks(
    path: Path,
    start_index: int = 0,
    block_size: int = TRANSFER_BLOCK_SIZE,
) -> Iterator[Block]:
    """Yield the blocks of a file starting at ``start_index``.

    Only one block is held in memory at a time.
    """
    path = Path(path)
    total = compute_total_blocks(path.stat().st_size, block_size)
    with open(path, "rb") as f:
        f.seek(start_index * block_size)
        for index in range(start_index, total):
            data = f.read(block_size)
            yield Block(
                index=index,
                offset=index * block_size,
                data=data,
                hash=get_block_hash(data),
            )


def compute_file_hash(path: Path) -> str:
    """Compute SHA-256 hash of a file.

    Reads the file in chunks to handle large files efficiently.

    Args:
        path: Path to the file to hash.

    Returns:
        Hexadecimal SHA-256 hash string.
    """
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(65536), b""):
            hasher.update(block)
    return hasher.hexdigest()
