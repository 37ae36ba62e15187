"""Document storage contract and local filesystem adapter."""

from __future__ import annotations

import asyncio
import hashlib
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from uuid import uuid4


@dataclass(frozen=True)
class FileMetadata:
    """Metadata persisted alongside a storage key; content is never stored."""

    file_name: str
    content_type: str
    size_bytes: int


class DocumentStorage(Protocol):
    """Protocol for receipt/attachment storage backends."""

    async def store(self, data: bytes, metadata: FileMetadata) -> str:
        """Persist bytes and return an opaque storage key."""
        ...


_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class LocalFileStorage:
    """Stores attachments under a root directory, keyed by content hash."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    async def store(self, data: bytes, metadata: FileMetadata) -> str:
        digest = hashlib.sha256(data).hexdigest()[:16]
        safe_name = _UNSAFE.sub("_", metadata.file_name).strip("._") or "file"
        key = f"{uuid4().hex}/{digest}-{safe_name}"
        await asyncio.to_thread(self._write, key, data)
        return key

    def _write(self, key: str, data: bytes) -> None:
        path = self.root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


class InMemoryStorage:
    """Storage stub for tests and demos."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, FileMetadata]] = {}

    async def store(self, data: bytes, metadata: FileMetadata) -> str:
        key = f"mem/{uuid4().hex}"
        self.objects[key] = (data, metadata)
        return key
