"""Byte sources for outgoing files."""

import asyncio
import io
import mimetypes
import os
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, BinaryIO

from config import DEFAULT_MIME


class ChunkReader:
    """Reads from a blocking file object without stalling the event loop."""

    def __init__(self, fileobj: BinaryIO, threaded: bool = True) -> None:
        self._file = fileobj
        self._threaded = threaded

    async def read(self, size: int) -> bytes:
        if self._threaded:
            return await asyncio.to_thread(self._file.read, size)
        return self._file.read(size)


class FileSource(ABC):
    """A file to send: name, size, mime type and a way to read its bytes."""

    name: str
    size: int
    mime: str

    @abstractmethod
    def open(self):
        """Async context manager yielding a ChunkReader."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, {self.size} bytes)"


class PathSource(FileSource):
    """A file on local disk."""

    def __init__(self, path: str | os.PathLike, mime: str | None = None) -> None:
        self.path = os.fspath(path)
        self.name = os.path.basename(self.path)
        self.size = os.path.getsize(self.path)
        self.mime = mime or mimetypes.guess_type(self.name)[0] or DEFAULT_MIME

    @asynccontextmanager
    async def open(self) -> AsyncIterator[ChunkReader]:
        f = await asyncio.to_thread(open, self.path, "rb")
        try:
            yield ChunkReader(f)
        finally:
            f.close()


class BytesSource(FileSource):
    """An in-memory payload."""

    def __init__(self, name: str, data: bytes, mime: str | None = None) -> None:
        self.name = name
        self.data = bytes(data)
        self.size = len(self.data)
        self.mime = mime or mimetypes.guess_type(name)[0] or DEFAULT_MIME

    @asynccontextmanager
    async def open(self) -> AsyncIterator[ChunkReader]:
        yield ChunkReader(io.BytesIO(self.data), threaded=False)
