"""Models for progress accounting, channel frames and received files."""

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Annotated, Literal, Union

from pydantic import BaseModel, Field, PrivateAttr, field_validator

from config import DEFAULT_MIME
from errors import ArtifactReleasedError

if TYPE_CHECKING:
    from transfer.sources import FileSource


class Progress(BaseModel):
    """Byte accounting shared by the send, batch and receive paths."""
    total: int
    transferred: int = 0
    percent: float = 0.0
    started_at: float = Field(default_factory=time.time)
    finished_at: float | None = None

    @classmethod
    def start(cls, total: int) -> "Progress":
        progress = cls(total=max(0, total))
        progress._recompute()
        return progress

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    def _recompute(self) -> None:
        if self.total == 0:
            self.percent = 100.0
        else:
            self.percent = min(100.0, self.transferred / self.total * 100)

    def update(self, transferred: int) -> None:
        """Record the byte count so far, clamped to [transferred, total]."""
        if self.finished:
            return
        self.transferred = max(self.transferred, min(transferred, self.total))
        self._recompute()

    def advance(self, byte_count: int) -> None:
        self.update(self.transferred + byte_count)

    def finish(self, transferred: int | None = None) -> None:
        """
        Mark success. finished_at is only ever set once.

        An explicit byte count is the actual size and replaces the total,
        so a finished record always reads 100 percent.
        """
        if self.finished:
            return
        if transferred is not None:
            self.total = self.transferred = max(0, transferred)
        self._recompute()
        self.finished_at = time.time()

    def snapshot(self) -> "Progress":
        return self.model_copy()


# --- In-channel frames ---

class MetadataFrame(BaseModel):
    """Announces the next file; always precedes its binary chunks."""
    type: Literal["metadata"] = "metadata"
    id: str
    name: str = "received.bin"
    size: int = Field(default=0, ge=0)
    mime: str = DEFAULT_MIME
    index: int = 0
    count: int = 1

    @field_validator("mime", mode="before")
    @classmethod
    def _default_mime(cls, value):
        return value or DEFAULT_MIME


class DoneFrame(BaseModel):
    """Marks the end of a file's chunks."""
    type: Literal["done"] = "done"
    id: str = ""
    sha256: str | None = None


ChannelFrame = Annotated[
    Union[MetadataFrame, DoneFrame],
    Field(discriminator="type"),
]


# --- Received artifacts ---

class ReceivedFile(BaseModel):
    """A fully reassembled incoming file, exposed to the UI."""
    file_id: str
    name: str
    size: int
    declared_size: int
    mime: str
    received_at: float = Field(default_factory=time.time)
    verified: bool | None = None
    released: bool = False

    _data: bytes = PrivateAttr(default=b"")

    @classmethod
    def from_bytes(cls, data: bytes, **fields) -> "ReceivedFile":
        artifact = cls(size=len(data), **fields)
        artifact._data = data
        return artifact

    def read(self) -> bytes:
        if self.released:
            raise ArtifactReleasedError(f"'{self.name}' is no longer available")
        return self._data

    def release(self) -> None:
        self._data = b""
        self.released = True


# --- Engine state ---

@dataclass
class TransferBatch:
    """One send_files() call: an ordered list of files sent one by one."""
    files: list["FileSource"]
    progress: Progress
    index: int = 0
    completed: int = 0


@dataclass
class IncomingTransfer:
    """The file currently being received."""
    id: str
    name: str
    declared_size: int
    mime: str
    progress: Progress
    received_bytes: int = 0
    chunks: list[bytes] = field(default_factory=list)
