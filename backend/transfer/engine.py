"""
Chunked file transfer over an open PeerChannel.

Sending: each file of a batch is announced with a JSON `metadata` frame,
streamed as raw binary chunks and terminated by a JSON `done` frame.
Files go strictly one after another. Before every chunk read the sender
checks how much the channel still has buffered and waits for it to drain
below the high-water mark, which bounds memory on slow links.

Receiving: frames are handled one at a time in arrival order. Chunks are
collected for the file announced by the last `metadata` and joined into
a ReceivedFile when its `done` arrives.
"""

import json
import logging
import time
import uuid
from typing import Sequence

from pydantic import TypeAdapter, ValidationError

from config import CHUNK_SIZE, HIGH_WATER_MARK, PROGRESS_INTERVAL, SIZE_TOLERANCE
from errors import ChannelClosedError, TransferAbortedError, TransferBusyError
from rtc.channel import Frame, PeerChannel
from security.crypto import ContentDigest, verify_digest
from transfer.models import (
    ChannelFrame,
    DoneFrame,
    IncomingTransfer,
    MetadataFrame,
    Progress,
    ReceivedFile,
    TransferBatch,
)
from transfer.sources import FileSource

logger = logging.getLogger(__name__)

_frame_adapter: TypeAdapter = TypeAdapter(ChannelFrame)


class TransferObserver:
    """Callbacks fired by the engine. Every method is a no-op by default."""

    async def on_send_progress(self, progress: Progress) -> None:
        pass

    async def on_batch_progress(self, progress: Progress) -> None:
        pass

    async def on_receive_progress(self, progress: Progress) -> None:
        pass

    async def on_file_received(self, file: ReceivedFile) -> None:
        pass


class ProgressThrottle:
    """Lets an update through at most once per interval."""

    def __init__(self, interval: float = PROGRESS_INTERVAL) -> None:
        self._interval = interval
        self._last = 0.0

    def ready(self) -> bool:
        now = time.monotonic()
        if now - self._last >= self._interval:
            self._last = now
            return True
        return False


class TransferEngine:
    """Sends and receives files for one session over its channel."""

    def __init__(
        self,
        channel: PeerChannel,
        observer: TransferObserver | None = None,
        chunk_size: int = CHUNK_SIZE,
        high_water_mark: int = HIGH_WATER_MARK,
        progress_interval: float = PROGRESS_INTERVAL,
    ) -> None:
        self._channel = channel
        self._observer = observer or TransferObserver()
        self._chunk_size = chunk_size
        self._high_water_mark = high_water_mark
        self._progress_interval = progress_interval
        self._sending = False
        self._closed = False

        self.batch: TransferBatch | None = None
        self.incoming: IncomingTransfer | None = None
        self.send_progress: Progress | None = None
        self.batch_progress: Progress | None = None
        self.receive_progress: Progress | None = None
        self.received_files: list[ReceivedFile] = []
        self.last_received_file: ReceivedFile | None = None

    @property
    def is_sending(self) -> bool:
        return self._sending

    # --- Sending ---

    async def send_files(self, files: Sequence[FileSource]) -> None:
        """
        Send files in order over the channel.

        Raises TransferBusyError if a batch is already in flight and
        TransferAbortedError if the batch stops part way. Files already
        sent stay sent.
        """
        if self._sending:
            raise TransferBusyError("Already sending; new batch rejected")
        if self._closed or not self._channel.is_open:
            raise ChannelClosedError("Channel not open")
        files = list(files)
        if not files:
            return

        self._sending = True
        batch = TransferBatch(
            files=files,
            progress=Progress.start(sum(f.size for f in files)),
        )
        self.batch = batch
        self.batch_progress = batch.progress

        try:
            await self._observer.on_batch_progress(batch.progress.snapshot())
            for index, source in enumerate(files):
                batch.index = index
                await self._send_one(source, index, len(files), batch)
                batch.completed += 1

            batch.progress.finish()
            await self._observer.on_batch_progress(batch.progress.snapshot())
            logger.info(f"Batch of {len(files)} file(s) sent ({batch.progress.total} bytes)")
        except Exception as e:
            logger.error(
                f"Batch send error after {batch.completed}/{len(files)} file(s): {e}"
            )
            if isinstance(e, TransferAbortedError):
                e.sent_files = batch.completed
                raise
            raise TransferAbortedError(str(e), sent_files=batch.completed) from e
        finally:
            self._sending = False
            if self.batch is batch:
                self.batch = None

    def _check_open(self) -> None:
        if self._closed or self._channel.closed:
            raise ChannelClosedError("DataChannel closed during transfer")

    async def _send_one(
        self, source: FileSource, index: int, count: int, batch: TransferBatch
    ) -> None:
        transfer_id = uuid.uuid4().hex
        size = source.size

        self._check_open()
        metadata = MetadataFrame(
            id=transfer_id,
            name=source.name,
            size=size,
            mime=source.mime,
            index=index,
            count=count,
        )
        self._channel.send_text(metadata.model_dump_json())

        progress = Progress.start(size)
        self.send_progress = progress
        await self._observer.on_send_progress(progress.snapshot())

        digest = ContentDigest()
        throttle = ProgressThrottle(self._progress_interval)
        sent = 0

        if size > 0:
            async with source.open() as reader:
                while sent < size:
                    if self._channel.buffered_bytes() > self._high_water_mark:
                        await self._channel.wait_drained(self._high_water_mark)
                    self._check_open()

                    chunk = await reader.read(min(self._chunk_size, size - sent))
                    if not chunk:
                        raise TransferAbortedError(
                            f"'{source.name}' ended after {sent} of {size} bytes"
                        )
                    self._check_open()
                    self._channel.send_bytes(chunk)

                    digest.update(chunk)
                    sent += len(chunk)
                    progress.update(sent)
                    batch.progress.advance(len(chunk))

                    if throttle.ready():
                        await self._observer.on_send_progress(progress.snapshot())
                        await self._observer.on_batch_progress(batch.progress.snapshot())

        self._check_open()
        self._channel.send_text(
            DoneFrame(id=transfer_id, sha256=digest.hexdigest()).model_dump_json()
        )
        progress.finish()
        await self._observer.on_send_progress(progress.snapshot())
        await self._observer.on_batch_progress(batch.progress.snapshot())
        logger.debug(f"Sent '{source.name}' ({size} bytes) as {transfer_id}")

    # --- Receiving ---

    async def receive_frame(self, frame: Frame) -> None:
        """Handle one inbound channel frame."""
        if self._closed:
            return
        if isinstance(frame, str):
            await self._handle_control(frame)
        elif isinstance(frame, (bytes, bytearray, memoryview)):
            await self._handle_chunk(bytes(frame))
        else:
            logger.warning(f"Ignoring frame of unexpected type {type(frame).__name__}")

    async def _handle_control(self, text: str) -> None:
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            logger.warning(f"Dropping unparseable control frame: {e}")
            return
        if not isinstance(payload, dict) or payload.get("type") not in ("metadata", "done"):
            logger.debug(f"Ignoring unknown control frame: {text[:80]!r}")
            return
        try:
            frame = _frame_adapter.validate_python(payload)
        except ValidationError as e:
            logger.warning(f"Dropping invalid '{payload['type']}' frame: {e.error_count()} error(s)")
            return

        if isinstance(frame, MetadataFrame):
            await self._start_incoming(frame)
        else:
            await self._finish_incoming(frame)

    async def _start_incoming(self, metadata: MetadataFrame) -> None:
        if self.incoming is not None:
            logger.warning(
                f"Metadata for '{metadata.name}' arrived while '{self.incoming.name}' "
                f"was still receiving; discarding {self.incoming.received_bytes} partial bytes"
            )

        progress = Progress.start(metadata.size)
        self.incoming = IncomingTransfer(
            id=metadata.id,
            name=metadata.name,
            declared_size=metadata.size,
            mime=metadata.mime,
            progress=progress,
        )
        self.receive_progress = progress
        logger.info(
            f"Receiving file '{metadata.name}' ({metadata.size} bytes, {metadata.mime}), "
            f"{metadata.index + 1} of {metadata.count}"
        )
        await self._observer.on_receive_progress(progress.snapshot())

    async def _handle_chunk(self, chunk: bytes) -> None:
        incoming = self.incoming
        if incoming is None:
            logger.warning(f"Binary chunk ({len(chunk)} bytes) received before metadata; ignoring")
            return

        incoming.chunks.append(chunk)
        incoming.received_bytes += len(chunk)
        incoming.progress.update(incoming.received_bytes)
        await self._observer.on_receive_progress(incoming.progress.snapshot())

    async def _finish_incoming(self, done: DoneFrame) -> None:
        incoming = self.incoming
        if incoming is None:
            logger.warning("Received 'done' without metadata")
            return
        if done.id and done.id != incoming.id:
            logger.warning(
                f"'done' for {done.id} does not match active transfer {incoming.id}; "
                f"finishing '{incoming.name}' anyway"
            )

        data = b"".join(incoming.chunks)
        self.incoming = None
        self._check_size(incoming, len(data))

        verified = verify_digest(data, done.sha256)
        if verified is False:
            logger.error(f"Content digest mismatch for '{incoming.name}'")

        incoming.progress.finish(len(data))
        await self._observer.on_receive_progress(incoming.progress.snapshot())

        artifact = ReceivedFile.from_bytes(
            data,
            file_id=incoming.id,
            name=incoming.name,
            declared_size=incoming.declared_size,
            mime=incoming.mime,
            verified=verified,
        )
        self.received_files.append(artifact)
        self.last_received_file = artifact
        logger.info(f"File receive complete: '{artifact.name}' ({artifact.size} bytes)")
        await self._observer.on_file_received(artifact)

    @staticmethod
    def _check_size(incoming: IncomingTransfer, actual: int) -> None:
        declared = incoming.declared_size
        if actual == declared:
            return
        logger.warning(
            f"Size mismatch for '{incoming.name}': declared {declared}, assembled {actual}"
        )
        if abs(actual - declared) > SIZE_TOLERANCE:
            logger.error(
                f"Size mismatch for '{incoming.name}' exceeds {SIZE_TOLERANCE} bytes; "
                f"keeping the file as received"
            )

    # --- Teardown ---

    def close(self) -> None:
        """Drop all transfer state and release received files."""
        self._closed = True
        self.batch = None
        self.incoming = None
        for artifact in self.received_files:
            artifact.release()
        self.received_files.clear()
        self.last_received_file = None
        self.send_progress = None
        self.batch_progress = None
        self.receive_progress = None

    def find_received(self, file_id: str) -> ReceivedFile | None:
        return next((f for f in self.received_files if f.file_id == file_id), None)
