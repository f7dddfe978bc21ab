"""Turn a writer-style producer into a pull-based byte stream.

Exports are written by producers that expect a binary file (JSON text,
zip archives). ``stream_from_producer`` runs such a producer in a worker
thread and hands its output to the consumer chunk by chunk through a
bounded queue, so the producer can never run far ahead of a slow consumer.

If the consumer stops iterating (client disconnect), the producer's next
write fails with ``BrokenPipeError`` and the producer unwinds.
"""

from __future__ import annotations

import io
import logging
import queue
import threading
from typing import Any, BinaryIO, Callable, Iterator, Optional

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
MAX_QUEUED_CHUNKS = 16
_POLL_SECONDS = 0.5

_DONE = object()


class QueueSink(io.RawIOBase):
    """Write-only, non-seekable file that puts written bytes into a queue."""

    def __init__(self, chunks: queue.Queue, cancelled: threading.Event):
        super().__init__()
        self.chunks = chunks
        self.cancelled = cancelled

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        if self.cancelled.is_set():
            raise BrokenPipeError("Result stream was closed by the consumer")
        chunk = bytes(data)
        if not chunk:
            return 0
        _put(self.chunks, chunk, self.cancelled)
        return len(chunk)


def _put(chunks: queue.Queue, item: Any, cancelled: threading.Event) -> None:
    while True:
        try:
            chunks.put(item, timeout=_POLL_SECONDS)
            return
        except queue.Full:
            if cancelled.is_set():
                raise BrokenPipeError("Result stream was closed by the consumer")


def stream_from_producer(
    produce: Callable[[BinaryIO], Any],
    keep_alive_seconds: Optional[float] = None,
    filler: bytes = b" ",
    name: str = "result-stream",
) -> Iterator[bytes]:
    """Yield what ``produce`` writes to its sink.

    Nothing happens until the first chunk is requested.

    Args:
        produce: Called in a worker thread with a writable binary sink
        keep_alive_seconds: If set, yield ``filler`` whenever the producer
            hasn't written anything for this long
        filler: Keep-alive bytes, must be harmless inside the stream's format
        name: Thread name, shows up in logs

    Yields:
        Chunks of the produced byte stream
    """
    chunks: queue.Queue = queue.Queue(maxsize=MAX_QUEUED_CHUNKS)
    cancelled = threading.Event()

    def run() -> None:
        try:
            with io.BufferedWriter(QueueSink(chunks, cancelled), buffer_size=CHUNK_SIZE) as sink:
                result = produce(sink)
            if result is not None:
                logger.info(f"{name} finished: {result}")
        except BrokenPipeError:
            logger.info(f"{name} aborted: consumer closed the stream")
        except Exception:
            logger.exception(f"{name} failed, stream is truncated")
        finally:
            try:
                _put(chunks, _DONE, cancelled)
            except BrokenPipeError:
                pass

    thread = threading.Thread(target=run, name=name, daemon=True)
    thread.start()
    try:
        while True:
            try:
                if keep_alive_seconds:
                    chunk = chunks.get(timeout=keep_alive_seconds)
                else:
                    chunk = chunks.get()
            except queue.Empty:
                yield filler
                continue
            if chunk is _DONE:
                break
            yield chunk
    finally:
        cancelled.set()
        thread.join(timeout=_POLL_SECONDS * 4)
