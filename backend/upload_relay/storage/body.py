"""
Blocking, size-capped reader over an async request body.

boto3 reads its input from a worker thread with plain ``read()`` calls while
the request body arrives as an async stream on the event loop. The reader
bridges the two by scheduling each chunk pull on the loop, and refuses to
hand out more than ``limit`` bytes no matter what Content-Length claimed.
"""
import asyncio
import concurrent.futures
import io
import threading
from typing import AsyncIterator, Optional

from upload_relay.exceptions import BodyTooLargeError


class LimitedBodyReader(io.RawIOBase):
    """
    File-like view of an async byte stream with a hard byte limit.

    Args:
        chunks: Async iterator of body chunks, e.g. ``request.stream()``
        limit: Maximum number of bytes that may be read
        loop: Event loop the stream belongs to

    Must be read from a thread other than the loop's. Closing the reader
    (from any thread) cancels a pending chunk pull, so a reader blocked in
    ``read()`` fails instead of waiting on a request that was abandoned.
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        limit: int,
        loop: asyncio.AbstractEventLoop
    ):
        super().__init__()
        self.limit = limit
        self.bytes_read = 0
        self._chunks = chunks
        self._loop = loop
        self._buffer = bytearray()
        self._eof = False
        self._pending: Optional[concurrent.futures.Future] = None
        self._lock = threading.Lock()

    def readable(self) -> bool:
        return True

    async def _next_chunk(self) -> bytes:
        try:
            return await self._chunks.__anext__()
        except StopAsyncIteration:
            return b""

    def _pull(self) -> bytes:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            raise RuntimeError("LimitedBodyReader cannot be read from its event loop thread")

        with self._lock:
            if self.closed:
                raise ValueError("I/O operation on closed body stream")
            future = asyncio.run_coroutine_threadsafe(self._next_chunk(), self._loop)
            self._pending = future

        try:
            return future.result()
        except concurrent.futures.CancelledError as e:
            raise ValueError("Body stream was closed while reading") from e
        finally:
            with self._lock:
                self._pending = None

    def read(self, size: Optional[int] = -1) -> bytes:
        """
        Read up to ``size`` bytes, or everything if ``size`` is negative.

        Raises:
            BodyTooLargeError: If the stream yields more than ``limit`` bytes
            ValueError: If the reader has been closed
        """
        if self.closed:
            raise ValueError("I/O operation on closed body stream")

        read_all = size is None or size < 0
        while not self._eof and (read_all or len(self._buffer) < size):
            chunk = self._pull()
            if not chunk:
                self._eof = True
                break
            self.bytes_read += len(chunk)
            if self.bytes_read > self.limit:
                raise BodyTooLargeError(self.limit)
            self._buffer += chunk

        if read_all:
            size = len(self._buffer)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def readinto(self, b) -> int:
        data = self.read(len(b))
        b[:len(data)] = data
        return len(data)

    def close(self) -> None:
        with self._lock:
            if self._pending is not None:
                self._pending.cancel()
        super().close()
