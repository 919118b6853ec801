"""ReadChannel — chunked, seekable, resumable download."""

from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING, Optional, Union

from remote_channel._errors import ChannelClosed, InvalidArgument, ServiceError
from remote_channel._options import ChannelOptions
from remote_channel._retry import RetryExecutor
from remote_channel._state import ReadChannelState

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from remote_channel._models import ObjectId, ObjectInfo
    from remote_channel._options import OptionKey
    from remote_channel._retry import Cancellation, RetrySettings
    from remote_channel._transport import Transport

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 2 * 1024 * 1024


class ReadChannel:
    """Reads a remote object one chunk at a time.

    Each chunk is fetched by byte range under the retry executor, so a retried
    fetch is idempotent. The first fetch pins the channel to the object version
    it reads: later chunks come from that generation, or, on transports without
    generations, are checked against its fingerprint. A replaced object fails
    the read instead of mixing two versions. A channel instance must not be
    shared between threads without external locking.

    :param transport: The transport to fetch chunks through.
    :param object_id: The object to read.
    :param options: Precondition options sent with every fetch.
    :param chunk_size: Bytes fetched per request.
    :param retry: Retry settings for each fetch.
    :param cancellation: Signal that aborts backoff waits.
    """

    def __init__(
        self,
        transport: Transport,
        object_id: ObjectId,
        options: Union[ChannelOptions, Mapping[OptionKey, object], None] = None,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retry: Optional[RetrySettings] = None,
        cancellation: Optional[Cancellation] = None,
    ) -> None:
        self._transport = transport
        self._object_id = object_id
        self._options = ChannelOptions.for_read(options)
        self._executor = RetryExecutor(retry, cancellation=cancellation)
        self._open = True
        self._position = 0
        self._buffer = b""
        self._buffer_pos = 0
        self._eof = False
        self._fingerprint: Optional[str] = None
        self.chunk_size = chunk_size

    @classmethod
    def from_state(
        cls,
        state: ReadChannelState,
        transport: Transport,
        *,
        retry: Optional[RetrySettings] = None,
        cancellation: Optional[Cancellation] = None,
    ) -> ReadChannel:
        channel = cls(
            transport,
            state.object_id,
            state.options,
            chunk_size=state.chunk_size,
            retry=retry,
            cancellation=cancellation,
        )
        channel._position = state.cursor
        channel._fingerprint = state.fingerprint
        channel._open = state.is_open
        return channel

    def __repr__(self) -> str:
        return (
            f"ReadChannel(object={str(self._object_id)!r}, position={self._position}, "
            f"open={self._open}, transport={self._transport.name!r})"
        )

    def __enter__(self) -> ReadChannel:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def object_id(self) -> ObjectId:
        return self._object_id

    @property
    def options(self) -> ChannelOptions:
        return self._options

    @property
    def is_open(self) -> bool:
        return self._open

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @chunk_size.setter
    def chunk_size(self, value: int) -> None:
        self._ensure_open()
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise InvalidArgument(f"chunk_size must be a positive integer, got {value!r}")
        self._chunk_size = value

    def _ensure_open(self) -> None:
        if not self._open:
            raise ChannelClosed("Read channel is closed", resource=str(self._object_id))

    def _stat(self) -> ObjectInfo:
        def _get() -> ObjectInfo:
            return self._transport.get_object_metadata(self._object_id)

        return self._executor.execute(_get, description=f"stat {self._object_id}")

    def _pin(self) -> None:
        """Fix the object version the channel reads, once, before the first fetch."""
        if self._object_id.generation is not None or self._fingerprint is not None:
            return
        info = self._stat()
        if info.generation is not None:
            self._object_id = self._object_id.with_generation(info.generation)
        else:
            self._fingerprint = info.fingerprint
        log.debug("Reading %s pinned to %s", self._object_id, info.fingerprint)

    def _check_unchanged(self) -> None:
        if self._fingerprint is None:
            return
        current = self._stat().fingerprint
        if current != self._fingerprint:
            raise ServiceError(
                f"Object was updated while reading ({self._fingerprint} -> {current})",
                code=412,
                reason="objectChanged",
                resource=str(self._object_id),
                transport=self._transport.name,
            )

    def _fill(self) -> None:
        """Fetch the chunk starting at the current position."""
        self._pin()
        offset = self._position
        length = self._chunk_size

        def _fetch() -> bytes:
            return self._transport.read_chunk(self._object_id, offset, length, self._options)

        data = self._executor.execute(_fetch, description=f"read {self._object_id} at offset {offset}")
        self._check_unchanged()
        log.debug("Fetched %d byte(s) of %s at offset %d", len(data), self._object_id, offset)
        if len(data) < length:
            self._eof = True
        self._buffer = data
        self._buffer_pos = 0

    def readinto(self, buffer: Union[bytearray, memoryview]) -> int:
        """Copy up to ``len(buffer)`` bytes into ``buffer``.

        At most one chunk is fetched per call.

        :returns: The number of bytes copied; ``0`` at end of object.
        :raises ChannelClosed: If the channel is closed.
        """
        self._ensure_open()
        view = memoryview(buffer).cast("B")
        if not len(view):
            return 0
        if self._buffer_pos >= len(self._buffer):
            if self._eof:
                return 0
            self._fill()
            if not self._buffer:
                return 0
        count = min(len(view), len(self._buffer) - self._buffer_pos)
        view[:count] = self._buffer[self._buffer_pos : self._buffer_pos + count]
        self._buffer_pos += count
        self._position += count
        return count

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes, or everything left when ``size`` is negative.

        Returns fewer bytes only at end of object, ``b""`` once exhausted.

        :raises ChannelClosed: If the channel is closed.
        """
        self._ensure_open()
        parts: list[bytes] = []
        remaining = size
        while remaining != 0:
            want = self._chunk_size if remaining < 0 else min(remaining, self._chunk_size)
            chunk = bytearray(want)
            count = self.readinto(chunk)
            if not count:
                break
            parts.append(bytes(chunk[:count]))
            if remaining > 0:
                remaining -= count
        return b"".join(parts)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        """Move the read position. Never touches the network.

        :raises InvalidArgument: For a negative target or unsupported ``whence``.
        :raises ChannelClosed: If the channel is closed.
        """
        self._ensure_open()
        if whence == io.SEEK_SET:
            target = offset
        elif whence == io.SEEK_CUR:
            target = self._position + offset
        else:
            raise InvalidArgument(f"Unsupported whence {whence!r}; only SEEK_SET and SEEK_CUR are supported")
        if target < 0:
            raise InvalidArgument(f"Cannot seek to negative position {target}", resource=str(self._object_id))
        buffer_start = self._position - self._buffer_pos
        if buffer_start <= target <= buffer_start + len(self._buffer):
            self._buffer_pos = target - buffer_start
        else:
            self._buffer = b""
            self._buffer_pos = 0
            self._eof = False
        self._position = target
        return target

    def tell(self) -> int:
        return self._position

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return True

    def capture(self) -> ReadChannelState:
        """Snapshot the position of the next unconsumed byte and the pinned object version."""
        return ReadChannelState(
            object_id=self._object_id,
            cursor=self._position,
            is_open=self._open,
            chunk_size=self._chunk_size,
            options=self._options,
            fingerprint=self._fingerprint,
        )

    def close(self) -> None:
        """Release the buffered chunk. Reads keep no remote session."""
        self._open = False
        self._buffer = b""
        self._buffer_pos = 0
