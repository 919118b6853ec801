"""WriteChannel — chunked, resumable upload through a server-assigned session."""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Callable, Optional, TypeVar, Union

from remote_channel._errors import ChannelClosed, ChannelStateError, InvalidArgument, ServiceError
from remote_channel._options import ChannelOptions
from remote_channel._retry import RetryExecutor
from remote_channel._state import WriteChannelState

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from remote_channel._models import ObjectId
    from remote_channel._options import OptionKey
    from remote_channel._retry import Cancellation, RetrySettings
    from remote_channel._transport import Transport

T = TypeVar("T")

log = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 2 * 1024 * 1024


class WriteStatus(enum.Enum):
    """Lifecycle of a write channel."""

    PENDING = "pending"
    ACTIVE = "active"
    COMMITTED = "committed"
    ABORTED = "aborted"


class WriteChannel:
    """Uploads an object in chunks through a resumable session.

    Bytes are buffered locally and uploaded in ``chunk_size`` pieces, each
    tagged with its exact byte range, so a retried upload is idempotent. The
    session starts on the first non-empty :meth:`write` (or :meth:`start`) and
    the object is committed by :meth:`close`. Any failure of a remote call
    leaves the channel ``ABORTED``; the partial upload stays on the server and
    can be resumed from :meth:`capture`.

    A channel instance must not be shared between threads without external
    locking.

    :param transport: The transport to upload through.
    :param target: The object to create.
    :param options: Object and precondition options for the session.
    :param chunk_size: Bytes uploaded per request.
    :param retry: Retry settings for each remote call.
    :param cancellation: Signal that aborts backoff waits.
    :raises InvalidArgument: If ``chunk_size`` is below the transport minimum.
    """

    def __init__(
        self,
        transport: Transport,
        target: ObjectId,
        options: Union[ChannelOptions, Mapping[OptionKey, object], None] = None,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retry: Optional[RetrySettings] = None,
        cancellation: Optional[Cancellation] = None,
    ) -> None:
        if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size < 1:
            raise InvalidArgument(f"chunk_size must be a positive integer, got {chunk_size!r}")
        if chunk_size < transport.min_chunk_size:
            raise InvalidArgument(
                f"chunk_size {chunk_size} is below the minimum of {transport.min_chunk_size} "
                f"for transport {transport.name!r}",
                transport=transport.name,
            )
        self._transport = transport
        self._target = target
        self._options = ChannelOptions.coerce(options)
        self._chunk_size = chunk_size
        self._executor = RetryExecutor(retry, cancellation=cancellation)
        self._status = WriteStatus.PENDING
        self._session_id: Optional[str] = None
        self._cursor = 0
        self._buffer = bytearray()
        self._buffer_offset = 0

    @classmethod
    def from_state(
        cls,
        state: WriteChannelState,
        transport: Transport,
        *,
        retry: Optional[RetrySettings] = None,
        cancellation: Optional[Cancellation] = None,
    ) -> WriteChannel:
        channel = cls(
            transport,
            state.target,
            state.options,
            chunk_size=state.chunk_size,
            retry=retry,
            cancellation=cancellation,
        )
        channel._session_id = state.session_id
        channel._cursor = state.cursor
        channel._buffer_offset = state.cursor
        channel._status = WriteStatus.ACTIVE if state.is_open else WriteStatus.COMMITTED
        log.debug("Restored upload session for %s at offset %d", state.target, state.cursor)
        return channel

    def __repr__(self) -> str:
        return (
            f"WriteChannel(target={str(self._target)!r}, status={self._status.value!r}, "
            f"cursor={self._cursor}, buffered={len(self._buffer)}, transport={self._transport.name!r})"
        )

    def __enter__(self) -> WriteChannel:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    @property
    def target(self) -> ObjectId:
        return self._target

    @property
    def options(self) -> ChannelOptions:
        return self._options

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def status(self) -> WriteStatus:
        return self._status

    @property
    def is_open(self) -> bool:
        return self._status in (WriteStatus.PENDING, WriteStatus.ACTIVE)

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def cursor(self) -> int:
        """Bytes the remote side has acknowledged."""
        return self._cursor

    @property
    def buffered(self) -> int:
        """Bytes held locally that were not uploaded yet."""
        return len(self._buffer)

    def _ensure_writable(self) -> None:
        if self._status is WriteStatus.COMMITTED:
            raise ChannelClosed("Write channel is closed", resource=str(self._target))
        if self._status is WriteStatus.ABORTED:
            raise ChannelStateError(
                "Write channel was aborted; capture its state to resume the upload",
                resource=str(self._target),
            )

    def _guarded(self, call: Callable[[], T]) -> T:
        """Run a remote call; any failure leaves the channel aborted."""
        try:
            return call()
        except BaseException:
            self._status = WriteStatus.ABORTED
            log.warning(
                "Upload of %s aborted at offset %d; session %s is left on the server",
                self._target,
                self._cursor,
                self._session_id,
            )
            raise

    def start(self) -> str:
        """Open the upload session if not yet open and return its identifier."""
        self._ensure_writable()
        if self._session_id is None:

            def _open() -> str:
                return self._transport.start_resumable_upload(self._target, self._options)

            self._session_id = self._guarded(
                lambda: self._executor.execute(_open, description=f"start upload of {self._target}")
            )
            self._status = WriteStatus.ACTIVE
            log.debug("Started upload session %s for %s", self._session_id, self._target)
        return self._session_id

    def _discard_acknowledged(self) -> None:
        """Drop buffered bytes the remote side already holds."""
        behind = self._cursor - self._buffer_offset
        if behind > 0:
            drop = min(behind, len(self._buffer))
            del self._buffer[:drop]
            self._buffer_offset += drop

    def _upload(self, size: int, *, final: bool) -> int:
        session_id = self.start()
        start = self._buffer_offset
        chunk = bytes(self._buffer[:size])
        end = start + len(chunk)

        def _send() -> int:
            acked = self._transport.write_chunk(session_id, start, end, chunk, final=final)
            if acked < start:
                raise ChannelStateError(
                    f"Session holds {acked} byte(s), fewer than the {start} already acknowledged",
                    resource=session_id,
                    transport=self._transport.name,
                )
            if final and acked > end:
                raise ChannelStateError(
                    f"Session holds {acked} byte(s), more than the final size {end}",
                    resource=session_id,
                    transport=self._transport.name,
                )
            if acked == start and chunk:
                raise ServiceError(
                    f"Upload of bytes {start}-{end} made no progress",
                    reason="noProgress",
                    retryable=True,
                    resource=session_id,
                    transport=self._transport.name,
                )
            return acked

        acked = self._guarded(
            lambda: self._executor.execute(_send, description=f"upload {self._target} bytes {start}-{end}")
        )
        if acked > end:
            log.info("Session %s already holds %d byte(s); skipping ahead from %d", session_id, acked, end)
        log.debug("Uploaded %s bytes %d-%d (final=%s), %d acknowledged", self._target, start, end, final, acked)
        self._cursor = acked
        self._discard_acknowledged()
        return acked

    def write(self, data: Union[bytes, bytearray, memoryview]) -> int:
        """Buffer ``data``, uploading every complete chunk.

        :returns: ``len(data)``; all bytes are accepted.
        :raises ChannelClosed: If the upload was committed.
        :raises ChannelStateError: If the channel was aborted.
        """
        self._ensure_writable()
        view = memoryview(data).cast("B")
        if not len(view):
            return 0
        self.start()
        self._buffer += view
        self._discard_acknowledged()
        while len(self._buffer) >= self._chunk_size:
            self._upload(self._chunk_size, final=False)
        return len(view)

    def capture(self) -> WriteChannelState:
        """Snapshot the session so the upload can resume elsewhere.

        :raises ChannelStateError: If the session has not started yet.
        """
        if self._session_id is None:
            raise ChannelStateError(
                "Upload session has not started; there is nothing to resume",
                resource=str(self._target),
            )
        return WriteChannelState(
            target=self._target,
            session_id=self._session_id,
            cursor=self._cursor,
            is_open=self._status is not WriteStatus.COMMITTED,
            chunk_size=self._chunk_size,
            options=self._options,
        )

    def abort(self) -> None:
        """Stop using the channel without committing. The remote session is kept."""
        if not self.is_open:
            return
        self._status = WriteStatus.ABORTED
        self._buffer.clear()
        log.warning("Upload of %s abandoned at offset %d", self._target, self._cursor)

    def close(self) -> None:
        """Upload the buffered remainder as the final chunk and commit the object.

        Idempotent once committed or aborted.

        :raises RetryExhausted: If the final chunk could not be uploaded; the
            channel is left ``ABORTED``.
        """
        if not self.is_open:
            return
        self.start()
        while True:
            self._discard_acknowledged()
            total = self._buffer_offset + len(self._buffer)
            if total < self._cursor:
                self._status = WriteStatus.ABORTED
                raise ChannelStateError(
                    f"Session holds {self._cursor} byte(s) but only {total} were written",
                    resource=self._session_id,
                    transport=self._transport.name,
                )
            if self._upload(len(self._buffer), final=True) >= total:
                break
        self._status = WriteStatus.COMMITTED
        self._buffer.clear()
        log.info("Committed %s (%d bytes)", self._target, self._cursor)
