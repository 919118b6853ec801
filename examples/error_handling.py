"""Error handling — retries, exhaustion and the normalized error hierarchy.

Demonstrates:
- Tuning RetrySettings for a Storage
- Telling retryable failures from fatal ones with ``is_retryable``
- Recovering from RetryExhausted by capturing and restoring the channel
- What happens when the upload session is lost
"""

from __future__ import annotations

import logging

from remote_channel import (
    ChannelConfig,
    InvalidArgument,
    NotFound,
    ObjectId,
    RemoteChannelError,
    RetryExhausted,
    RetrySettings,
    ServiceError,
    Storage,
    is_retryable,
)
from remote_channel.transports import MemoryTransport

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")


class OutageTransport(MemoryTransport):
    """Answers every chunk upload with 503 while ``down`` is set."""

    down = False

    def write_chunk(self, session_id: str, start: int, end: int, data: bytes, *, final: bool) -> int:
        if self.down:
            raise ServiceError("Service unavailable", code=503, resource=session_id, transport=self.name)
        return super().write_chunk(session_id, start, end, data, final=final)


if __name__ == "__main__":
    retry = RetrySettings(max_retries=2, max_elapsed=None, initial_delay=0.05, max_delay=0.1)

    # --- NotFound is fatal and raised immediately ---
    storage = Storage(MemoryTransport(), ChannelConfig(retry=retry))
    try:
        storage.read_bytes(ObjectId("bucket", "missing.txt"))
    except NotFound as exc:
        print(f"NotFound: {exc}")
        print(f"  resource={exc.resource}, code={exc.code}, retryable={is_retryable(exc)}")

    # --- Classification of service errors ---
    for error in (ServiceError("busy", code=503), ServiceError("bad request", code=400)):
        print(f"{error.code}: retryable={is_retryable(error)}")

    # --- Invalid arguments never reach the transport ---
    try:
        ObjectId("", "name")
    except InvalidArgument as exc:
        print(f"\nInvalidArgument: {exc}")

    # --- Retry exhaustion leaves the channel resumable ---
    transport = OutageTransport()
    storage = Storage(transport, ChannelConfig(write_chunk_size=4, retry=retry))
    target = ObjectId("bucket", "object.bin")
    writer = storage.writer(target)
    writer.write(b"abcd")
    transport.down = True
    try:
        writer.write(b"efgh")
    except RetryExhausted as exc:
        print(f"\nRetryExhausted after {exc.attempts} attempts: {exc.__cause__}")
        print(f"  channel status: {writer.status.value}, cursor: {writer.cursor}")

    transport.down = False
    resumed = storage.restore(writer.capture())
    resumed.write(b"efgh"[resumed.cursor - 4 :])
    resumed.close()
    print(f"  after restore: {storage.read_bytes(target)!r}")

    # --- A lost upload session cannot be resumed ---
    writer = storage.writer(target)
    writer.write(b"abcd")
    transport.expire_session(writer.session_id or "")
    try:
        writer.write(b"efgh")
    except RemoteChannelError as exc:
        print(f"\n{type(exc).__name__}: {exc}")
        print(f"  channel status: {writer.status.value}")

    print("\nDone!")
