"""Transport abstract base class, the RPC contract the channels drive."""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from remote_channel._models import ObjectId, ObjectInfo
    from remote_channel._options import ChannelOptions


class Transport(abc.ABC):
    """Abstract base class for all transports.

    Transport-native exceptions must never leak: every failure is mapped to a
    :class:`~remote_channel.ServiceError` (or a subclass) so that the retry
    layer can classify it. Implementations need not be thread-safe.
    """

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Unique identifier for this transport type (e.g. ``'memory'``, ``'s3'``)."""

    @property
    def min_chunk_size(self) -> int:
        """Smallest non-final chunk the transport accepts for uploads."""
        return 1

    @abc.abstractmethod
    def read_chunk(self, object_id: ObjectId, offset: int, length: int, options: ChannelOptions) -> bytes:
        """Read up to ``length`` bytes starting at ``offset``.

        Returns fewer bytes near the end of the object and ``b""`` at or past it.

        :raises NotFound: If the object (or the pinned generation) does not exist.
        """

    @abc.abstractmethod
    def start_resumable_upload(self, target: ObjectId, options: ChannelOptions) -> str:
        """Open a resumable upload session and return its opaque identifier.

        :raises ServiceError: If a precondition in ``options`` already fails.
        """

    @abc.abstractmethod
    def write_chunk(self, session_id: str, start: int, end: int, data: bytes, *, final: bool) -> int:
        """Upload bytes ``[start, end)`` to a session.

        ``final`` marks the last chunk: the total size becomes ``end`` and the
        object is committed. Resending a range the session already holds is
        harmless.

        :returns: The number of bytes the session now durably holds.
        :raises NotFound: If the session does not exist (expired or finalized elsewhere).
        """

    @abc.abstractmethod
    def get_object_metadata(self, object_id: ObjectId) -> ObjectInfo:
        """Get metadata for an object.

        :raises NotFound: If the object does not exist.
        """

    def close(self) -> None:  # noqa: B027
        """Release resources. Default is a no-op."""
