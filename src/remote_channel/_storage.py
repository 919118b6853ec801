"""Storage, the entry point that opens and restores channels over one transport."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Union, overload

from remote_channel._config import ChannelConfig
from remote_channel._errors import InvalidArgument
from remote_channel._read import ReadChannel
from remote_channel._retry import RetryExecutor
from remote_channel._state import ReadChannelState, WriteChannelState, decode_state
from remote_channel._write import WriteChannel

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from remote_channel._models import ObjectId, ObjectInfo
    from remote_channel._options import ChannelOptions, OptionKey
    from remote_channel._retry import Cancellation
    from remote_channel._transport import Transport

OptionsArg = Union["ChannelOptions", "Mapping[OptionKey, object]", None]


class Storage:
    """Opens read and write channels over one injected transport.

    :param transport: The transport every channel talks through.
    :param config: Chunk sizes and retry settings (defaults to ``ChannelConfig()``).
    :param cancellation: Signal shared by every channel this storage opens.
    :raises InvalidArgument: If ``config`` is invalid.
    """

    def __init__(
        self,
        transport: Transport,
        config: Optional[ChannelConfig] = None,
        *,
        cancellation: Optional[Cancellation] = None,
    ) -> None:
        self._transport = transport
        self._config = config or ChannelConfig()
        self._config.validate()
        self._cancellation = cancellation

    def __repr__(self) -> str:
        return f"Storage(transport={self._transport.name!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Storage):
            return self._transport is other._transport and self._config == other._config
        return NotImplemented

    def __hash__(self) -> int:
        return hash((id(self._transport), self._config))

    def close(self) -> None:
        """Close the underlying transport, releasing any held resources."""
        self._transport.close()

    def __enter__(self) -> Storage:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def config(self) -> ChannelConfig:
        return self._config

    def reader(self, object_id: ObjectId, options: OptionsArg = None, *, chunk_size: Optional[int] = None) -> ReadChannel:
        """Open a read channel positioned at the start of the object."""
        return ReadChannel(
            self._transport,
            object_id,
            options,
            chunk_size=self._config.read_chunk_size if chunk_size is None else chunk_size,
            retry=self._config.retry,
            cancellation=self._cancellation,
        )

    def writer(self, target: ObjectId, options: OptionsArg = None, *, chunk_size: Optional[int] = None) -> WriteChannel:
        """Open a write channel. The upload session starts on the first write."""
        return WriteChannel(
            self._transport,
            target,
            options,
            chunk_size=self._config.write_chunk_size if chunk_size is None else chunk_size,
            retry=self._config.retry,
            cancellation=self._cancellation,
        )

    @overload
    def restore(self, state: ReadChannelState) -> ReadChannel: ...

    @overload
    def restore(self, state: WriteChannelState) -> WriteChannel: ...

    @overload
    def restore(self, state: Union[bytes, str]) -> Union[ReadChannel, WriteChannel]: ...

    def restore(
        self, state: Union[ReadChannelState, WriteChannelState, bytes, str]
    ) -> Union[ReadChannel, WriteChannel]:
        """Rebuild a channel from a captured state or its encoded form.

        :raises InvalidArgument: If ``state`` cannot be decoded.
        """
        if isinstance(state, (bytes, str)):
            state = decode_state(state)
        if not isinstance(state, (ReadChannelState, WriteChannelState)):
            raise InvalidArgument(f"Cannot restore a channel from {type(state).__name__}")
        return state.restore(self._transport, retry=self._config.retry, cancellation=self._cancellation)

    def stat(self, object_id: ObjectId) -> ObjectInfo:
        """Get object metadata, retrying transient failures.

        :raises NotFound: If the object does not exist.
        """
        executor = RetryExecutor(self._config.retry, cancellation=self._cancellation)
        return executor.execute(
            lambda: self._transport.get_object_metadata(object_id), description=f"stat {object_id}"
        )

    def read_bytes(self, object_id: ObjectId, options: OptionsArg = None) -> bytes:
        """Read the full content of an object."""
        with self.reader(object_id, options) as channel:
            return channel.read()

    def write_bytes(self, target: ObjectId, data: bytes, options: OptionsArg = None) -> ObjectInfo:
        """Upload ``data`` as a complete object and return its metadata."""
        with self.writer(target, options) as channel:
            channel.write(data)
        return self.stat(target)
