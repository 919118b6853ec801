"""Configuration model — immutable settings shared by the channels a Storage opens."""

from __future__ import annotations

import dataclasses

from remote_channel._errors import InvalidArgument
from remote_channel._read import DEFAULT_CHUNK_SIZE as DEFAULT_READ_CHUNK_SIZE
from remote_channel._retry import RetrySettings
from remote_channel._write import DEFAULT_CHUNK_SIZE as DEFAULT_WRITE_CHUNK_SIZE


@dataclasses.dataclass(frozen=True)
class ChannelConfig:
    """Defaults applied to every channel opened through a :class:`~remote_channel.Storage`.

    :param read_chunk_size: Bytes fetched per read request.
    :param write_chunk_size: Bytes uploaded per write request.
    :param retry: Retry settings for every remote call.
    """

    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE
    write_chunk_size: int = DEFAULT_WRITE_CHUNK_SIZE
    retry: RetrySettings = dataclasses.field(default_factory=RetrySettings)

    def validate(self) -> None:
        """Check chunk sizes.

        :raises InvalidArgument: If a chunk size is not a positive integer.
        """
        for name in ("read_chunk_size", "write_chunk_size"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise InvalidArgument(f"{name} must be a positive integer, got {value!r}")

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> ChannelConfig:
        """Construct from a plain dict (e.g. parsed TOML/JSON).

        :param data: Dict with optional ``read_chunk_size``, ``write_chunk_size``
            and ``retry`` keys.
        :raises InvalidArgument: On unknown keys or invalid values.
        """
        known = {"read_chunk_size", "write_chunk_size", "retry"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise InvalidArgument(f"Unknown config keys: {unknown}. Known keys: {sorted(known)}")

        raw_retry = data.get("retry", {})
        if not isinstance(raw_retry, dict):
            msg = "Expected 'retry' to be a dict"
            raise InvalidArgument(msg)

        config = cls(
            read_chunk_size=data.get("read_chunk_size", DEFAULT_READ_CHUNK_SIZE),  # type: ignore[arg-type]
            write_chunk_size=data.get("write_chunk_size", DEFAULT_WRITE_CHUNK_SIZE),  # type: ignore[arg-type]
            retry=RetrySettings.from_dict(raw_retry),
        )
        config.validate()
        return config
