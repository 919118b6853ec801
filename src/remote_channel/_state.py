"""Captured channel state: immutable, versioned, explicitly encoded snapshots."""

from __future__ import annotations

import dataclasses
import json
from typing import TYPE_CHECKING, Any, Optional, Union

from remote_channel._errors import InvalidArgument
from remote_channel._models import ObjectId
from remote_channel._options import ChannelOptions

if TYPE_CHECKING:
    from remote_channel._read import ReadChannel
    from remote_channel._retry import Cancellation, RetrySettings
    from remote_channel._transport import Transport
    from remote_channel._write import WriteChannel

STATE_VERSION = 1


def _check_int(value: object, field: str, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise InvalidArgument(f"{field} must be an integer >= {minimum}, got {value!r}")
    return value


def _check_bool(value: object, field: str) -> bool:
    if not isinstance(value, bool):
        raise InvalidArgument(f"{field} must be a boolean, got {value!r}")
    return value


def _check_mapping(value: object, field: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise InvalidArgument(f"{field} must be an object, got {type(value).__name__}")
    return value


def _check_optional_str(value: object, field: str) -> Optional[str]:
    if value is not None and (not isinstance(value, str) or not value):
        raise InvalidArgument(f"{field} must be a non-empty string or null, got {value!r}")
    return value


def _encode(record: dict[str, Any]) -> bytes:
    return json.dumps(record, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _load(data: Union[bytes, str], kind: Optional[str] = None) -> dict[str, Any]:
    try:
        record = json.loads(data)
    except (UnicodeDecodeError, ValueError) as exc:
        raise InvalidArgument(f"Captured state is not a valid record: {exc}") from None
    record = _check_mapping(record, "state")
    if record.get("version") != STATE_VERSION:
        raise InvalidArgument(f"Unsupported captured state version {record.get('version')!r}")
    if record.get("kind") not in ("read", "write"):
        raise InvalidArgument(f"Unknown captured state kind {record.get('kind')!r}")
    if kind is not None and record["kind"] != kind:
        raise InvalidArgument(f"Expected {kind!r} state, got {record['kind']!r}")
    return record


def _require(record: dict[str, Any], field: str) -> Any:
    try:
        return record[field]
    except KeyError:
        raise InvalidArgument(f"Captured state is missing {field!r}") from None


@dataclasses.dataclass(frozen=True)
class ReadChannelState:
    """Snapshot of a read channel, sufficient to continue at ``cursor``.

    :param object_id: The object being read.
    :param cursor: Offset of the next byte the caller has not consumed.
    :param is_open: Whether the channel was open when captured.
    :param chunk_size: Bytes fetched per request.
    :param options: Precondition options the channel was opened with.
    :param fingerprint: Version token of the object being read, on transports
        without generations. ``None`` until the first fetch.
    """

    object_id: ObjectId
    cursor: int
    is_open: bool
    chunk_size: int
    options: ChannelOptions = dataclasses.field(default_factory=ChannelOptions)
    fingerprint: Optional[str] = None

    def __post_init__(self) -> None:
        _check_int(self.cursor, "cursor", 0)
        _check_int(self.chunk_size, "chunk_size", 1)
        _check_optional_str(self.fingerprint, "fingerprint")

    def __str__(self) -> str:
        text = (
            f"ReadChannelState(object={self.object_id}, cursor={self.cursor}, "
            f"open={self.is_open}, chunk_size={self.chunk_size}, options={self.options.to_dict()}"
        )
        if self.fingerprint is not None:
            text += f", fingerprint={self.fingerprint!r}"
        return text + ")"

    def encode(self) -> bytes:
        """Versioned JSON record accepted by :meth:`decode` and :func:`decode_state`."""
        record: dict[str, Any] = {
            "version": STATE_VERSION,
            "kind": "read",
            "object": self.object_id.to_dict(),
            "cursor": self.cursor,
            "open": self.is_open,
            "chunk_size": self.chunk_size,
            "options": self.options.to_dict(),
        }
        if self.fingerprint is not None:
            record["fingerprint"] = self.fingerprint
        return _encode(record)

    @classmethod
    def decode(cls, data: Union[bytes, str]) -> ReadChannelState:
        """:raises InvalidArgument: If ``data`` is not a valid read-state record."""
        return cls._from_record(_load(data, "read"))

    @classmethod
    def _from_record(cls, record: dict[str, Any]) -> ReadChannelState:
        return cls(
            object_id=ObjectId.from_dict(_check_mapping(_require(record, "object"), "object")),
            cursor=_check_int(_require(record, "cursor"), "cursor", 0),
            is_open=_check_bool(_require(record, "open"), "open"),
            chunk_size=_check_int(_require(record, "chunk_size"), "chunk_size", 1),
            options=ChannelOptions.for_read(_check_mapping(record.get("options", {}), "options")),
            fingerprint=_check_optional_str(record.get("fingerprint"), "fingerprint"),
        )

    def restore(
        self,
        transport: Transport,
        *,
        retry: Optional[RetrySettings] = None,
        cancellation: Optional[Cancellation] = None,
    ) -> ReadChannel:
        """Build a live channel positioned at ``cursor``."""
        from remote_channel._read import ReadChannel

        return ReadChannel.from_state(self, transport, retry=retry, cancellation=cancellation)


@dataclasses.dataclass(frozen=True)
class WriteChannelState:
    """Snapshot of a write channel's resumable upload session.

    Bytes buffered but not yet acknowledged are not part of the snapshot: the
    caller resumes by writing the content from ``cursor`` onwards.

    :param target: The object being written.
    :param session_id: Opaque upload-session identifier.
    :param cursor: Bytes the remote side acknowledged.
    :param is_open: ``False`` once the upload was committed.
    :param chunk_size: Bytes uploaded per request.
    :param options: Options the session was created with.
    """

    target: ObjectId
    session_id: str
    cursor: int
    is_open: bool
    chunk_size: int
    options: ChannelOptions = dataclasses.field(default_factory=ChannelOptions)

    def __post_init__(self) -> None:
        if not isinstance(self.session_id, str) or not self.session_id:
            raise InvalidArgument(f"session_id must be a non-empty string, got {self.session_id!r}")
        _check_int(self.cursor, "cursor", 0)
        _check_int(self.chunk_size, "chunk_size", 1)

    def __str__(self) -> str:
        return (
            f"WriteChannelState(target={self.target}, session={self.session_id!r}, cursor={self.cursor}, "
            f"open={self.is_open}, chunk_size={self.chunk_size}, options={self.options.to_dict()})"
        )

    def encode(self) -> bytes:
        """Versioned JSON record accepted by :meth:`decode` and :func:`decode_state`."""
        return _encode(
            {
                "version": STATE_VERSION,
                "kind": "write",
                "target": self.target.to_dict(),
                "session": self.session_id,
                "cursor": self.cursor,
                "open": self.is_open,
                "chunk_size": self.chunk_size,
                "options": self.options.to_dict(),
            }
        )

    @classmethod
    def decode(cls, data: Union[bytes, str]) -> WriteChannelState:
        """:raises InvalidArgument: If ``data`` is not a valid write-state record."""
        return cls._from_record(_load(data, "write"))

    @classmethod
    def _from_record(cls, record: dict[str, Any]) -> WriteChannelState:
        return cls(
            target=ObjectId.from_dict(_check_mapping(_require(record, "target"), "target")),
            session_id=_require(record, "session"),
            cursor=_check_int(_require(record, "cursor"), "cursor", 0),
            is_open=_check_bool(_require(record, "open"), "open"),
            chunk_size=_check_int(_require(record, "chunk_size"), "chunk_size", 1),
            options=ChannelOptions.from_dict(_check_mapping(record.get("options", {}), "options")),
        )

    def restore(
        self,
        transport: Transport,
        *,
        retry: Optional[RetrySettings] = None,
        cancellation: Optional[Cancellation] = None,
    ) -> WriteChannel:
        """Build a live channel that resumes the session at ``cursor``.

        The session is not probed: if it expired or the target changed, the
        first chunk upload fails with the transport's error.
        """
        from remote_channel._write import WriteChannel

        return WriteChannel.from_state(self, transport, retry=retry, cancellation=cancellation)


ChannelState = Union[ReadChannelState, WriteChannelState]


def decode_state(data: Union[bytes, str]) -> ChannelState:
    """Decode either kind of captured state.

    :raises InvalidArgument: If ``data`` is not a valid state record.
    """
    record = _load(data)
    if record["kind"] == "read":
        return ReadChannelState._from_record(record)
    return WriteChannelState._from_record(record)
