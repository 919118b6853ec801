"""In-memory transport — stdlib-only reference implementation."""

from __future__ import annotations

import dataclasses
import itertools
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional

from remote_channel._errors import InvalidArgument, NotFound, ServiceError
from remote_channel._models import ObjectId, ObjectInfo
from remote_channel._options import ChannelOptions, Option
from remote_channel._transport import Transport


@dataclasses.dataclass
class _StoredObject:
    data: bytes
    generation: int
    metageneration: int
    options: ChannelOptions
    updated: datetime


@dataclasses.dataclass
class _Session:
    target: ObjectId
    options: ChannelOptions
    data: bytearray = dataclasses.field(default_factory=bytearray)
    committed_size: Optional[int] = None


class MemoryTransport(Transport):
    """Keeps objects and upload sessions in process memory.

    Implements generation numbers and precondition options the way a real
    object store does, which makes it the reference the other transports are
    checked against. Safe to use from several threads.
    """

    def __init__(self) -> None:
        self._objects: dict[tuple[str, str], _StoredObject] = {}
        self._sessions: dict[str, _Session] = {}
        self._generations = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "memory"

    # region: helpers
    def _find(self, object_id: ObjectId) -> Optional[_StoredObject]:
        stored = self._objects.get((object_id.bucket, object_id.name))
        if stored is None:
            return None
        if object_id.generation is not None and object_id.generation != stored.generation:
            return None
        return stored

    def _lookup(self, object_id: ObjectId) -> _StoredObject:
        stored = self._find(object_id)
        if stored is None:
            raise NotFound(f"Object not found: {object_id}", resource=str(object_id), transport=self.name)
        return stored

    def _check_preconditions(self, current: Optional[_StoredObject], options: ChannelOptions, resource: str) -> None:
        generation = current.generation if current is not None else 0
        checks = {
            Option.GENERATION_MATCH: lambda v: generation == v,
            Option.GENERATION_NOT_MATCH: lambda v: generation != v,
            Option.METAGENERATION_MATCH: lambda v: current is not None and current.metageneration == v,
            Option.METAGENERATION_NOT_MATCH: lambda v: current is None or current.metageneration != v,
        }
        for option, check in checks.items():
            if option in options and not check(options[option]):
                raise ServiceError(
                    f"Precondition {option.value}={options[option]} failed",
                    code=412,
                    reason="conditionNotMet",
                    resource=resource,
                    transport=self.name,
                )

    def _info(self, bucket: str, name: str, stored: _StoredObject) -> ObjectInfo:
        return ObjectInfo(
            id=ObjectId(bucket, name, stored.generation),
            size=len(stored.data),
            generation=stored.generation,
            metageneration=stored.metageneration,
            content_type=stored.options.get(Option.CONTENT_TYPE),
            updated=stored.updated,
            metadata=stored.options.get(Option.USER_METADATA, {}),
        )

    def _store(self, target: ObjectId, data: bytes, options: ChannelOptions) -> _StoredObject:
        stored = _StoredObject(
            data=data,
            generation=next(self._generations),
            metageneration=1,
            options=options,
            updated=datetime.now(tz=timezone.utc),
        )
        self._objects[(target.bucket, target.name)] = stored
        return stored

    # endregion

    # region: seeding and fault helpers
    def put_object(self, target: ObjectId, data: bytes, options: Optional[ChannelOptions] = None) -> ObjectInfo:
        """Store a complete object in one step."""
        with self._lock:
            stored = self._store(target, bytes(data), options or ChannelOptions())
            return self._info(target.bucket, target.name, stored)

    def delete_object(self, object_id: ObjectId) -> None:
        with self._lock:
            self._lookup(object_id)
            del self._objects[(object_id.bucket, object_id.name)]

    def expire_session(self, session_id: str) -> None:
        """Forget an upload session, as a server does when a session times out."""
        with self._lock:
            self._sessions.pop(session_id, None)

    def session_size(self, session_id: str) -> int:
        with self._lock:
            return len(self._sessions[session_id].data)

    # endregion

    def read_chunk(self, object_id: ObjectId, offset: int, length: int, options: ChannelOptions) -> bytes:
        if offset < 0 or length < 0:
            raise InvalidArgument(f"Invalid range offset={offset} length={length}", resource=str(object_id))
        with self._lock:
            stored = self._lookup(object_id)
            self._check_preconditions(stored, options, str(object_id))
            return stored.data[offset : offset + length]

    def start_resumable_upload(self, target: ObjectId, options: ChannelOptions) -> str:
        with self._lock:
            self._check_preconditions(self._find(target.with_generation(None)), options, str(target))
            session_id = uuid.uuid4().hex
            self._sessions[session_id] = _Session(target=target.with_generation(None), options=options)
            return session_id

    def write_chunk(self, session_id: str, start: int, end: int, data: bytes, *, final: bool) -> int:
        if start < 0 or end - start != len(data):
            raise InvalidArgument(f"Range {start}-{end} does not match {len(data)} byte(s)", resource=session_id)
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFound(f"Upload session not found: {session_id}", resource=session_id, transport=self.name)
            if session.committed_size is not None:
                if final and end == session.committed_size:
                    return session.committed_size
                raise ServiceError(
                    "Upload session was already finalized",
                    code=410,
                    reason="gone",
                    resource=session_id,
                    transport=self.name,
                )
            held = len(session.data)
            if start > held:
                raise ServiceError(
                    f"Chunk starts at {start} but the session holds only {held} byte(s)",
                    code=400,
                    reason="invalidRange",
                    resource=session_id,
                    transport=self.name,
                )
            session.data += data[held - start :]
            if final and len(session.data) == end:
                target = session.target
                self._check_preconditions(self._find(target), session.options, str(target))
                self._store(target, bytes(session.data), session.options)
                session.committed_size = end
            return len(session.data)

    def get_object_metadata(self, object_id: ObjectId) -> ObjectInfo:
        with self._lock:
            stored = self._lookup(object_id)
            return self._info(object_id.bucket, object_id.name, stored)
