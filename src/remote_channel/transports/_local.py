"""Local filesystem transport — stdlib-only, sessions survive process restarts."""

from __future__ import annotations

import errno
import json
import os
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from remote_channel._errors import (
    InvalidArgument,
    NotFound,
    PermissionDenied,
    RemoteChannelError,
    ServiceError,
)
from remote_channel._models import ObjectId, ObjectInfo
from remote_channel._options import ChannelOptions, Option
from remote_channel._transport import Transport

if TYPE_CHECKING:
    from collections.abc import Iterator

_UPLOADS = ".uploads"


class LocalTransport(Transport):
    """Stores buckets as directories below ``root``.

    An upload session is a part file plus a JSON manifest in
    ``<root>/.uploads/``; committing renames the part file onto the target.
    Object generations are the file's modification time in nanoseconds.

    :param root: Path to the root directory on the local filesystem.
    """

    def __init__(self, root: str) -> None:
        self._root = Path(root).resolve()
        self._uploads = self._root / _UPLOADS
        self._uploads.mkdir(parents=True, exist_ok=True)

    @property
    def name(self) -> str:
        return "local"

    # region: path safety
    def _resolve(self, object_id: ObjectId) -> Path:
        """Resolve an object to a file path within its bucket directory.

        :raises InvalidArgument: If the path escapes the bucket or uses the uploads area.
        """
        if object_id.bucket.startswith("."):
            raise InvalidArgument(f"Bucket names may not start with '.': {object_id.bucket!r}", transport=self.name)
        bucket_dir = (self._root / object_id.bucket).resolve()
        resolved = (bucket_dir / object_id.name).resolve()
        try:
            resolved.relative_to(bucket_dir)
        except ValueError:
            raise InvalidArgument(
                f"Object name escapes its bucket: {object_id.name}", resource=str(object_id), transport=self.name
            ) from None
        return resolved

    def _session_paths(self, session_id: str) -> tuple[Path, Path]:
        if not session_id.isalnum():
            raise NotFound(f"Upload session not found: {session_id}", resource=session_id, transport=self.name)
        return self._uploads / f"{session_id}.part", self._uploads / f"{session_id}.json"

    # endregion

    # region: error mapping
    @contextmanager
    def _errors(self, resource: str = "") -> Iterator[None]:
        """Map OS errors to remote_channel errors."""
        try:
            yield
        except RemoteChannelError:
            raise
        except FileNotFoundError:
            raise NotFound(f"Not found: {resource}", resource=resource, transport=self.name) from None
        except PermissionError:
            raise PermissionDenied(f"Permission denied: {resource}", resource=resource, transport=self.name) from None
        except OSError as exc:
            reason = errno.errorcode.get(exc.errno or 0, "osError")
            raise ServiceError(str(exc), reason=reason, resource=resource, transport=self.name) from None

    # endregion

    # region: helpers
    def _generation(self, path: Path) -> Optional[int]:
        try:
            return path.stat().st_mtime_ns
        except FileNotFoundError:
            return None

    def _check_preconditions(self, path: Path, options: ChannelOptions, resource: str) -> None:
        current = self._generation(path)
        generation = current or 0
        checks = {
            Option.GENERATION_MATCH: lambda v: generation == v,
            Option.GENERATION_NOT_MATCH: lambda v: generation != v,
            Option.METAGENERATION_MATCH: lambda v: current is not None and v == 1,
            Option.METAGENERATION_NOT_MATCH: lambda v: current is None or v != 1,
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

    def _load_manifest(self, manifest: Path) -> dict[str, Any]:
        try:
            record = json.loads(manifest.read_text(encoding="utf-8"))
        except ValueError:
            record = None
        if not isinstance(record, dict):
            raise ServiceError(
                f"Upload session manifest is corrupt: {manifest.name}",
                reason="invalidManifest",
                resource=manifest.stem,
                transport=self.name,
            )
        return record

    def _save_manifest(self, manifest: Path, record: dict[str, Any]) -> None:
        tmp = manifest.with_suffix(".tmp")
        tmp.write_text(json.dumps(record, sort_keys=True), encoding="utf-8")
        os.replace(tmp, manifest)

    # endregion

    def read_chunk(self, object_id: ObjectId, offset: int, length: int, options: ChannelOptions) -> bytes:
        path = self._resolve(object_id)
        with self._errors(str(object_id)):
            if not path.is_file():
                raise NotFound(f"Object not found: {object_id}", resource=str(object_id), transport=self.name)
            if object_id.generation is not None and object_id.generation != self._generation(path):
                raise NotFound(f"Generation not found: {object_id}", resource=str(object_id), transport=self.name)
            self._check_preconditions(path, options, str(object_id))
            with path.open("rb") as f:
                f.seek(offset)
                return f.read(length)

    def start_resumable_upload(self, target: ObjectId, options: ChannelOptions) -> str:
        target = target.with_generation(None)
        path = self._resolve(target)
        with self._errors(str(target)):
            self._check_preconditions(path, options, str(target))
            session_id = uuid.uuid4().hex
            part, manifest = self._session_paths(session_id)
            part.touch()
            self._save_manifest(manifest, {"target": target.to_dict(), "options": options.to_dict()})
            return session_id

    def write_chunk(self, session_id: str, start: int, end: int, data: bytes, *, final: bool) -> int:
        if start < 0 or end - start != len(data):
            raise InvalidArgument(f"Range {start}-{end} does not match {len(data)} byte(s)", resource=session_id)
        part, manifest = self._session_paths(session_id)
        with self._errors(session_id):
            if not manifest.is_file():
                raise NotFound(f"Upload session not found: {session_id}", resource=session_id, transport=self.name)
            record = self._load_manifest(manifest)
            committed = record.get("committed_size")
            if committed is not None:
                if final and end == committed:
                    return int(committed)
                raise ServiceError(
                    "Upload session was already finalized",
                    code=410,
                    reason="gone",
                    resource=session_id,
                    transport=self.name,
                )
            held = part.stat().st_size
            if start > held:
                raise ServiceError(
                    f"Chunk starts at {start} but the session holds only {held} byte(s)",
                    code=400,
                    reason="invalidRange",
                    resource=session_id,
                    transport=self.name,
                )
            if end > held:
                with part.open("ab") as f:
                    f.write(data[held - start :])
                    f.flush()
                    os.fsync(f.fileno())
                held = end
            if final and held == end:
                target = ObjectId.from_dict(record["target"])
                path = self._resolve(target)
                self._check_preconditions(path, ChannelOptions.from_dict(record["options"]), str(target))
                path.parent.mkdir(parents=True, exist_ok=True)
                os.replace(part, path)
                record["committed_size"] = end
                self._save_manifest(manifest, record)
            return held

    def get_object_metadata(self, object_id: ObjectId) -> ObjectInfo:
        path = self._resolve(object_id)
        with self._errors(str(object_id)):
            if not path.is_file():
                raise NotFound(f"Object not found: {object_id}", resource=str(object_id), transport=self.name)
            st = path.stat()
            if object_id.generation is not None and object_id.generation != st.st_mtime_ns:
                raise NotFound(f"Generation not found: {object_id}", resource=str(object_id), transport=self.name)
            return ObjectInfo(
                id=object_id.with_generation(st.st_mtime_ns),
                size=st.st_size,
                generation=st.st_mtime_ns,
                metageneration=1,
                updated=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            )
