"""Immutable identity and metadata models for remote objects."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Any, Optional

from remote_channel._errors import InvalidArgument

if TYPE_CHECKING:
    from datetime import datetime


@dataclasses.dataclass(frozen=True)
class ObjectId:
    """Identifies a remote object, optionally pinned to one generation.

    :param bucket: Bucket (container) name.
    :param name: Object name within the bucket.
    :param generation: Specific object generation, or ``None`` for the latest.
    :raises InvalidArgument: If a field is empty or the generation is negative.
    """

    bucket: str
    name: str
    generation: Optional[int] = None

    def __post_init__(self) -> None:
        if not isinstance(self.bucket, str) or not self.bucket.strip():
            raise InvalidArgument(f"bucket must be a non-empty string, got {self.bucket!r}")
        if "/" in self.bucket:
            raise InvalidArgument(f"bucket must not contain '/', got {self.bucket!r}")
        if not isinstance(self.name, str) or not self.name:
            raise InvalidArgument(f"name must be a non-empty string, got {self.name!r}")
        if "\0" in self.name:
            raise InvalidArgument("name contains null byte", resource=f"{self.bucket}/{self.name!r}")
        if self.generation is not None and (
            isinstance(self.generation, bool) or not isinstance(self.generation, int) or self.generation < 0
        ):
            raise InvalidArgument(f"generation must be a non-negative integer, got {self.generation!r}")

    def with_generation(self, generation: Optional[int]) -> ObjectId:
        return dataclasses.replace(self, generation=generation)

    def to_dict(self) -> dict[str, Any]:
        return {"bucket": self.bucket, "name": self.name, "generation": self.generation}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ObjectId:
        """Construct from the output of :meth:`to_dict`.

        :raises InvalidArgument: If a key is missing or a value is invalid.
        """
        try:
            return cls(bucket=data["bucket"], name=data["name"], generation=data.get("generation"))
        except KeyError as exc:
            raise InvalidArgument(f"Object id is missing {exc.args[0]!r}") from None

    def __str__(self) -> str:
        base = f"{self.bucket}/{self.name}"
        if self.generation is None:
            return base
        return f"{base}#{self.generation}"


@dataclasses.dataclass(frozen=True, eq=False)
class ObjectInfo:
    """Immutable snapshot of object metadata.

    Two snapshots are equal when they describe the same object generation.

    :param id: The object, pinned to the generation described.
    :param size: Object size in bytes.
    :param generation: Generation number, if the transport tracks one.
    :param metageneration: Metadata generation, if tracked.
    :param content_type: Optional MIME type.
    :param updated: Last modification time.
    :param metadata: User metadata.
    :param etag: Opaque content version, for transports without generations.
    """

    id: ObjectId
    size: int
    generation: Optional[int] = None
    metageneration: Optional[int] = None
    content_type: Optional[str] = None
    updated: Optional[datetime] = None
    metadata: dict[str, str] = dataclasses.field(default_factory=dict)
    etag: Optional[str] = None

    @property
    def fingerprint(self) -> str:
        """Token that changes whenever the object content is replaced.

        The generation when tracked, else the etag, else size plus update time.
        """
        if self.generation is not None:
            return f"generation:{self.generation}"
        if self.etag is not None:
            return f"etag:{self.etag}"
        updated = self.updated.isoformat() if self.updated is not None else ""
        return f"stat:{self.size}:{updated}"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ObjectInfo):
            return (self.id, self.generation, self.size) == (other.id, other.generation, other.size)
        return NotImplemented

    def __hash__(self) -> int:
        return hash((self.id, self.generation, self.size))
