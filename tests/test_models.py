"""Tests for ObjectId and ObjectInfo."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from remote_channel._errors import InvalidArgument
from remote_channel._models import ObjectId, ObjectInfo


class TestObjectId:
    def test_str(self) -> None:
        assert str(ObjectId("b", "a/c.txt")) == "b/a/c.txt"
        assert str(ObjectId("b", "a/c.txt", 12)) == "b/a/c.txt#12"

    @pytest.mark.parametrize(
        ("bucket", "name", "generation"),
        [
            ("", "n", None),
            ("  ", "n", None),
            ("a/b", "n", None),
            ("b", "", None),
            ("b", "bad\0name", None),
            ("b", "n", -1),
            ("b", "n", True),
            ("b", "n", "3"),
        ],
    )
    def test_invalid(self, bucket: str, name: str, generation: object) -> None:
        with pytest.raises(InvalidArgument):
            ObjectId(bucket, name, generation)  # type: ignore[arg-type]

    def test_with_generation(self) -> None:
        oid = ObjectId("b", "n")
        pinned = oid.with_generation(5)
        assert pinned.generation == 5
        assert oid.generation is None
        assert pinned.with_generation(None) == oid

    def test_value_semantics(self) -> None:
        assert ObjectId("b", "n", 1) == ObjectId("b", "n", 1)
        assert ObjectId("b", "n", 1) != ObjectId("b", "n", 2)
        assert len({ObjectId("b", "n"), ObjectId("b", "n")}) == 1

    def test_dict_round_trip(self) -> None:
        oid = ObjectId("b", "dir/n", 3)
        assert oid.to_dict() == {"bucket": "b", "name": "dir/n", "generation": 3}
        assert ObjectId.from_dict(oid.to_dict()) == oid

    def test_from_dict_missing_key(self) -> None:
        with pytest.raises(InvalidArgument, match="name"):
            ObjectId.from_dict({"bucket": "b"})


class TestObjectInfo:
    def test_defaults(self) -> None:
        info = ObjectInfo(id=ObjectId("b", "n"), size=3)
        assert info.generation is None
        assert info.content_type is None
        assert info.metadata == {}

    def test_equality_uses_identity_generation_and_size(self) -> None:
        oid = ObjectId("b", "n", 1)
        a = ObjectInfo(id=oid, size=3, generation=1, content_type="a/b")
        b = ObjectInfo(
            id=oid, size=3, generation=1, content_type="c/d", updated=datetime(2024, 1, 1, tzinfo=timezone.utc)
        )
        assert a == b
        assert hash(a) == hash(b)
        assert a != ObjectInfo(id=oid, size=4, generation=1)

    def test_fingerprint_prefers_generation(self) -> None:
        info = ObjectInfo(id=ObjectId("b", "n", 7), size=3, generation=7, etag='"x"')
        assert info.fingerprint == "generation:7"

    def test_fingerprint_falls_back_to_etag(self) -> None:
        assert ObjectInfo(id=ObjectId("b", "n"), size=3, etag='"x"').fingerprint == 'etag:"x"'

    def test_fingerprint_from_size_and_update_time(self) -> None:
        updated = datetime(2024, 1, 1, tzinfo=timezone.utc)
        info = ObjectInfo(id=ObjectId("b", "n"), size=3, updated=updated)
        assert info.fingerprint == "stat:3:2024-01-01T00:00:00+00:00"
        assert ObjectInfo(id=ObjectId("b", "n"), size=4, updated=updated).fingerprint != info.fingerprint
