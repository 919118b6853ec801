"""LocalTransport-specific tests."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from remote_channel import ChannelOptions, InvalidArgument, NotFound, ObjectId, Option, ServiceError
from remote_channel.transports import LocalTransport

NO_OPTIONS = ChannelOptions()
TARGET = ObjectId("bucket", "a/b.txt")


@pytest.fixture()
def local(tmp_path: Path) -> LocalTransport:
    return LocalTransport(root=str(tmp_path))


def upload(transport: LocalTransport, target: ObjectId, data: bytes, options: ChannelOptions = NO_OPTIONS) -> int:
    session = transport.start_resumable_upload(target, options)
    return transport.write_chunk(session, 0, len(data), data, final=True)


class TestPathSafety:
    @pytest.mark.parametrize("name", ["../escape.txt", "a/../../escape.txt"])
    def test_escape_rejected(self, local: LocalTransport, name: str) -> None:
        with pytest.raises(InvalidArgument):
            local.read_chunk(ObjectId("bucket", name), 0, 1, NO_OPTIONS)

    def test_uploads_area_is_not_a_bucket(self, local: LocalTransport) -> None:
        with pytest.raises(InvalidArgument):
            local.start_resumable_upload(ObjectId(".uploads", "x"), NO_OPTIONS)

    def test_layout(self, local: LocalTransport, tmp_path: Path) -> None:
        upload(local, TARGET, b"abc")
        path = os.path.join(str(tmp_path), "bucket", "a", "b.txt")
        with open(path, "rb") as f:
            assert f.read() == b"abc"


class TestSessions:
    def test_session_survives_new_instance(self, tmp_path: Path) -> None:
        first = LocalTransport(root=str(tmp_path))
        session = first.start_resumable_upload(TARGET, NO_OPTIONS)
        assert first.write_chunk(session, 0, 3, b"abc", final=False) == 3

        second = LocalTransport(root=str(tmp_path))
        assert second.write_chunk(session, 0, 3, b"abc", final=False) == 3
        assert second.write_chunk(session, 3, 5, b"de", final=True) == 5
        assert second.read_chunk(TARGET, 0, 10, NO_OPTIONS) == b"abcde"

    def test_malformed_session_id(self, local: LocalTransport) -> None:
        with pytest.raises(NotFound):
            local.write_chunk("../etc/passwd", 0, 1, b"x", final=True)

    def test_write_after_commit_is_gone(self, local: LocalTransport) -> None:
        session = local.start_resumable_upload(TARGET, NO_OPTIONS)
        local.write_chunk(session, 0, 2, b"ab", final=True)
        with pytest.raises(ServiceError) as info:
            local.write_chunk(session, 2, 3, b"c", final=False)
        assert info.value.code == 410


class TestGenerations:
    def test_generation_is_mtime(self, local: LocalTransport, tmp_path: Path) -> None:
        upload(local, TARGET, b"abc")
        info = local.get_object_metadata(TARGET)
        path = os.path.join(str(tmp_path), "bucket", "a", "b.txt")
        assert info.generation == os.stat(path).st_mtime_ns
        assert info.id.generation == info.generation

    def test_pinned_generation_mismatch(self, local: LocalTransport) -> None:
        upload(local, TARGET, b"abc")
        info = local.get_object_metadata(TARGET)
        stale = TARGET.with_generation(info.generation + 1)  # type: ignore[operator]
        with pytest.raises(NotFound):
            local.read_chunk(stale, 0, 3, NO_OPTIONS)
        with pytest.raises(NotFound):
            local.get_object_metadata(stale)
        assert local.read_chunk(info.id, 0, 3, NO_OPTIONS) == b"abc"


class TestPreconditions:
    def test_absent_only(self, local: LocalTransport) -> None:
        options = ChannelOptions({Option.GENERATION_MATCH: 0})
        assert upload(local, TARGET, b"abc", options) == 3
        with pytest.raises(ServiceError) as info:
            upload(local, TARGET, b"again", options)
        assert info.value.code == 412
        assert local.read_chunk(TARGET, 0, 10, NO_OPTIONS) == b"abc"

    def test_checked_again_at_commit(self, local: LocalTransport) -> None:
        options = ChannelOptions({Option.GENERATION_MATCH: 0})
        session = local.start_resumable_upload(TARGET, options)
        upload(local, TARGET, b"raced")
        with pytest.raises(ServiceError) as info:
            local.write_chunk(session, 0, 3, b"abc", final=True)
        assert info.value.code == 412

    def test_read_precondition(self, local: LocalTransport) -> None:
        upload(local, TARGET, b"abc")
        generation = local.get_object_metadata(TARGET).generation
        assert local.read_chunk(TARGET, 0, 3, ChannelOptions({Option.GENERATION_MATCH: generation})) == b"abc"
        with pytest.raises(ServiceError) as info:
            local.read_chunk(TARGET, 0, 3, ChannelOptions({Option.GENERATION_NOT_MATCH: generation}))
        assert info.value.code == 412


class TestCorruptManifest:
    @pytest.mark.parametrize("content", ["{not json", "[]", ""])
    def test_rejected(self, local: LocalTransport, tmp_path: Path, content: str) -> None:
        session = local.start_resumable_upload(TARGET, NO_OPTIONS)
        (tmp_path / ".uploads" / f"{session}.json").write_text(content, encoding="utf-8")
        with pytest.raises(ServiceError) as info:
            local.write_chunk(session, 0, 1, b"x", final=True)
        assert info.value.reason == "invalidManifest"
        assert not info.value.retryable
