"""Tests for captured channel state and its encoded form."""

from __future__ import annotations

import json

import pytest

from remote_channel import ReadChannel, WriteChannel, WriteStatus
from remote_channel._errors import InvalidArgument
from remote_channel._models import ObjectId
from remote_channel._options import ChannelOptions, Option
from remote_channel._state import STATE_VERSION, ReadChannelState, WriteChannelState, decode_state
from remote_channel.transports import MemoryTransport


@pytest.fixture()
def read_state() -> ReadChannelState:
    return ReadChannelState(
        object_id=ObjectId("b", "n", 4),
        cursor=10,
        is_open=True,
        chunk_size=1024,
        options=ChannelOptions({Option.GENERATION_MATCH: 4}),
    )


@pytest.fixture()
def write_state() -> WriteChannelState:
    return WriteChannelState(
        target=ObjectId("b", "out.bin"),
        session_id="abc123",
        cursor=2048,
        is_open=True,
        chunk_size=1024,
        options=ChannelOptions({Option.CONTENT_TYPE: "application/octet-stream", Option.USER_METADATA: {"k": "v"}}),
    )


class TestEncoding:
    def test_read_round_trip(self, read_state: ReadChannelState) -> None:
        assert ReadChannelState.decode(read_state.encode()) == read_state
        assert decode_state(read_state.encode()) == read_state

    def test_write_round_trip(self, write_state: WriteChannelState) -> None:
        assert WriteChannelState.decode(write_state.encode()) == write_state
        assert decode_state(write_state.encode().decode("utf-8")) == write_state

    def test_record_is_versioned_json(self, write_state: WriteChannelState) -> None:
        record = json.loads(write_state.encode())
        assert record["version"] == STATE_VERSION
        assert record["kind"] == "write"
        assert record["session"] == "abc123"
        assert record["cursor"] == 2048
        assert record["target"] == {"bucket": "b", "name": "out.bin", "generation": None}

    def test_encoding_is_stable(self, read_state: ReadChannelState) -> None:
        copy = ReadChannelState.decode(read_state.encode())
        assert copy.encode() == read_state.encode()

    def test_fingerprint_round_trip(self) -> None:
        state = ReadChannelState(
            object_id=ObjectId("b", "n"), cursor=3, is_open=True, chunk_size=8, fingerprint='etag:"abc"'
        )
        assert json.loads(state.encode())["fingerprint"] == 'etag:"abc"'
        assert ReadChannelState.decode(state.encode()) == state
        assert "fingerprint=" in str(state)

    def test_fingerprint_omitted_when_unset(self, read_state: ReadChannelState) -> None:
        assert "fingerprint" not in json.loads(read_state.encode())


class TestValueSemantics:
    def test_equality_and_hash(self, read_state: ReadChannelState) -> None:
        same = ReadChannelState(
            object_id=ObjectId("b", "n", 4),
            cursor=10,
            is_open=True,
            chunk_size=1024,
            options=ChannelOptions({"ifGenerationMatch": 4}),
        )
        assert same == read_state
        assert hash(same) == hash(read_state)
        assert len({same, read_state}) == 1

    def test_different_cursor_is_not_equal(self, write_state: WriteChannelState) -> None:
        other = WriteChannelState.decode(write_state.encode().replace(b'"cursor":2048', b'"cursor":0'))
        assert other.cursor == 0
        assert other != write_state

    def test_str(self, read_state: ReadChannelState, write_state: WriteChannelState) -> None:
        assert str(read_state) == (
            "ReadChannelState(object=b/n#4, cursor=10, open=True, chunk_size=1024, "
            "options={'ifGenerationMatch': 4})"
        )
        text = str(write_state)
        assert "session='abc123'" in text
        assert "cursor=2048" in text

    def test_invalid_fields(self) -> None:
        with pytest.raises(InvalidArgument):
            ReadChannelState(object_id=ObjectId("b", "n"), cursor=-1, is_open=True, chunk_size=1)
        with pytest.raises(InvalidArgument):
            WriteChannelState(target=ObjectId("b", "n"), session_id="", cursor=0, is_open=True, chunk_size=1)
        with pytest.raises(InvalidArgument):
            WriteChannelState(target=ObjectId("b", "n"), session_id="s", cursor=0, is_open=True, chunk_size=0)


def _record(**changes: object) -> bytes:
    record: dict[str, object] = {
        "version": STATE_VERSION,
        "kind": "read",
        "object": {"bucket": "b", "name": "n", "generation": None},
        "cursor": 0,
        "open": True,
        "chunk_size": 16,
        "options": {},
    }
    record.update(changes)
    return json.dumps({k: v for k, v in record.items() if v is not ...}).encode()


class TestMalformedInput:
    def test_minimal_record_decodes(self) -> None:
        state = decode_state(_record())
        assert isinstance(state, ReadChannelState)
        assert state.chunk_size == 16

    @pytest.mark.parametrize(
        "data",
        [
            b"",
            b"not json",
            b"\xff\xfe",
            b"[1, 2]",
            _record(version=2),
            _record(version=...),
            _record(kind="delete"),
            _record(object=...),
            _record(object="b/n"),
            _record(object={"bucket": "b"}),
            _record(cursor=-5),
            _record(cursor="5"),
            _record(cursor=True),
            _record(open="yes"),
            _record(chunk_size=0),
            _record(options=[]),
            _record(options={"contentType": "text/plain"}),
            _record(options={"bogus": 1}),
            _record(fingerprint=7),
            _record(fingerprint=""),
        ],
    )
    def test_rejected(self, data: bytes) -> None:
        with pytest.raises(InvalidArgument):
            decode_state(data)

    def test_kind_mismatch(self, read_state: ReadChannelState, write_state: WriteChannelState) -> None:
        with pytest.raises(InvalidArgument, match="write"):
            WriteChannelState.decode(read_state.encode())
        with pytest.raises(InvalidArgument, match="read"):
            ReadChannelState.decode(write_state.encode())

    def test_write_record_missing_session(self, write_state: WriteChannelState) -> None:
        record = json.loads(write_state.encode())
        del record["session"]
        with pytest.raises(InvalidArgument, match="session"):
            decode_state(json.dumps(record))


class TestRestore:
    def test_read_state_restores_channel(self, read_state: ReadChannelState) -> None:
        channel = read_state.restore(MemoryTransport())
        assert isinstance(channel, ReadChannel)
        assert channel.tell() == 10
        assert channel.capture() == read_state

    def test_write_state_restores_channel(self, write_state: WriteChannelState) -> None:
        channel = write_state.restore(MemoryTransport())
        assert isinstance(channel, WriteChannel)
        assert channel.status is WriteStatus.ACTIVE
        assert channel.session_id == "abc123"
        assert channel.cursor == 2048
        assert channel.capture() == write_state
