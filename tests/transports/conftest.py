"""Transport test fixtures -- parameterized for conformance testing."""

from __future__ import annotations

import shutil
import socket
import tempfile
import uuid
from typing import TYPE_CHECKING, Optional

import pytest

from remote_channel.transports import LocalTransport, MemoryTransport

if TYPE_CHECKING:
    from collections.abc import Iterator

    from remote_channel import Transport
    from tests.transports.sftp_server import SFTPTestServer


def _s3_available() -> bool:
    try:
        import boto3  # noqa: F401
        import moto  # noqa: F401
        import s3fs  # noqa: F401

        return True
    except ImportError:
        return False


def _sftp_available() -> bool:
    try:
        import paramiko  # noqa: F401

        return True
    except ImportError:
        return False


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("", 0))
        return s.getsockname()[1]


@pytest.fixture(scope="session")
def moto_server() -> Iterator[Optional[str]]:
    """Start a moto HTTP server for the test session.

    Server mode keeps s3fs/aiobotocore talking real HTTP instead of patched clients.
    """
    if not _s3_available():
        yield None
        return
    from moto.moto_server.threaded_moto_server import ThreadedMotoServer

    port = _free_port()
    server = ThreadedMotoServer(port=port, verbose=False)
    server.start()
    yield f"http://127.0.0.1:{port}"
    server.stop()


@pytest.fixture(scope="session")
def sftp_server() -> Iterator[Optional[SFTPTestServer]]:
    """Start an in-process SFTP server for the test session."""
    if not _sftp_available():
        yield None
        return
    from tests.transports.sftp_server import SFTPTestServer

    root = tempfile.mkdtemp(prefix="sftp_test_")
    server = SFTPTestServer(root).start()
    yield server
    server.stop()
    shutil.rmtree(root, ignore_errors=True)


def make_s3_bucket(endpoint: str, bucket: Optional[str] = None) -> str:
    import boto3

    bucket = bucket or f"conformance-{uuid.uuid4().hex[:8]}"
    client = boto3.client(
        "s3",
        endpoint_url=endpoint,
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name="us-east-1",
    )
    client.create_bucket(Bucket=bucket)
    return bucket


def make_s3_transport(endpoint: str) -> Transport:
    from remote_channel.transports._s3 import S3Transport

    return S3Transport(key="testing", secret="testing", region_name="us-east-1", endpoint_url=endpoint)


def make_sftp_transport(server: SFTPTestServer, base_path: str) -> Transport:
    from remote_channel.transports._sftp import HostKeyPolicy, SFTPTransport

    return SFTPTransport(
        host=server.host,
        port=server.port,
        username="testuser",
        password="testpass",
        base_path=base_path,
        host_key_policy=HostKeyPolicy.AUTO_ADD,
        connect_kwargs={"allow_agent": False, "look_for_keys": False},
    )


_s3_param = pytest.param(
    "s3",
    marks=pytest.mark.skipif(not _s3_available(), reason="moto/s3fs/boto3 not installed"),
)

_sftp_param = pytest.param(
    "sftp",
    marks=pytest.mark.skipif(not _sftp_available(), reason="paramiko not installed"),
)


@pytest.fixture()
def bucket() -> str:
    return f"conformance-{uuid.uuid4().hex[:8]}"


@pytest.fixture(params=["memory", "local", _s3_param, _sftp_param])
def transport(
    request: pytest.FixtureRequest,
    bucket: str,
    moto_server: Optional[str],
    sftp_server: Optional[SFTPTestServer],
) -> Iterator[Transport]:
    """Parameterized transport fixture. Add new transports here.

    Every transport yielded can hold objects in the bucket named by the
    ``bucket`` fixture.
    """
    if request.param == "memory":
        yield MemoryTransport()
    elif request.param == "local":
        with tempfile.TemporaryDirectory() as tmp:
            yield LocalTransport(root=tmp)
    elif request.param == "s3":
        assert moto_server is not None
        make_s3_bucket(moto_server, bucket)
        t = make_s3_transport(moto_server)
        yield t
        t.close()
    elif request.param == "sftp":
        assert sftp_server is not None
        t = make_sftp_transport(sftp_server, f"/test_{uuid.uuid4().hex[:8]}")
        yield t
        t.close()
    else:
        pytest.skip(f"Unknown transport: {request.param}")
