"""SFTP transport using pure paramiko."""

from __future__ import annotations

import contextlib
import errno
import json
import logging
import os
import re
import stat
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from io import StringIO
from typing import TYPE_CHECKING, Any, Optional

from remote_channel._errors import (
    InvalidArgument,
    NotFound,
    PermissionDenied,
    RemoteChannelError,
    ServiceError,
)
from remote_channel._models import ObjectId, ObjectInfo
from remote_channel._options import ChannelOptions
from remote_channel._transport import Transport

if TYPE_CHECKING:
    from collections.abc import Iterator

log = logging.getLogger(__name__)

_UPLOADS = ".uploads"


# region: host key policy


class HostKeyPolicy(Enum):
    """Controls how unknown remote host keys are handled.

    :cvar STRICT: Reject unknown hosts (production default).
    :cvar TRUST_ON_FIRST_USE: Save on first connect, verify after.
    :cvar AUTO_ADD: Accept any key (dev/testing ONLY).
    """

    STRICT = "strict"
    TRUST_ON_FIRST_USE = "tofu"
    AUTO_ADD = "auto"


# endregion

# region: PEM handling

_NON_BASE64_PATTERN = re.compile(r"[^A-Za-z\d+/=]")
_PEM_SEPARATOR = "-----"


def _sanitize_pem(pem_content: str) -> str:
    """Put newlines back into a PEM payload whose line breaks were flattened to another character."""
    parts = pem_content.split(_PEM_SEPARATOR)
    if len(parts) != 5:
        raise InvalidArgument("Invalid PEM structure (expected 5 parts).")

    payload = parts[2]
    separators = sorted(set(_NON_BASE64_PATTERN.findall(payload)))
    if len(separators) != 1:
        raise InvalidArgument(f"Unexpected PEM characters: {separators}")

    parts[2] = payload.replace(separators[0], "\n")
    return _PEM_SEPARATOR.join(parts)


def load_private_key(source: str, *, from_file: bool = False) -> Any:  # pragma: no cover
    """Load an RSA private key from a file path or a PEM string.

    :param source: File path (if ``from_file``) or PEM-encoded string.
    :param from_file: Treat ``source`` as a file path.
    :returns: A ``paramiko.RSAKey``.
    """
    import paramiko

    if from_file:
        return paramiko.RSAKey.from_private_key_file(source)
    with StringIO(_sanitize_pem(source)) as buf:
        return paramiko.RSAKey.from_private_key(buf)


# endregion

# region: host key helpers

_HOST_KEYS_ENV = "SFTP_KNOWN_HOST_KEYS"


def _load_host_keys_from_string(ssh: Any, keys_content: str) -> None:  # pragma: no cover
    """Parse a known_hosts-formatted string into an SSHClient's host keys."""
    import tempfile

    with tempfile.NamedTemporaryFile(mode="w", suffix=".known_hosts", delete=True) as tmp:
        tmp.write(keys_content)
        tmp.flush()
        ssh.load_host_keys(tmp.name)


# endregion


class SFTPTransport(Transport):
    """Stores objects as files ``<base_path>/<bucket>/<name>`` on an SFTP server.

    Upload sessions are a part file plus a JSON manifest below
    ``<base_path>/.uploads/``, so a session survives a dropped connection and
    can be resumed from another process. Committing renames the part file onto
    the target. Object generations and precondition options are not supported.

    :param host: SFTP server hostname (required, non-empty).
    :param port: SSH port (default: 22).
    :param username: SSH username.
    :param password: SSH password.
    :param pkey: paramiko.PKey instance for key-based auth.
    :param base_path: Root path on the remote server (default: ``/``).
    :param host_key_policy: Host key verification policy.
    :param known_host_keys: Known hosts string (code-level override).
    :param host_keys_path: Path to known_hosts file (default: ``~/.ssh/known_hosts``).
    :param timeout: SSH connection timeout in seconds.
    :param connect_kwargs: Extra kwargs passed to ``SSHClient.connect()``.
    """

    def __init__(
        self,
        host: str,
        *,
        port: int = 22,
        username: Optional[str] = None,
        password: Optional[str] = None,
        pkey: Any = None,
        base_path: str = "/",
        host_key_policy: HostKeyPolicy = HostKeyPolicy.STRICT,
        known_host_keys: Optional[str] = None,
        host_keys_path: Optional[str] = None,
        timeout: int = 10,
        connect_kwargs: Optional[dict[str, Any]] = None,
    ) -> None:
        if not host or not host.strip():
            raise InvalidArgument("host must be a non-empty string")
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._pkey = pkey
        self._base_path = base_path.rstrip("/") or "/"
        self._host_key_policy = host_key_policy
        self._host_keys_path = host_keys_path
        self._timeout = timeout
        self._connect_kwargs = connect_kwargs or {}
        self._resolved_host_keys = known_host_keys or os.environ.get(_HOST_KEYS_ENV)

        self._ssh_client: Any = None
        self._sftp_client: Any = None

    @property
    def name(self) -> str:
        return "sftp"

    # region: lazy connection

    @property
    def _sftp(self) -> Any:
        """Lazy SFTP client with automatic reconnection on staleness."""
        if not self._is_connected():
            self._connect()
        return self._sftp_client

    def _connect(self) -> None:
        """Establish SSH + SFTP connection with tenacity retry."""
        import paramiko
        from tenacity import (
            before_sleep_log,
            retry,
            retry_if_exception_type,
            stop_after_attempt,
            wait_exponential,
        )

        self._close_clients()

        ssh = self._create_ssh_client()

        @retry(
            retry=retry_if_exception_type((paramiko.SSHException, OSError, EOFError)),
            stop=stop_after_attempt(3),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            before_sleep=before_sleep_log(log, logging.WARNING),  # type: ignore[arg-type,unused-ignore]
            reraise=True,
        )
        def _do_connect() -> None:
            log.info("Connecting to %s:%d as %s", self._host, self._port, self._username)
            ssh.connect(
                hostname=self._host,
                port=self._port,
                username=self._username,
                password=self._password,
                pkey=self._pkey,
                timeout=self._timeout,
                banner_timeout=self._timeout,
                auth_timeout=self._timeout,
                channel_timeout=self._timeout,
                **self._connect_kwargs,
            )

        _do_connect()
        self._ssh_client = ssh
        self._sftp_client = ssh.open_sftp()
        log.info("SFTP connection established.")

    def _create_ssh_client(self) -> Any:
        """Create and configure an SSHClient with host key policy."""
        import paramiko

        ssh = paramiko.SSHClient()

        if self._resolved_host_keys:  # pragma: no cover -- tests use AUTO_ADD
            _load_host_keys_from_string(ssh, self._resolved_host_keys)
        elif self._host_key_policy in (  # pragma: no cover -- tests use AUTO_ADD
            HostKeyPolicy.STRICT,
            HostKeyPolicy.TRUST_ON_FIRST_USE,
        ):
            keys_path = self._host_keys_path or os.path.expanduser("~/.ssh/known_hosts")
            if os.path.isfile(keys_path):
                ssh.load_host_keys(keys_path)

        if self._host_key_policy == HostKeyPolicy.TRUST_ON_FIRST_USE:  # pragma: no cover
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        elif self._host_key_policy == HostKeyPolicy.AUTO_ADD:
            log.warning("AUTO_ADD host key policy -- NOT safe for production.")
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        return ssh

    def _is_connected(self) -> bool:
        if self._sftp_client is None or self._ssh_client is None:
            return False
        try:
            self._sftp_client.stat(".")
            return True
        except Exception:  # pragma: no cover -- requires transport failure
            return False

    def _close_clients(self) -> None:
        if self._sftp_client is not None:
            with contextlib.suppress(Exception):
                self._sftp_client.close()
            self._sftp_client = None
        if self._ssh_client is not None:
            with contextlib.suppress(Exception):
                self._ssh_client.close()
            self._ssh_client = None

    # endregion

    # region: path helpers

    def _sftp_path(self, *parts: str) -> str:
        joined = "/".join(parts)
        if self._base_path == "/":
            return f"/{joined}"
        return f"{self._base_path}/{joined}"

    def _object_path(self, object_id: ObjectId, options: ChannelOptions) -> str:
        if object_id.generation is not None:
            raise InvalidArgument(
                "Object generations are not supported by the SFTP transport",
                resource=str(object_id),
                transport=self.name,
            )
        preconditions = sorted(o.value for o in options if o.is_precondition)
        if preconditions:
            raise InvalidArgument(
                f"Precondition options are not supported by the SFTP transport: {preconditions}",
                resource=str(object_id),
                transport=self.name,
            )
        segments = object_id.name.split("/")
        if object_id.bucket.startswith(".") or any(s in ("", ".", "..") for s in segments):
            raise InvalidArgument(
                f"Object cannot be mapped to an SFTP path: {object_id}", resource=str(object_id), transport=self.name
            )
        return self._sftp_path(object_id.bucket, object_id.name)

    def _session_paths(self, session_id: str) -> tuple[str, str]:
        if not session_id.isalnum():
            raise NotFound(f"Upload session not found: {session_id}", resource=session_id, transport=self.name)
        return (
            self._sftp_path(_UPLOADS, f"{session_id}.part"),
            self._sftp_path(_UPLOADS, f"{session_id}.json"),
        )

    def _ensure_dirs(self, sftp_dir: str) -> None:
        """Create ``sftp_dir`` and any missing ancestors."""
        current = ""
        for part in sftp_dir.split("/"):
            if not part:
                continue
            current = f"{current}/{part}"
            try:
                self._sftp.stat(current)
            except OSError:
                with contextlib.suppress(OSError):
                    self._sftp.mkdir(current)

    # endregion

    # region: error mapping

    @contextmanager
    def _errors(self, resource: str = "") -> Iterator[None]:
        """Map paramiko/OS exceptions to remote_channel errors."""
        import paramiko

        try:
            yield
        except RemoteChannelError:
            raise
        except (paramiko.SSHException, EOFError, ConnectionError) as exc:
            # Drop the broken connection; the next call reconnects.
            self._close_clients()
            raise ServiceError(
                str(exc) or type(exc).__name__,
                reason="connectionError",
                retryable=True,
                resource=resource,
                transport=self.name,
            ) from None
        except OSError as exc:
            code = getattr(exc, "errno", None)
            if code == errno.ENOENT:
                raise NotFound(f"Not found: {resource}", resource=resource, transport=self.name) from None
            if code == errno.EACCES:  # pragma: no cover -- requires server-side perm setup
                raise PermissionDenied(f"Permission denied: {resource}", resource=resource, transport=self.name) from None
            reason = errno.errorcode.get(code or 0, "sftpError")
            raise ServiceError(str(exc), reason=reason, resource=resource, transport=self.name) from None

    # endregion

    # region: manifest helpers

    def _load_manifest(self, manifest: str) -> dict[str, Any]:
        with self._sftp.open(manifest, "r") as f:
            raw = f.read()
        try:
            record = json.loads(raw.decode("utf-8"))
        except ValueError:
            record = None
        if not isinstance(record, dict):
            raise ServiceError(
                f"Upload session manifest is corrupt: {manifest}",
                reason="invalidManifest",
                resource=manifest,
                transport=self.name,
            )
        return record

    def _save_manifest(self, manifest: str, record: dict[str, Any]) -> None:
        tmp = f"{manifest}.tmp"
        with self._sftp.open(tmp, "w") as f:
            f.write(json.dumps(record, sort_keys=True).encode("utf-8"))
        self._sftp.posix_rename(tmp, manifest)

    # endregion

    def read_chunk(self, object_id: ObjectId, offset: int, length: int, options: ChannelOptions) -> bytes:
        path = self._object_path(object_id, options)
        with self._errors(str(object_id)):
            attrs = self._sftp.stat(path)
            if not stat.S_ISREG(attrs.st_mode):
                raise NotFound(f"Object not found: {object_id}", resource=str(object_id), transport=self.name)
            if length == 0 or offset >= (attrs.st_size or 0):
                return b""
            with self._sftp.open(path, "rb") as f:
                f.seek(offset)
                return bytes(f.read(length))

    def start_resumable_upload(self, target: ObjectId, options: ChannelOptions) -> str:
        target = target.with_generation(None)
        self._object_path(target, options)
        session_id = uuid.uuid4().hex
        part, manifest = self._session_paths(session_id)
        with self._errors(str(target)):
            self._ensure_dirs(self._sftp_path(_UPLOADS))
            with self._sftp.open(part, "wb"):
                pass
            self._save_manifest(manifest, {"target": target.to_dict(), "options": options.to_dict()})
        log.debug("Started SFTP upload session %s for %s", session_id, target)
        return session_id

    def write_chunk(self, session_id: str, start: int, end: int, data: bytes, *, final: bool) -> int:
        if start < 0 or end - start != len(data):
            raise InvalidArgument(f"Range {start}-{end} does not match {len(data)} byte(s)", resource=session_id)
        part, manifest = self._session_paths(session_id)
        with self._errors(session_id):
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
            held = int(self._sftp.stat(part).st_size or 0)
            if start > held:
                raise ServiceError(
                    f"Chunk starts at {start} but the session holds only {held} byte(s)",
                    code=400,
                    reason="invalidRange",
                    resource=session_id,
                    transport=self.name,
                )
            if end > held:
                with self._sftp.open(part, "r+b") as f:
                    f.seek(held)
                    f.write(data[held - start :])
                held = end
            if final and held == end:
                target = ObjectId.from_dict(record["target"])
                path = self._object_path(target, ChannelOptions())
                self._ensure_dirs(path.rsplit("/", 1)[0])
                self._sftp.posix_rename(part, path)
                record["committed_size"] = end
                self._save_manifest(manifest, record)
                log.debug("Committed SFTP upload session %s to %s", session_id, target)
            return held

    def get_object_metadata(self, object_id: ObjectId) -> ObjectInfo:
        path = self._object_path(object_id, ChannelOptions())
        with self._errors(str(object_id)):
            attrs = self._sftp.stat(path)
        if not stat.S_ISREG(attrs.st_mode):
            raise NotFound(f"Object not found: {object_id}", resource=str(object_id), transport=self.name)
        updated = datetime.fromtimestamp(attrs.st_mtime, tz=timezone.utc) if attrs.st_mtime is not None else None
        return ObjectInfo(id=object_id, size=int(attrs.st_size or 0), updated=updated)

    # region: lifecycle

    def close(self) -> None:
        self._close_clients()

    # endregion
