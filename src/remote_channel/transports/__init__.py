"""Transport implementations."""

from remote_channel.transports._local import LocalTransport
from remote_channel.transports._memory import MemoryTransport

__all__ = ["LocalTransport", "MemoryTransport"]

try:
    from remote_channel.transports._s3 import S3Transport

    __all__ = [*__all__, "S3Transport"]
except ImportError:  # pragma: no cover
    pass

try:
    from remote_channel.transports._sftp import HostKeyPolicy, SFTPTransport, load_private_key

    __all__ = [*__all__, "HostKeyPolicy", "SFTPTransport", "load_private_key"]
except ImportError:  # pragma: no cover
    pass
