"""Resumable, retrying read and write channels for remote object storage."""

from remote_channel._config import ChannelConfig
from remote_channel._errors import (
    RETRYABLE_ERRORS,
    ChannelClosed,
    ChannelStateError,
    InvalidArgument,
    NotFound,
    PermissionDenied,
    RemoteChannelError,
    RetryExhausted,
    RetryInterrupted,
    ServiceError,
    is_retryable,
)
from remote_channel._models import ObjectId, ObjectInfo
from remote_channel._options import ChannelOptions, Option, PredefinedAcl
from remote_channel._read import ReadChannel
from remote_channel._retry import Cancellation, RetryExecutor, RetrySettings, run_with_retries
from remote_channel._state import ChannelState, ReadChannelState, WriteChannelState, decode_state
from remote_channel._storage import Storage
from remote_channel._transport import Transport
from remote_channel._write import WriteChannel, WriteStatus

__version__ = "0.1.0"

__all__ = [
    # Core
    "Storage",
    "Transport",
    "ReadChannel",
    "WriteChannel",
    "WriteStatus",
    # State
    "ChannelState",
    "ReadChannelState",
    "WriteChannelState",
    "decode_state",
    # Models & Options
    "ObjectId",
    "ObjectInfo",
    "Option",
    "ChannelOptions",
    "PredefinedAcl",
    # Retry
    "RetrySettings",
    "RetryExecutor",
    "Cancellation",
    "run_with_retries",
    # Config
    "ChannelConfig",
    # Errors
    "RemoteChannelError",
    "ServiceError",
    "NotFound",
    "PermissionDenied",
    "InvalidArgument",
    "ChannelClosed",
    "ChannelStateError",
    "RetryExhausted",
    "RetryInterrupted",
    "RETRYABLE_ERRORS",
    "is_retryable",
    # Version
    "__version__",
]
