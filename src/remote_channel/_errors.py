"""Normalized error hierarchy and retryable-failure classification."""

from __future__ import annotations

from typing import Optional

# Pairs of (status code, reason). ``None`` on either side matches anything.
RETRYABLE_ERRORS: frozenset[tuple[Optional[int], Optional[str]]] = frozenset(
    {
        (504, None),
        (503, None),
        (502, None),
        (500, None),
        (429, None),
        (408, None),
        (None, "internalError"),
    }
)


def classify(code: Optional[int], reason: Optional[str]) -> bool:
    """Return ``True`` if ``(code, reason)`` matches an entry of ``RETRYABLE_ERRORS``."""
    for known_code, known_reason in RETRYABLE_ERRORS:
        if known_code is not None and known_code == code:
            return True
        if known_reason is not None and known_reason == reason:
            return True
    return False


class RemoteChannelError(Exception):
    """Base class for all remote_channel errors.

    :param message: Human-readable error description.
    :param resource: The object or upload session involved, if any.
    :param transport: The transport name involved, if any.
    """

    def __init__(
        self, message: str = "", *, resource: Optional[str] = None, transport: Optional[str] = None
    ) -> None:
        self.resource = resource
        self.transport = transport
        super().__init__(message)

    def _context(self) -> list[str]:
        parts = []
        if self.resource is not None:
            parts.append(f"resource={self.resource!r}")
        if self.transport is not None:
            parts.append(f"transport={self.transport!r}")
        return parts

    def __str__(self) -> str:
        parts = [super().__str__(), *self._context()]
        return " | ".join(parts) if len(parts) > 1 else parts[0]

    def __repr__(self) -> str:
        cls = type(self).__name__
        args = [repr(super().__str__()), *self._context()]
        return f"{cls}({', '.join(args)})"


class ServiceError(RemoteChannelError):
    """Raised by a transport when the remote service reports a failure.

    :param code: Numeric status code, if the service sent one.
    :param reason: Short machine-readable reason, if the service sent one.
    :param retryable: Explicit override; when ``None`` the classification
        table decides.
    """

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[int] = None,
        reason: Optional[str] = None,
        retryable: Optional[bool] = None,
        resource: Optional[str] = None,
        transport: Optional[str] = None,
    ) -> None:
        self.code = code
        self.reason = reason
        self._retryable = retryable
        super().__init__(message, resource=resource, transport=transport)

    @property
    def retryable(self) -> bool:
        if self._retryable is not None:
            return self._retryable
        return classify(self.code, self.reason)

    def _context(self) -> list[str]:
        parts = []
        if self.code is not None:
            parts.append(f"code={self.code}")
        if self.reason is not None:
            parts.append(f"reason={self.reason!r}")
        return parts + super()._context()


class NotFound(ServiceError):
    """Raised when the object or upload session does not exist."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("code", 404)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class PermissionDenied(ServiceError):
    """Raised when the service refuses access."""

    def __init__(self, message: str = "", **kwargs: object) -> None:
        kwargs.setdefault("code", 403)
        super().__init__(message, **kwargs)  # type: ignore[arg-type]


class InvalidArgument(RemoteChannelError, ValueError):
    """Raised for malformed arguments, settings, options or captured state."""


class ChannelClosed(RemoteChannelError):
    """Raised when I/O is attempted on a closed channel."""


class ChannelStateError(RemoteChannelError):
    """Raised when an operation is not valid in the channel's current state."""


class RetryExhausted(RemoteChannelError):
    """Raised when a retryable failure persisted past the retry budget.

    :param last_error: The last underlying (retryable) error.
    :param attempts: How many times the operation was attempted.
    :param elapsed: Seconds spent, including backoff waits.
    """

    def __init__(
        self,
        message: str = "",
        *,
        last_error: Optional[BaseException] = None,
        attempts: int = 0,
        elapsed: float = 0.0,
        resource: Optional[str] = None,
        transport: Optional[str] = None,
    ) -> None:
        self.last_error = last_error
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(message, resource=resource, transport=transport)

    def _context(self) -> list[str]:
        return [f"attempts={self.attempts}", *super()._context()]


class RetryInterrupted(RemoteChannelError):
    """Raised when a backoff wait is cancelled; never retried further.

    :param attempts: How many attempts were made before the cancellation.
    """

    def __init__(
        self,
        message: str = "",
        *,
        attempts: int = 0,
        resource: Optional[str] = None,
        transport: Optional[str] = None,
    ) -> None:
        self.attempts = attempts
        super().__init__(message, resource=resource, transport=transport)


def is_retryable(exc: BaseException) -> bool:
    """Default classifier: only service errors flagged retryable are retried."""
    return isinstance(exc, ServiceError) and exc.retryable
