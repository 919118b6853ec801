"""Option enum and ChannelOptions, the validated per-object option set."""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING, Any, Optional, Union

from remote_channel._errors import InvalidArgument

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping


class PredefinedAcl(enum.Enum):
    """Canned access-control lists applied to a newly written object."""

    PRIVATE = "private"
    PROJECT_PRIVATE = "projectPrivate"
    PUBLIC_READ = "publicRead"
    AUTHENTICATED_READ = "authenticatedRead"
    BUCKET_OWNER_READ = "bucketOwnerRead"
    BUCKET_OWNER_FULL_CONTROL = "bucketOwnerFullControl"


class Option(enum.Enum):
    """Every option a channel can carry. Values are the wire names."""

    CONTENT_TYPE = "contentType"
    CACHE_CONTROL = "cacheControl"
    CONTENT_DISPOSITION = "contentDisposition"
    CONTENT_ENCODING = "contentEncoding"
    CONTENT_LANGUAGE = "contentLanguage"
    USER_METADATA = "metadata"
    ACL = "predefinedAcl"
    GENERATION_MATCH = "ifGenerationMatch"
    GENERATION_NOT_MATCH = "ifGenerationNotMatch"
    METAGENERATION_MATCH = "ifMetagenerationMatch"
    METAGENERATION_NOT_MATCH = "ifMetagenerationNotMatch"

    @property
    def is_precondition(self) -> bool:
        return self in _PRECONDITIONS


_PRECONDITIONS = frozenset(
    {
        Option.GENERATION_MATCH,
        Option.GENERATION_NOT_MATCH,
        Option.METAGENERATION_MATCH,
        Option.METAGENERATION_NOT_MATCH,
    }
)

_TEXT_OPTIONS = frozenset(
    {
        Option.CONTENT_TYPE,
        Option.CACHE_CONTROL,
        Option.CONTENT_DISPOSITION,
        Option.CONTENT_ENCODING,
        Option.CONTENT_LANGUAGE,
    }
)

OptionKey = Union[Option, str]


def _to_option(key: OptionKey) -> Option:
    if isinstance(key, Option):
        return key
    try:
        return Option(key)
    except ValueError:
        pass
    try:
        return Option[str(key).upper()]
    except KeyError:
        raise InvalidArgument(f"Unknown option {key!r}. Known options: {sorted(o.value for o in Option)}") from None


def _normalize(option: Option, value: object) -> object:
    """Validate ``value`` for ``option`` and return its canonical hashable form."""
    if option in _TEXT_OPTIONS:
        if not isinstance(value, str):
            raise InvalidArgument(f"Option {option.value!r} expects a string, got {type(value).__name__}")
        return value
    if option in _PRECONDITIONS:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidArgument(f"Option {option.value!r} expects a non-negative integer, got {value!r}")
        return value
    if option is Option.ACL:
        if isinstance(value, PredefinedAcl):
            return value
        try:
            return PredefinedAcl(value)
        except ValueError:
            raise InvalidArgument(
                f"Option {option.value!r} expects one of {sorted(a.value for a in PredefinedAcl)}, got {value!r}"
            ) from None
    # USER_METADATA
    if isinstance(value, tuple):
        value = dict(value)
    if not isinstance(value, dict):
        raise InvalidArgument(f"Option {option.value!r} expects a mapping, got {type(value).__name__}")
    for k, v in value.items():
        if not isinstance(k, str) or not isinstance(v, str):
            raise InvalidArgument(f"Option {option.value!r} expects str keys and values, got {k!r}: {v!r}")
    return tuple(sorted(value.items()))


class ChannelOptions:
    """Immutable, hashable set of validated options.

    Keys may be :class:`Option` members, their wire names (``"contentType"``)
    or their member names (``"content_type"``).

    :param options: Mapping of option to value.
    :raises InvalidArgument: If an option is unknown or its value is invalid.
    """

    __slots__ = ("_items",)
    _items: tuple[tuple[Option, object], ...]

    def __init__(self, options: Optional[Mapping[OptionKey, object]] = None, **kwargs: object) -> None:
        merged: dict[Option, object] = {}
        for key, value in {**dict(options or {}), **kwargs}.items():
            option = _to_option(key)
            merged[option] = _normalize(option, value)
        items = tuple(sorted(merged.items(), key=lambda kv: kv[0].value))
        object.__setattr__(self, "_items", items)

    @classmethod
    def coerce(cls, options: Union[ChannelOptions, Mapping[OptionKey, object], None]) -> ChannelOptions:
        if isinstance(options, ChannelOptions):
            return options
        return cls(options)

    @classmethod
    def for_read(cls, options: Union[ChannelOptions, Mapping[OptionKey, object], None] = None) -> ChannelOptions:
        """Like :meth:`coerce`, but only precondition options are accepted.

        :raises InvalidArgument: If a non-precondition option is present.
        """
        result = cls.coerce(options)
        rejected = sorted(o.value for o in result if not o.is_precondition)
        if rejected:
            raise InvalidArgument(f"Options not valid for reading: {rejected}")
        return result

    def get(self, key: OptionKey, default: Any = None) -> Any:
        option = _to_option(key)
        for k, v in self._items:
            if k is option:
                if option is Option.USER_METADATA:
                    return dict(v)  # type: ignore[arg-type]
                return v
        return default

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible form keyed by wire name."""
        result: dict[str, Any] = {}
        for option, value in self._items:
            if option is Option.ACL:
                result[option.value] = value.value  # type: ignore[attr-defined]
            elif option is Option.USER_METADATA:
                result[option.value] = dict(value)  # type: ignore[arg-type]
            else:
                result[option.value] = value
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ChannelOptions:
        return cls(data)

    def __getitem__(self, key: OptionKey) -> Any:
        option = _to_option(key)
        if option not in self:
            raise KeyError(option.value)
        return self.get(option)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, (Option, str)):
            return False
        try:
            option = _to_option(key)
        except InvalidArgument:
            return False
        return any(k is option for k, _ in self._items)

    def __iter__(self) -> Iterator[Option]:
        return (k for k, _ in self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ChannelOptions):
            return self._items == other._items
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._items)

    def __repr__(self) -> str:
        return f"ChannelOptions({self.to_dict()!r})"

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("ChannelOptions is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError("ChannelOptions is immutable")
