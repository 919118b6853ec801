"""S3-compatible object storage transport using s3fs."""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import parse_qs, urlencode

from remote_channel._errors import (
    InvalidArgument,
    NotFound,
    PermissionDenied,
    RemoteChannelError,
    ServiceError,
)
from remote_channel._models import ObjectId, ObjectInfo
from remote_channel._options import ChannelOptions, Option
from remote_channel._transport import Transport

if TYPE_CHECKING:
    from collections.abc import Iterator

log = logging.getLogger(__name__)

# S3 rejects multipart parts below 5 MiB except for the last one.
_MIN_PART_SIZE = 5 * 1024 * 1024

_NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "NoSuchUpload", "NotFound", "404"})

_HEADER_OPTIONS = {
    Option.CONTENT_TYPE: "ContentType",
    Option.CACHE_CONTROL: "CacheControl",
    Option.CONTENT_DISPOSITION: "ContentDisposition",
    Option.CONTENT_ENCODING: "ContentEncoding",
    Option.CONTENT_LANGUAGE: "ContentLanguage",
}

_CANNED_ACLS = {
    "private": "private",
    "projectPrivate": "private",
    "publicRead": "public-read",
    "authenticatedRead": "authenticated-read",
    "bucketOwnerRead": "bucket-owner-read",
    "bucketOwnerFullControl": "bucket-owner-full-control",
}


def _mentions_status(msg: str, status: int) -> bool:
    """Whether ``msg`` carries ``status`` as a standalone number, not inside a key or path."""
    return re.search(rf"(?<![\w/.-]){status}(?![\w/-]|\.\w)", msg) is not None


class S3Transport(Transport):
    """S3-compatible transport using s3fs.

    Upload sessions are multipart uploads. The bytes a session holds are the
    sum of its uploaded parts, so a session can be resumed from any process.
    Object generations and precondition options are not supported.

    :param endpoint_url: Custom endpoint URL (e.g. for MinIO).
    :param key: AWS access key ID.
    :param secret: AWS secret access key.
    :param region_name: AWS region name.
    :param client_options: Additional options passed to s3fs.
    """

    def __init__(
        self,
        *,
        endpoint_url: Optional[str] = None,
        key: Optional[str] = None,
        secret: Optional[str] = None,
        region_name: Optional[str] = None,
        client_options: Optional[dict[str, Any]] = None,
    ) -> None:
        self._endpoint_url = endpoint_url
        self._key = key
        self._secret = secret
        self._region_name = region_name
        self._client_options = client_options or {}
        self._fs_instance: Any = None

    @property
    def name(self) -> str:
        return "s3"

    @property
    def min_chunk_size(self) -> int:
        return _MIN_PART_SIZE

    # region: lazy filesystem

    @property
    def _fs(self) -> Any:
        if self._fs_instance is None:
            import s3fs  # type: ignore[import-untyped]

            opts: dict[str, Any] = dict(self._client_options)
            if self._endpoint_url is not None:
                opts["endpoint_url"] = self._endpoint_url
            if self._key is not None:
                opts["key"] = self._key
            if self._secret is not None:
                opts["secret"] = self._secret
            if self._region_name is not None:
                client_kwargs: dict[str, Any] = opts.setdefault("client_kwargs", {})
                client_kwargs["region_name"] = self._region_name
            opts.setdefault("anon", False)
            self._fs_instance = s3fs.S3FileSystem(**opts)
        return self._fs_instance

    # endregion

    # region: identifiers

    def _check_object(self, object_id: ObjectId, options: ChannelOptions) -> str:
        if object_id.generation is not None:
            raise InvalidArgument(
                "Object generations are not supported by the S3 transport",
                resource=str(object_id),
                transport=self.name,
            )
        preconditions = sorted(o.value for o in options if o.is_precondition)
        if preconditions:
            raise InvalidArgument(
                f"Precondition options are not supported by the S3 transport: {preconditions}",
                resource=str(object_id),
                transport=self.name,
            )
        return f"{object_id.bucket}/{object_id.name}"

    @staticmethod
    def _session_id(bucket: str, key: str, upload_id: str) -> str:
        return urlencode({"bucket": bucket, "key": key, "uploadId": upload_id})

    def _parse_session(self, session_id: str) -> tuple[str, str, str]:
        fields = parse_qs(session_id)
        try:
            return fields["bucket"][0], fields["key"][0], fields["uploadId"][0]
        except KeyError:
            raise NotFound(f"Upload session not found: {session_id}", resource=session_id, transport=self.name) from None

    # endregion

    # region: error mapping

    @contextmanager
    def _errors(self, resource: str = "") -> Iterator[None]:
        """Map s3fs/botocore exceptions to remote_channel errors."""
        try:
            yield
        except RemoteChannelError:
            raise
        except FileNotFoundError:
            raise NotFound(f"Not found: {resource}", resource=resource, transport=self.name) from None
        except PermissionError:
            raise PermissionDenied(f"Permission denied: {resource}", resource=resource, transport=self.name) from None
        except Exception as exc:
            raise self._classify_error(exc, resource) from None

    def _classify_error(self, exc: Exception, resource: str) -> RemoteChannelError:
        """Classify an unknown exception, preferring the service response when s3fs kept it."""
        response = getattr(exc.__cause__, "response", None) or getattr(exc, "response", None)
        if isinstance(response, dict):
            error = response.get("Error", {})
            reason = error.get("Code")
            status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if status == 404 or reason in _NOT_FOUND_CODES:
                return NotFound(f"Not found: {resource}", reason=reason, resource=resource, transport=self.name)
            if status == 403:
                return PermissionDenied(str(exc), reason=reason, resource=resource, transport=self.name)
            if reason == "InternalError":
                reason = "internalError"
            return ServiceError(str(exc), code=status, reason=reason, resource=resource, transport=self.name)
        msg = str(exc).lower()
        if "invalidrange" in msg or _mentions_status(msg, 416):
            return ServiceError(str(exc), code=416, reason="InvalidRange", resource=resource, transport=self.name)
        if "slowdown" in msg or _mentions_status(msg, 503):
            return ServiceError(str(exc), code=503, resource=resource, transport=self.name)
        if "internalerror" in msg or _mentions_status(msg, 500):
            return ServiceError(str(exc), code=500, reason="internalError", resource=resource, transport=self.name)
        if any(kw in msg for kw in ("endpoint", "connect", "timeout", "timed out", "reset")):
            return ServiceError(
                str(exc), reason="connectionError", retryable=True, resource=resource, transport=self.name
            )
        return ServiceError(str(exc), resource=resource, transport=self.name)

    # endregion

    # region: helpers

    def _list_parts(self, bucket: str, key: str, upload_id: str) -> list[dict[str, Any]]:
        parts: list[dict[str, Any]] = []
        paging: dict[str, Any] = {}
        while True:
            response = self._fs.call_s3("list_parts", Bucket=bucket, Key=key, UploadId=upload_id, **paging)
            parts.extend(response.get("Parts", []))
            if not response.get("IsTruncated"):
                return parts
            paging["PartNumberMarker"] = int(response["NextPartNumberMarker"])

    def _committed_size(self, bucket: str, key: str) -> Optional[int]:
        path = f"{bucket}/{key}"
        self._fs.invalidate_cache(path)
        try:
            info = self._fs.info(path)
        except FileNotFoundError:
            return None
        return int(info.get("size", info.get("Size", 0)) or 0)

    @staticmethod
    def _upload_args(options: ChannelOptions) -> dict[str, Any]:
        args: dict[str, Any] = {}
        for option, field in _HEADER_OPTIONS.items():
            if option in options:
                args[field] = options[option]
        if Option.USER_METADATA in options:
            args["Metadata"] = options[Option.USER_METADATA]
        if Option.ACL in options:
            args["ACL"] = _CANNED_ACLS[options[Option.ACL].value]
        return args

    # endregion

    def read_chunk(self, object_id: ObjectId, offset: int, length: int, options: ChannelOptions) -> bytes:
        path = self._check_object(object_id, options)
        if length == 0:
            return b""
        try:
            with self._errors(str(object_id)):
                return bytes(self._fs.cat_file(path, start=offset, end=offset + length))
        except ServiceError as exc:
            # Ranges starting at or past the end (including any range of an empty object).
            if exc.code == 416 or exc.reason == "InvalidRange":
                return b""
            raise

    def start_resumable_upload(self, target: ObjectId, options: ChannelOptions) -> str:
        self._check_object(target.with_generation(None), options)
        with self._errors(str(target)):
            response = self._fs.call_s3(
                "create_multipart_upload", Bucket=target.bucket, Key=target.name, **self._upload_args(options)
            )
        log.debug("Created multipart upload for %s", target)
        return self._session_id(target.bucket, target.name, response["UploadId"])

    def write_chunk(self, session_id: str, start: int, end: int, data: bytes, *, final: bool) -> int:
        if start < 0 or end - start != len(data):
            raise InvalidArgument(f"Range {start}-{end} does not match {len(data)} byte(s)", resource=session_id)
        bucket, key, upload_id = self._parse_session(session_id)
        try:
            with self._errors(session_id):
                parts = self._list_parts(bucket, key, upload_id)
        except NotFound:
            # A completed upload disappears; a retried final chunk finds the object instead.
            if final:
                with self._errors(session_id):
                    committed = self._committed_size(bucket, key)
                if committed == end:
                    return end
            raise
        with self._errors(session_id):
            held = sum(int(p["Size"]) for p in parts)
            if start > held:
                raise ServiceError(
                    f"Chunk starts at {start} but the session holds only {held} byte(s)",
                    code=400,
                    reason="invalidRange",
                    resource=session_id,
                    transport=self.name,
                )
            payload = data[held - start :] if end > held else b""
            if payload or (final and not parts):
                number = len(parts) + 1
                response = self._fs.call_s3(
                    "upload_part", Bucket=bucket, Key=key, UploadId=upload_id, PartNumber=number, Body=payload
                )
                parts.append({"PartNumber": number, "ETag": response["ETag"], "Size": len(payload)})
                held += len(payload)
            if final and held == end:
                self._fs.call_s3(
                    "complete_multipart_upload",
                    Bucket=bucket,
                    Key=key,
                    UploadId=upload_id,
                    MultipartUpload={"Parts": [{"PartNumber": p["PartNumber"], "ETag": p["ETag"]} for p in parts]},
                )
                self._fs.invalidate_cache(f"{bucket}/{key}")
                log.debug("Completed multipart upload of %s/%s (%d parts)", bucket, key, len(parts))
            return held

    def get_object_metadata(self, object_id: ObjectId) -> ObjectInfo:
        path = self._check_object(object_id, ChannelOptions())
        with self._errors(str(object_id)):
            self._fs.invalidate_cache(path)
            info = self._fs.info(path)
        if info.get("type") == "directory":
            raise NotFound(f"Object not found: {object_id}", resource=str(object_id), transport=self.name)
        modified = info.get("LastModified", info.get("last_modified"))
        if isinstance(modified, str):
            modified = datetime.fromisoformat(modified)
        if modified is not None and modified.tzinfo is None:
            modified = modified.replace(tzinfo=timezone.utc)
        return ObjectInfo(
            id=object_id,
            size=int(info.get("size", info.get("Size", 0)) or 0),
            content_type=info.get("ContentType"),
            updated=modified,
            etag=info.get("ETag"),
        )

    # region: lifecycle

    def close(self) -> None:
        if self._fs_instance is not None:
            self._fs_instance.clear_instance_cache()
            self._fs_instance = None

    # endregion
