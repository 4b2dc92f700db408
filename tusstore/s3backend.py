"""Object layout, part sizing and metadata access for the S3 store."""

from __future__ import annotations

import re
import shutil
import tempfile
from dataclasses import dataclass
from typing import IO, Any, Protocol

from .errors import NotFoundError, is_s3_error
from .fileinfo import FileInfo
from .partproducer import TEMP_FILE_PREFIX, cleanup_temp_file

# Every character that is not allowed in an HTTP header value.
_NON_PRINTABLE = re.compile(r"[^\x09\x20-\x7E]")

_INCOMPLETE_PART_MISSING = ("NoSuchKey", "NotFound", "AccessDenied")


class S3Service(Protocol):
    """The calls the store makes against an S3-compatible service.

    Arguments and responses follow the S3 API field names. Service errors are
    raised as :class:`tusstore.errors.S3ServiceError`.
    """

    def put_object(self, **kwargs: Any) -> dict: ...

    def get_object(self, **kwargs: Any) -> dict: ...

    def delete_object(self, **kwargs: Any) -> dict: ...

    def delete_objects(self, **kwargs: Any) -> dict: ...

    def list_parts(self, **kwargs: Any) -> dict: ...

    def create_multipart_upload(self, **kwargs: Any) -> dict: ...

    def upload_part(self, **kwargs: Any) -> dict: ...

    def upload_part_copy(self, **kwargs: Any) -> dict: ...

    def complete_multipart_upload(self, **kwargs: Any) -> dict: ...

    def abort_multipart_upload(self, **kwargs: Any) -> dict: ...


def split_ids(id: str) -> tuple[str, str]:
    """Split ``"<upload id>+<multipart id>"``; give two empty strings without ``+``."""
    upload_id, sep, multipart_id = id.partition("+")
    if not sep:
        return "", ""
    return upload_id, multipart_id


def sanitize_metadata_value(value: str) -> str:
    """Replace every character not valid in a header value with ``?``."""
    return _NON_PRINTABLE.sub("?", value)


def _close(body: Any) -> None:
    close = getattr(body, "close", None)
    if close is not None:
        close()


def _with_slash(prefix: str) -> str:
    if prefix and not prefix.endswith("/"):
        return prefix + "/"
    return prefix


@dataclass
class S3Backend:
    """Configuration of a bucket and the low-level operations on its objects."""

    bucket: str
    service: S3Service
    object_prefix: str = ""
    metadata_object_prefix: str = ""
    max_part_size: int = 5 * 1024 * 1024 * 1024
    min_part_size: int = 5 * 1024 * 1024
    preferred_part_size: int = 50 * 1024 * 1024
    max_multipart_parts: int = 10000
    max_object_size: int = 5 * 1024 * 1024 * 1024 * 1024
    max_buffered_parts: int = 20
    temporary_directory: str = ""
    disable_content_hashes: bool = False

    def key_with_prefix(self, key: str) -> str:
        """Key of an upload's data object."""
        return _with_slash(self.object_prefix) + key

    def metadata_key_with_prefix(self, key: str) -> str:
        """Key of an upload's ``.info`` or ``.part`` object."""
        prefix = self.metadata_object_prefix or self.object_prefix
        return _with_slash(prefix) + key

    def calc_optimal_part_size(self, size: int) -> int:
        """Part size that fits ``size`` bytes into the allowed number of parts."""
        preferred = self.preferred_part_size
        max_parts = self.max_multipart_parts
        if size <= preferred * max_parts:
            optimal = preferred
        else:
            quotient, remainder = divmod(size, max_parts)
            optimal = quotient if remainder == 0 else quotient + 1

        if optimal > self.max_part_size:
            raise ValueError(
                f"calcOptimalPartSize: to upload {size} bytes optimalPartSize "
                f"{optimal} must exceed MaxPartSize {self.max_part_size}"
            )
        return optimal

    def list_all_parts(self, id: str) -> list[dict]:
        """All parts of the multipart upload, following pagination."""
        upload_id, multipart_id = split_ids(id)
        parts: list[dict] = []
        marker = 0
        while True:
            listing = self.service.list_parts(
                Bucket=self.bucket,
                Key=self.key_with_prefix(upload_id),
                UploadId=multipart_id,
                PartNumberMarker=marker,
            )
            parts.extend(listing.get("Parts") or [])
            if not listing.get("IsTruncated"):
                return parts
            marker = listing["NextPartNumberMarker"]

    def get_incomplete_part(self, upload_id: str) -> dict | None:
        """The ``.part`` object of an upload, or None if there is none."""
        try:
            return self.service.get_object(
                Bucket=self.bucket,
                Key=self.metadata_key_with_prefix(upload_id + ".part"),
            )
        except Exception as exc:
            if any(is_s3_error(exc, code) for code in _INCOMPLETE_PART_MISSING):
                return None
            raise

    def download_incomplete_part(self, upload_id: str) -> tuple[IO[bytes] | None, int]:
        """Copy the ``.part`` object into a temporary file.

        Returns the file positioned at its start and its size, or
        ``(None, 0)`` when there is no incomplete part.
        """
        obj = self.get_incomplete_part(upload_id)
        if obj is None:
            return None, 0
        body = obj["Body"]
        try:
            part_file = tempfile.NamedTemporaryFile(
                mode="w+b",
                prefix=TEMP_FILE_PREFIX,
                dir=self.temporary_directory or None,
                delete=False,
            )
            try:
                shutil.copyfileobj(body, part_file)
                copied = part_file.tell()
                if copied < (obj.get("ContentLength") or 0):
                    raise OSError("short read of incomplete upload")
                part_file.flush()
                part_file.seek(0)
            except BaseException:
                cleanup_temp_file(part_file)
                raise
        finally:
            _close(body)
        return part_file, copied

    def put_incomplete_part(self, upload_id: str, file: IO[bytes]) -> None:
        """Store ``file`` as the ``.part`` object and remove the file."""
        try:
            self.service.put_object(
                Bucket=self.bucket,
                Key=self.metadata_key_with_prefix(upload_id + ".part"),
                Body=file,
            )
        finally:
            cleanup_temp_file(file)

    def delete_incomplete_part(self, upload_id: str) -> None:
        """Remove the ``.part`` object of an upload."""
        self.service.delete_object(
            Bucket=self.bucket,
            Key=self.metadata_key_with_prefix(upload_id + ".part"),
        )

    def write_info(self, upload_id: str, info: FileInfo) -> None:
        """Store ``info`` as the upload's ``.info`` object."""
        data = info.to_json()
        self.service.put_object(
            Bucket=self.bucket,
            Key=self.metadata_key_with_prefix(upload_id + ".info"),
            Body=data,
            ContentLength=len(data),
        )

    def fetch_info(self, id: str) -> FileInfo:
        """Read the ``.info`` object and work out the current offset."""
        upload_id, _ = split_ids(id)
        try:
            obj = self.service.get_object(
                Bucket=self.bucket,
                Key=self.metadata_key_with_prefix(upload_id + ".info"),
            )
        except Exception as exc:
            if is_s3_error(exc, "NoSuchKey"):
                raise NotFoundError() from exc
            raise

        body = obj["Body"]
        try:
            info = FileInfo.from_json(body.read())
        finally:
            _close(body)

        try:
            parts = self.list_all_parts(id)
        except Exception as exc:
            # A missing multipart upload next to an existing info object means
            # the upload has been completed.
            if is_s3_error(exc, "NoSuchUpload") or is_s3_error(exc, "NoSuchKey"):
                info.offset = info.size
                return info
            raise

        offset = sum(part["Size"] for part in parts)

        incomplete = self.get_incomplete_part(upload_id)
        if incomplete is not None:
            try:
                offset += incomplete.get("ContentLength") or 0
            finally:
                _close(incomplete.get("Body"))

        info.offset = offset
        return info