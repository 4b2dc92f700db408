"""Upload storage on S3 or a compatible service, built on multipart uploads."""

from __future__ import annotations

import copy
import os
import queue
import secrets
import shutil
import tempfile
import threading
import urllib.error
import urllib.request
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import IO, Any, BinaryIO, Sequence

from .errors import HTTPError, MultiError, NotFoundError, is_s3_error
from .fileinfo import FileInfo
from .partproducer import PartProducer, cleanup_temp_file
from .s3backend import S3Backend, sanitize_metadata_value, split_ids

CONCAT_TEMP_FILE_PREFIX = "tusd-s3-concat-tmp-"
_PRESIGN_EXPIRY_SECONDS = 15 * 60


class _ChainedReader:
    """Reads from several binary streams one after another."""

    def __init__(self, *readers: BinaryIO) -> None:
        self._readers = deque(readers)

    def read(self, size: int = -1) -> bytes:
        while self._readers:
            chunk = self._readers[0].read(size)
            if chunk:
                return chunk
            self._readers.popleft()
        return b""


def _close(body: Any) -> None:
    close = getattr(body, "close", None)
    if close is not None:
        close()


def _drain(files: queue.Queue) -> None:
    while (file := files.get()) is not None:
        cleanup_temp_file(file)


class S3Store(S3Backend):
    """A data store keeping each upload as a multipart upload in a bucket."""

    def new_upload(self, info: FileInfo) -> S3Upload:
        """Create the multipart upload and its ``.info`` object."""
        if info.size > self.max_object_size:
            raise ValueError(
                f"s3store: upload size of {info.size} bytes exceeds "
                f"MaxObjectSize of {self.max_object_size} bytes"
            )

        upload_id = info.id or secrets.token_hex(16)
        metadata = {
            key: sanitize_metadata_value(value)
            for key, value in (info.meta_data or {}).items()
        }

        try:
            response = self.service.create_multipart_upload(
                Bucket=self.bucket,
                Key=self.key_with_prefix(upload_id),
                Metadata=metadata,
            )
        except Exception as exc:
            raise RuntimeError(
                f"s3store: unable to create multipart upload:\n{exc}"
            ) from exc

        info = replace(
            info,
            id=f"{upload_id}+{response['UploadId']}",
            storage={
                "Type": "s3store",
                "Bucket": self.bucket,
                "Key": self.key_with_prefix(upload_id),
            },
        )

        upload = S3Upload(info.id, self)
        try:
            upload._write_info(info)
        except Exception as exc:
            raise RuntimeError(f"s3store: unable to create info file:\n{exc}") from exc
        return upload

    def get_upload(self, id: str) -> S3Upload:
        """Handle to an existing upload; nothing is fetched until needed."""
        return S3Upload(id, self)


class S3Upload:
    """One upload, addressed as ``"<upload id>+<multipart id>"``."""

    def __init__(self, id: str, store: S3Store, info: FileInfo | None = None) -> None:
        self.id = id
        self.store = store
        self._info = info

    def get_info(self) -> FileInfo:
        """The upload's info, fetched once from the bucket and then cached."""
        if self._info is None:
            self._info = self.store.fetch_info(self.id)
        return copy.deepcopy(self._info)

    def _write_info(self, info: FileInfo) -> None:
        upload_id, _ = split_ids(self.id)
        self._info = copy.deepcopy(info)
        self.store.write_info(upload_id, info)

    def write_chunk(self, offset: int, src: BinaryIO) -> int:
        """Append the data read from ``src``; return the number of bytes taken."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        info = self.get_info()
        size = info.size
        optimal_part_size = store.calc_optimal_part_size(size)

        next_part_number = len(store.list_all_parts(self.id)) + 1

        incomplete_file, incomplete_size = store.download_incomplete_part(upload_id)
        try:
            if incomplete_file is not None:
                store.delete_incomplete_part(upload_id)
                src = _ChainedReader(incomplete_file, src)

            files: queue.Queue = queue.Queue(maxsize=max(1, store.max_buffered_parts))
            done = threading.Event()
            producer = PartProducer(src, files, done, store.temporary_directory)
            thread = threading.Thread(
                target=producer.produce, args=(optimal_part_size,), daemon=True
            )
            thread.start()

            bytes_uploaded = 0
            exhausted = False
            try:
                while True:
                    file = files.get()
                    if file is None:
                        exhausted = True
                        break

                    n = os.fstat(file.fileno()).st_size
                    is_final_chunk = not info.size_is_deferred and (
                        size == (offset - incomplete_size) + n
                    )
                    if n >= store.min_part_size or is_final_chunk:
                        self._put_part(upload_id, multipart_id, next_part_number, file, n)
                    else:
                        store.put_incomplete_part(upload_id, file)
                        bytes_uploaded += n
                        return bytes_uploaded - incomplete_size

                    offset += n
                    bytes_uploaded += n
                    next_part_number += 1
            finally:
                done.set()
                if not exhausted:
                    _drain(files)
                thread.join()

            if producer.error is not None:
                raise producer.error
            return bytes_uploaded - incomplete_size
        finally:
            if incomplete_file is not None:
                cleanup_temp_file(incomplete_file)

    def _put_part(
        self,
        upload_id: str,
        multipart_id: str,
        part_number: int,
        file: IO[bytes],
        size: int,
    ) -> None:
        store = self.store
        params = {
            "Bucket": store.bucket,
            "Key": store.key_with_prefix(upload_id),
            "UploadId": multipart_id,
            "PartNumber": part_number,
        }
        try:
            if store.disable_content_hashes:
                self._put_part_presigned(params, file, size)
            else:
                store.service.upload_part(**params, Body=file)
        finally:
            cleanup_temp_file(file)

    def _put_part_presigned(self, params: dict, file: IO[bytes], size: int) -> None:
        # The body is sent outside the signed request so no hash of it is computed.
        presign = getattr(self.store.service, "generate_presigned_url", None)
        if presign is None:
            raise RuntimeError("s3store: failed to cast S3 service for presigning")

        url = presign("upload_part", Params=params, ExpiresIn=_PRESIGN_EXPIRY_SECONDS)
        request = urllib.request.Request(
            url,
            data=file,
            method="PUT",
            headers={"Content-Length": str(size)},
        )
        try:
            with urllib.request.urlopen(request) as response:
                status = response.status
                body = response.read()
        except urllib.error.HTTPError as exc:
            status = exc.code
            body = exc.read()

        if status != 200:
            raise RuntimeError(
                f"s3store: unexpected response code {status} for presigned upload: "
                f"{body.decode('utf-8', 'replace')}"
            )

    def get_reader(self) -> BinaryIO:
        """Stream of the finished upload's content."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)
        try:
            return store.service.get_object(
                Bucket=store.bucket, Key=store.key_with_prefix(upload_id)
            )["Body"]
        except Exception as exc:
            if not is_s3_error(exc, "NoSuchKey"):
                raise

        try:
            store.service.list_parts(
                Bucket=store.bucket,
                Key=store.key_with_prefix(upload_id),
                UploadId=multipart_id,
                MaxParts=0,
            )
        except Exception as exc:
            if is_s3_error(exc, "NoSuchUpload"):
                raise NotFoundError() from exc
            raise
        raise HTTPError("cannot stream non-finished upload", 400)

    def terminate(self) -> None:
        """Abort the multipart upload and delete every object of the upload."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        def abort() -> list[BaseException]:
            try:
                store.service.abort_multipart_upload(
                    Bucket=store.bucket,
                    Key=store.key_with_prefix(upload_id),
                    UploadId=multipart_id,
                )
            except Exception as exc:
                if not is_s3_error(exc, "NoSuchUpload"):
                    return [exc]
            return []

        def delete() -> list[BaseException]:
            try:
                response = store.service.delete_objects(
                    Bucket=store.bucket,
                    Delete={
                        "Objects": [
                            {"Key": store.key_with_prefix(upload_id)},
                            {"Key": store.metadata_key_with_prefix(upload_id + ".part")},
                            {"Key": store.metadata_key_with_prefix(upload_id + ".info")},
                        ],
                        "Quiet": True,
                    },
                )
            except Exception as exc:
                return [exc]
            return [
                RuntimeError(
                    f"AWS S3 Error ({error['Code']}) for object "
                    f"{error['Key']}: {error['Message']}"
                )
                for error in (response or {}).get("Errors") or []
                if error["Code"] != "NoSuchKey"
            ]

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [pool.submit(abort), pool.submit(delete)]
        errors = [error for future in futures for error in future.result()]
        if errors:
            raise MultiError(errors)

    def finish_upload(self) -> None:
        """Complete the multipart upload, adding an empty part if there is none."""
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        parts = store.list_all_parts(self.id)
        if not parts:
            # S3 needs at least one part to complete a multipart upload.
            response = store.service.upload_part(
                Bucket=store.bucket,
                Key=store.key_with_prefix(upload_id),
                UploadId=multipart_id,
                PartNumber=1,
                Body=b"",
            )
            parts = [{"ETag": (response or {}).get("ETag"), "PartNumber": 1}]

        store.service.complete_multipart_upload(
            Bucket=store.bucket,
            Key=store.key_with_prefix(upload_id),
            UploadId=multipart_id,
            MultipartUpload={
                "Parts": [
                    {"ETag": part.get("ETag"), "PartNumber": part.get("PartNumber")}
                    for part in parts
                ]
            },
        )

    def concat_uploads(self, partial_uploads: Sequence[S3Upload]) -> None:
        """Make this upload the concatenation of ``partial_uploads``."""
        has_small_part = any(
            partial.get_info().size < self.store.min_part_size
            for partial in partial_uploads
        )
        # Parts below the minimum size cannot be copied into a multipart upload.
        if has_small_part:
            self._concat_using_download(partial_uploads)
        else:
            self._concat_using_multipart(partial_uploads)

    def _concat_using_download(self, partial_uploads: Sequence[S3Upload]) -> None:
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        file = tempfile.NamedTemporaryFile(
            mode="w+b",
            prefix=CONCAT_TEMP_FILE_PREFIX,
            dir=store.temporary_directory or None,
            delete=False,
        )
        try:
            for partial in partial_uploads:
                partial_id, _ = split_ids(partial.id)
                body = store.service.get_object(
                    Bucket=store.bucket, Key=store.key_with_prefix(partial_id)
                )["Body"]
                try:
                    shutil.copyfileobj(body, file)
                finally:
                    _close(body)

            file.flush()
            file.seek(0)
            store.service.put_object(
                Bucket=store.bucket,
                Key=store.key_with_prefix(upload_id),
                Body=file,
            )
        finally:
            cleanup_temp_file(file)

        def abort() -> None:
            # The outcome does not change the result of the concatenation.
            try:
                store.service.abort_multipart_upload(
                    Bucket=store.bucket,
                    Key=store.key_with_prefix(upload_id),
                    UploadId=multipart_id,
                )
            except Exception:
                pass

        threading.Thread(target=abort, daemon=True).start()

    def _concat_using_multipart(self, partial_uploads: Sequence[S3Upload]) -> None:
        store = self.store
        upload_id, multipart_id = split_ids(self.id)

        def copy_part(part_number: int, partial: S3Upload) -> BaseException | None:
            partial_id, _ = split_ids(partial.id)
            try:
                store.service.upload_part_copy(
                    Bucket=store.bucket,
                    Key=store.key_with_prefix(upload_id),
                    UploadId=multipart_id,
                    PartNumber=part_number,
                    CopySource=f"{store.bucket}/{store.key_with_prefix(partial_id)}",
                )
            except Exception as exc:
                return exc
            return None

        if partial_uploads:
            with ThreadPoolExecutor(max_workers=len(partial_uploads)) as pool:
                results = list(
                    pool.map(copy_part, range(1, len(partial_uploads) + 1), partial_uploads)
                )
            errors = [error for error in results if error is not None]
            if errors:
                raise MultiError(errors)

        self.finish_upload()

    def declare_length(self, length: int) -> None:
        """Set the size of an upload whose length was deferred."""
        info = self.get_info()
        info.size = length
        info.size_is_deferred = False
        self._write_info(info)