# tusstore

This package provides server-side storage pieces for tus resumable uploads:

- a data store that keeps uploads on S3 or a compatible service, and
- an in-memory lock manager.

## Installation

```
pip install tusstore
```

The package has no runtime dependencies, and it does not include an S3 client. You pass in a service object that has these methods:

- `put_object`
- `get_object`
- `delete_object`
- `delete_objects`
- `list_parts`
- `create_multipart_upload`
- `upload_part`
- `upload_part_copy`
- `complete_multipart_upload`
- `abort_multipart_upload`

Each method takes keyword arguments named after the S3 API fields, such as `Bucket`, `Key` and `UploadId`. Each method returns a dict of response fields. The `tusstore.s3backend.S3Service` protocol describes this interface.

The store recognises a service error only when it is raised as `tusstore.errors.S3ServiceError` with the S3 error code, for example `NoSuchKey` or `NoSuchUpload`.

## Storing uploads on S3

`tusstore.s3store.S3Store` keeps every upload as an S3 multipart upload. It stores three kinds of object:

- **`.info` object.** A JSON object, written by `tusstore.fileinfo.FileInfo.to_json`, holding the upload's id, size, offset, metadata and storage details.
- **`.part` object.** A chunk smaller than the minimum part size is parked here until more data arrives.
- **Parts.** The last chunk of an upload with a known size is sent as a part whatever its size.

```python
from tusstore.fileinfo import FileInfo
from tusstore.s3store import S3Store

store = S3Store("my-bucket", service)
info = FileInfo(size=500, meta_data={"filename": "report.pdf"})

upload = store.new_upload(info)
with open("report.pdf", "rb") as body:
    written = upload.write_chunk(0, body)

if written == info.size:
    upload.finish_upload()
```

### New uploads and writing data

`new_upload(info)`:

- Uses `info.id` as the upload id, or generates a random id if it is empty.
- Raises `ValueError` if `info.size` is larger than `max_object_size`.
- Raises `RuntimeError` if the multipart upload or the `.info` object cannot be created.
- Gives the returned upload the id `<upload id>+<multipart id>`.

`write_chunk(offset, src)` reads the binary stream `src` and returns the number of bytes taken from it:

- It cuts the stream into parts in temporary files, using `tusstore.partproducer.PartProducer` in a background thread.
- It uploads the parts, with at most `max_buffered_parts` files waiting at a time.
- A previously parked `.part` object is read back first and deleted.

### Other operations on an upload

- `get_upload(id)` returns a handle to an existing upload. Nothing is fetched until it is needed.
- `get_info()` returns the upload's `FileInfo`. On first use it reads the `.info` object, and works out the offset from the uploaded parts plus any `.part` object. After that the result is cached. It raises `NotFoundError` if there is no `.info` object.
- `get_reader()` returns a stream of a finished upload's content. It raises:
  - `NotFoundError` if neither the object nor the multipart upload exists.
  - `HTTPError` with status 400 if the upload is not finished yet.
- `finish_upload()` completes the multipart upload. If no part exists, it uploads an empty part first.
- `declare_length(length)` sets the size of an upload that was created with a deferred length, and rewrites the `.info` object.
- `concat_uploads(partial_uploads)` makes this upload the joined content of the given uploads:
  - If every partial upload is at least `min_part_size`, it uses server-side part copies.
  - Otherwise it downloads the partial uploads into one temporary file and uploads that as a single object.
- `terminate()` aborts the multipart upload and deletes the content, `.part` and `.info` objects:
  - A missing multipart upload or a missing key is ignored.
  - Other failures are collected and raised together as one `MultiError`.

A metadata value may contain characters that are not allowed in an HTTP header value. On the multipart upload's S3 metadata each such character is replaced with `?`; `tusstore.s3backend.sanitize_metadata_value` does this replacement. The `.info` object keeps the original value.

### Configuration

`S3Store` is a dataclass. Its fields can be passed to the constructor or set afterwards:

| Field | Default |
| --- | --- |
| `object_prefix` | `""`: key prefix for content objects; a `/` is added if missing |
| `metadata_object_prefix` | `""`: key prefix for `.info` and `.part` objects; falls back to `object_prefix` |
| `min_part_size` | 5 MiB |
| `preferred_part_size` | 50 MiB |
| `max_part_size` | 5 GiB |
| `max_multipart_parts` | 10,000 |
| `max_object_size` | 5 TiB |
| `max_buffered_parts` | 20 |
| `temporary_directory` | `""`: the system's temporary directory |
| `disable_content_hashes` | `False` |

When `disable_content_hashes` is set, parts are sent with a plain HTTP `PUT` to a presigned URL. The service must then also have a `generate_presigned_url` method; without it the upload raises `RuntimeError`.

### Part sizing

`calc_optimal_part_size(size)` returns the part size for an upload of `size` bytes:

- If the upload fits into `max_multipart_parts` parts of `preferred_part_size`, it returns `preferred_part_size`.
- Otherwise it returns `size` divided by `max_multipart_parts`, rounded up.
- If that size is larger than `max_part_size`, it raises `ValueError`.

## Locking uploads

`tusstore.memorylocker.MemoryLocker` stops two requests from working on the same upload at the same time within one process. A `MemoryLock` can be used with `lock()` and `unlock()` or as a context manager.

```python
from tusstore.errors import FileLockedError
from tusstore.memorylocker import MemoryLocker

locker = MemoryLocker()
lock = locker.new_lock("upload-id")
try:
    with lock:
        ...  # work on the upload
except FileLockedError:
    ...  # another request holds the lock
```

Unlocking a lock that is not held does nothing. Locks exist only in memory and disappear when the process exits.

## Errors

All errors live in `tusstore.errors`:

- `HTTPError` carries a `message` and a `status_code`.
- `NotFoundError` (404) and `FileLockedError` (423) are `HTTPError`s.
- `MultiError` joins several errors into one message.
- `S3ServiceError` represents a service error identified by its `code`.
- `is_s3_error(err, code)` tells whether `err` is an `S3ServiceError` with that code.

## What this package does not do

This package contains no tus protocol handler and no HTTP server. It does not parse requests, answer them, or map errors to responses. It has no S3 client of its own and makes no S3 calls except through the service object you supply. The only exception is the plain `PUT` to presigned URLs when `disable_content_hashes` is set. There is also no command-line program.

## Running the tests

```
pip install -e ".[test]"
pytest
```