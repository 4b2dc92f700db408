import pytest

from tusstore.errors import (
    FileLockedError,
    HTTPError,
    MultiError,
    NotFoundError,
    S3ServiceError,
    is_s3_error,
)


def test_multi_error_message_single():
    err = MultiError([ValueError("AWS S3 Error (hello) for object uploadId: it's me.")])
    assert str(err) == "Multiple errors occurred:\n\tAWS S3 Error (hello) for object uploadId: it's me.\n"


def test_multi_error_keeps_errors_in_order():
    first = ValueError("one")
    second = RuntimeError("two")
    err = MultiError([first, second])
    assert err.errors == [first, second]
    assert str(err).splitlines()[1:] == ["\tone", "\ttwo"]
    assert str(err).startswith("Multiple errors occurred:\n")


def test_multi_error_can_be_raised():
    cause = ValueError("boom")
    err = MultiError([cause])
    assert str(err) == "Multiple errors occurred:\n\tboom\n"
    with pytest.raises(MultiError) as info:
        raise err
    assert info.value.errors == [cause]
    assert str(info.value) == "Multiple errors occurred:\n\tboom\n"


def test_http_error_carries_status():
    err = HTTPError("cannot stream non-finished upload", 400)
    assert str(err) == "cannot stream non-finished upload"
    assert err.status_code == 400


def test_not_found_is_http_error():
    err = NotFoundError()
    assert isinstance(err, HTTPError)
    assert err.status_code == 404


def test_file_locked_is_http_error():
    err = FileLockedError()
    assert isinstance(err, HTTPError)
    assert err.status_code == 423


def test_subclass_message_can_be_overridden():
    err = NotFoundError("missing")
    assert str(err) == "missing"
    assert err.status_code == NotFoundError.default_status_code


def test_s3_service_error_fields():
    err = S3ServiceError("NoSuchKey", "The specified key does not exist.")
    assert err.code == "NoSuchKey"
    assert err.message == "The specified key does not exist."


def test_is_s3_error_matches_code():
    err = S3ServiceError("NoSuchUpload", "The specified upload does not exist.")
    assert is_s3_error(err, "NoSuchUpload")
    assert not is_s3_error(err, "NoSuchKey")


def test_is_s3_error_rejects_other_exceptions():
    assert not is_s3_error(ValueError("NoSuchKey"), "NoSuchKey")
    assert not is_s3_error(None, "NoSuchKey")