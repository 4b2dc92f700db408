import json

import pytest

from tusstore.fileinfo import FileInfo

STORAGE = {"Type": "s3store", "Bucket": "bucket", "Key": "uploadId"}


def test_to_json_matches_stored_form():
    info = FileInfo(
        id="uploadId+multipartId",
        size=500,
        meta_data={"foo": "hello", "bar": "menü\r\nhi"},
        storage=dict(STORAGE),
    )
    expected = (
        '{"ID":"uploadId+multipartId","Size":500,"SizeIsDeferred":false,"Offset":0,'
        '"MetaData":{"bar":"menü\\r\\nhi","foo":"hello"},"IsPartial":false,"IsFinal":false,'
        '"PartialUploads":null,"Storage":{"Bucket":"bucket","Key":"uploadId","Type":"s3store"}}'
    ).encode("utf-8")
    encoded = info.to_json()
    assert encoded == expected
    assert len(encoded) == 241


def test_to_json_without_metadata():
    info = FileInfo(id="uploadId+multipartId", size=0, storage=dict(STORAGE))
    encoded = info.to_json()
    assert encoded == (
        b'{"ID":"uploadId+multipartId","Size":0,"SizeIsDeferred":false,"Offset":0,'
        b'"MetaData":null,"IsPartial":false,"IsFinal":false,"PartialUploads":null,'
        b'"Storage":{"Bucket":"bucket","Key":"uploadId","Type":"s3store"}}'
    )
    assert len(encoded) == 208


def test_to_json_escapes_html_characters():
    info = FileInfo(meta_data={"name": "<a&b>"})
    encoded = info.to_json()
    assert b"<" not in encoded and b">" not in encoded and b"&" not in encoded
    assert b"\\u003ca\\u0026b\\u003e" in encoded
    assert json.loads(encoded)["MetaData"]["name"] == "<a&b>"


def test_from_json_reads_stored_form():
    data = (
        '{"ID":"uploadId+multipartId","Size":500,"Offset":0,"MetaData":{"bar":"menü","foo":"hello"},'
        '"IsPartial":false,"IsFinal":false,"PartialUploads":null,'
        '"Storage":{"Bucket":"bucket","Key":"my/uploaded/files/uploadId","Type":"s3store"}}'
    ).encode("utf-8")
    info = FileInfo.from_json(data)
    assert info.id == "uploadId+multipartId"
    assert info.size == 500
    assert info.size_is_deferred is False
    assert info.meta_data == {"foo": "hello", "bar": "menü"}
    assert info.partial_uploads is None
    assert info.storage["Key"] == "my/uploaded/files/uploadId"


def test_from_json_deferred_size():
    data = (
        '{"ID":"uploadId+multipartId","Size":0,"SizeIsDeferred":true,"Offset":0,"MetaData":{},'
        '"IsPartial":false,"IsFinal":false,"PartialUploads":null,'
        '"Storage":{"Bucket":"bucket","Key":"uploadId","Type":"s3store"}}'
    )
    info = FileInfo.from_json(data)
    assert info.size_is_deferred is True
    assert info.meta_data == {}


def test_round_trip():
    info = FileInfo(
        id="abc+def",
        size=42,
        size_is_deferred=True,
        offset=7,
        meta_data={"z": "last", "a": "first"},
        is_partial=True,
        is_final=False,
        partial_uploads=["one", "two"],
        storage=dict(STORAGE),
    )
    assert FileInfo.from_json(info.to_json()) == info


def test_round_trip_defaults():
    info = FileInfo()
    assert FileInfo.from_json(info.to_json()) == info


def test_from_json_missing_fields_use_defaults():
    info = FileInfo.from_json(b'{"ID":"x"}')
    assert info == FileInfo(id="x")


def test_from_json_rejects_non_object():
    with pytest.raises(ValueError):
        FileInfo.from_json(b"[1, 2]")


def test_from_json_rejects_invalid_json():
    with pytest.raises(ValueError):
        FileInfo.from_json(b"{not json")