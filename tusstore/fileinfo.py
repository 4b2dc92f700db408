"""Description of an upload and its JSON form stored next to the data."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

_HTML_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def _escape(text: str) -> str:
    for char, escaped in _HTML_ESCAPES.items():
        text = text.replace(char, escaped)
    return text


def _sorted_map(mapping: dict[str, str] | None) -> dict[str, str] | None:
    return None if mapping is None else dict(sorted(mapping.items()))


@dataclass
class FileInfo:
    """General information about an upload."""

    id: str = ""
    size: int = 0
    size_is_deferred: bool = False
    offset: int = 0
    meta_data: dict[str, str] | None = None
    is_partial: bool = False
    is_final: bool = False
    partial_uploads: list[str] | None = None
    storage: dict[str, str] | None = None

    def to_json(self) -> bytes:
        """Encode as compact UTF-8 JSON with map keys in sorted order."""
        document = {
            "ID": self.id,
            "Size": self.size,
            "SizeIsDeferred": self.size_is_deferred,
            "Offset": self.offset,
            "MetaData": _sorted_map(self.meta_data),
            "IsPartial": self.is_partial,
            "IsFinal": self.is_final,
            "PartialUploads": self.partial_uploads,
            "Storage": _sorted_map(self.storage),
        }
        text = json.dumps(document, separators=(",", ":"), ensure_ascii=False)
        return _escape(text).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes | str) -> FileInfo:
        """Decode the JSON form; missing fields take their defaults."""
        document: Any = json.loads(data)
        if not isinstance(document, dict):
            raise ValueError("file info must be a JSON object")
        meta_data = document.get("MetaData")
        partial_uploads = document.get("PartialUploads")
        storage = document.get("Storage")
        return cls(
            id=document.get("ID") or "",
            size=int(document.get("Size") or 0),
            size_is_deferred=bool(document.get("SizeIsDeferred", False)),
            offset=int(document.get("Offset") or 0),
            meta_data=None if meta_data is None else dict(meta_data),
            is_partial=bool(document.get("IsPartial", False)),
            is_final=bool(document.get("IsFinal", False)),
            partial_uploads=None if partial_uploads is None else list(partial_uploads),
            storage=None if storage is None else dict(storage),
        )