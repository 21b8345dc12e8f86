"""
Canonical document encoding and content identifiers.

Metadata and medical-record documents are pinned once and referenced
from the ledger forever, so the uploaded bytes must depend only on the
document itself:

- object keys sorted at every level
- `None` members dropped; empty strings and lists kept
- compact separators, UTF-8 with non-ASCII kept as-is
- aware datetimes as UTC `YYYY-MM-DDTHH:MM:SS.mmmZ`, dates as `YYYY-MM-DD`
- enums by value, pydantic models by alias
- no NaN/Infinity, no bytes, no sets; the top level is an object
"""

import base64
import hashlib
import json
import math
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any


class CanonicalSerializationError(Exception):
    """A document cannot be encoded deterministically."""


def _utc_millis(dt: datetime, where: str) -> str:
    if dt.tzinfo is None:
        raise CanonicalSerializationError(f"{where}: naive datetime, attach a timezone")
    dt = dt.astimezone(timezone.utc)
    return f"{dt:%Y-%m-%dT%H:%M:%S}.{dt.microsecond // 1000:03d}Z"


def _normalize(value: Any, where: str) -> Any:
    if value is None or isinstance(value, (str, bool)):
        return value
    if isinstance(value, Enum):
        return _normalize(value.value, where)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise CanonicalSerializationError(f"{where}: {value} has no JSON form")
        return value
    if isinstance(value, datetime):
        return _utc_millis(value, where)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_normalize(item, f"{where}[{i}]") for i, item in enumerate(value)]
    if isinstance(value, dict):
        return _normalize_object(value, where)
    if hasattr(value, "model_dump"):
        return _normalize_object(value.model_dump(mode="python", by_alias=True), where)
    if isinstance(value, (bytes, bytearray)):
        raise CanonicalSerializationError(f"{where}: upload binary content as a blob and reference its CID")
    raise CanonicalSerializationError(f"{where}: unsupported type {type(value).__name__}")


def _normalize_object(obj: dict, where: str) -> dict:
    out = {}
    for key in obj:
        if not isinstance(key, str):
            raise CanonicalSerializationError(f"{where or '<root>'}: non-string key {key!r}")
    for key in sorted(obj):
        item = _normalize(obj[key], f"{where}.{key}" if where else key)
        if item is not None:
            out[key] = item
    return out


class Hasher:
    """
    Canonical bytes for upload, plus the local identifiers derived from them.

    The in-memory content store names blobs with `content_id`; the
    in-memory ledger names transactions with `transaction_hash`.
    """

    CID_PREFIX = "bafk"

    @classmethod
    def canonicalize(cls, document: Any) -> str:
        if hasattr(document, "model_dump"):
            document = document.model_dump(mode="python", by_alias=True)
        if not isinstance(document, dict):
            raise CanonicalSerializationError(
                f"Documents must be objects, got {type(document).__name__}"
            )
        return json.dumps(
            _normalize_object(document, ""),
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )

    @classmethod
    def encode(cls, document: Any) -> bytes:
        return cls.canonicalize(document).encode("utf-8")

    @classmethod
    def content_id(cls, content: bytes) -> str:
        """Lowercase unpadded base32 of the SHA-256, behind a multibase-style prefix."""
        digest = hashlib.sha256(content).digest()
        return cls.CID_PREFIX + base64.b32encode(digest).decode("ascii").rstrip("=").lower()

    @classmethod
    def transaction_hash(cls, payload: dict) -> str:
        return "0x" + hashlib.sha256(cls.encode(payload)).hexdigest()
