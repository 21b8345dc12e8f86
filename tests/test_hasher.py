"""
Tests for canonical document encoding.

Pinned bytes are referenced forever from the ledger: the same document
must always produce the same bytes and the same content identifier.
"""

import json
from datetime import datetime, timezone

import pytest

from vetchain.core import CanonicalSerializationError, Hasher
from vetchain.schemas import HealthState, MedicalRecord


class TestHasher:
    """Test canonical serialization."""

    def test_sorted_keys(self):
        """Key order doesn't affect bytes."""
        assert Hasher.encode({"b": 2, "a": 1}) == Hasher.encode({"a": 1, "b": 2})

    def test_recursively_sorted_keys(self):
        data1 = {"outer": {"z": 1, "a": 2}, "inner": {"b": 3, "a": 4}}
        data2 = {"inner": {"a": 4, "b": 3}, "outer": {"a": 2, "z": 1}}
        assert Hasher.canonicalize(data1) == Hasher.canonicalize(data2)

    def test_null_handling(self):
        """Nulls are omitted from canonical form."""
        assert Hasher.canonicalize({"a": 1, "b": None}) == Hasher.canonicalize({"a": 1})

    def test_empty_values_preserved(self):
        assert Hasher.canonicalize({"a": ""}) == '{"a":""}'
        assert Hasher.canonicalize({"a": []}) == '{"a":[]}'

    def test_compact_and_unicode(self):
        assert Hasher.canonicalize({"nota": "Características"}) == '{"nota":"Características"}'

    def test_enum_serialized_by_value(self):
        """IntEnum members serialize as their value."""
        assert json.loads(Hasher.canonicalize({"estado": HealthState.ENFERMO})) == {"estado": 1}

    def test_datetime_millisecond_utc(self):
        dt = datetime(2024, 1, 15, 10, 30, 0, 123456, tzinfo=timezone.utc)
        assert Hasher.canonicalize({"fecha": dt}) == '{"fecha":"2024-01-15T10:30:00.123Z"}'

    def test_naive_datetime_rejected(self):
        with pytest.raises(CanonicalSerializationError):
            Hasher.canonicalize({"fecha": datetime(2024, 1, 15)})

    def test_non_finite_float_rejected(self):
        with pytest.raises(CanonicalSerializationError):
            Hasher.canonicalize({"peso": float("nan")})

    def test_top_level_must_be_object(self):
        with pytest.raises(CanonicalSerializationError):
            Hasher.canonicalize(["a", "b"])

    def test_models_serialize_by_alias(self):
        record = MedicalRecord(
            asset_id=7,
            timestamp="2024-01-01T00:00:00.000Z",
            diagnosis="x",
            author_address="0x" + "11" * 20,
        )
        document = json.loads(Hasher.canonicalize(record))
        assert document["chipId"] == 7
        assert document["diagnostico"] == "x"
        assert "asset_id" not in document


class TestContentIds:

    def test_identical_bytes_identical_id(self):
        assert Hasher.content_id(b"luna") == Hasher.content_id(b"luna")

    def test_different_bytes_different_id(self):
        assert Hasher.content_id(b"luna") != Hasher.content_id(b"michi")

    def test_id_format(self):
        cid = Hasher.content_id(b"luna")
        assert cid.startswith(Hasher.CID_PREFIX)
        assert cid == cid.lower()
        assert "=" not in cid

    def test_transaction_hash_format(self):
        tx_hash = Hasher.transaction_hash({"function": "mint", "nonce": 0})
        assert tx_hash.startswith("0x")
        assert len(tx_hash) == 66
