"""Tests for canonical serialization and checksums."""

from __future__ import annotations

from fieldsync.core.hashing import canonical_dumps, compute_checksum


class TestCanonicalDumps:
    """Tests for canonical_dumps."""

    def test_key_order_independent(self) -> None:
        """Equal dicts serialize identically regardless of insertion order."""
        assert canonical_dumps({"a": 1, "b": 2}) == canonical_dumps({"b": 2, "a": 1})

    def test_compact(self) -> None:
        """No whitespace between tokens."""
        assert canonical_dumps({"a": [1, 2]}) == b'{"a":[1,2]}'

    def test_unicode_kept(self) -> None:
        """Non-ASCII text is encoded as UTF-8, not escaped."""
        assert canonical_dumps({"name": "Nakato Ńamu"}) == '{"name":"Nakato Ńamu"}'.encode()


class TestComputeChecksum:
    """Tests for compute_checksum."""

    def test_sha256_hex(self) -> None:
        """Should return the SHA-256 hex digest."""
        assert compute_checksum(b"") == (
            "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    def test_detects_single_change(self) -> None:
        """A one-byte change changes the checksum."""
        assert compute_checksum(b"abc") != compute_checksum(b"abd")
