# tests/test_signing.py
"""
Test payload signing.

Signatures must match an independently computed HMAC-SHA256 over the
exact bytes that are sent.
"""

import hashlib
import hmac

from allylab_notify.webhooks.signing import sign, signature_header, verify_signature


class TestSign:
    """Tests for HMAC-SHA256 signing."""

    def test_matches_independent_hmac(self):
        """Signature equals hmac.new(secret, body, sha256)."""
        body = b'{"event":"scan.completed","data":{"score":92}}'
        expected = hmac.new(b"s3cret", body, hashlib.sha256).hexdigest()

        assert sign("s3cret", body) == expected

    def test_header_has_prefix(self):
        """Header value is sha256=<hex>."""
        value = signature_header("s3cret", b"{}")

        assert value.startswith("sha256=")
        assert len(value) == len("sha256=") + 64

    def test_body_bytes_matter(self):
        """Re-serialized (whitespace-changed) bodies produce different signatures."""
        assert sign("k", b'{"a":1}') != sign("k", b'{"a": 1}')


class TestVerify:
    """Tests for receiver-side verification."""

    def test_valid_signature(self):
        body = b'{"event":"test"}'
        assert verify_signature("k", body, signature_header("k", body))

    def test_wrong_secret(self):
        body = b'{"event":"test"}'
        assert not verify_signature("other", body, signature_header("k", body))

    def test_missing_or_malformed_header(self):
        body = b"{}"
        assert not verify_signature("k", body, "")
        assert not verify_signature("k", body, sign("k", body))  # no prefix
