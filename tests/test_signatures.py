# tests/test_signatures.py
"""Tests for RSA keys and HTTP signatures."""

from email.utils import parsedate_to_datetime

import pytest

from apcore.activitypub.keys import DEFAULT_KEY_SIZE, KeyPair, SigningKey, VerifyingKey
from apcore.activitypub.signatures import (
    RequestSigner,
    SignatureParams,
    SignatureVerifier,
    digest_header,
    signing_string,
    verify_signature,
)
from apcore.errors import SignatureError, SignatureErrorKind
from apcore.locator import ResourceLocator

DATE = "Tue, 07 Jun 2024 20:51:35 GMT"
NOW = parsedate_to_datetime(DATE).timestamp()
INBOX = ResourceLocator.parse("https://remote.example/users/bob/inbox")
KEY_ID = ResourceLocator.parse("https://local.example/users/alice#main-key")
BODY = b'{"type":"Follow"}'


@pytest.fixture
def signer(key_pair):
    return RequestSigner(key_pair.private_key, KEY_ID)


@pytest.fixture
def signed(signer):
    """Headers of a signed POST to INBOX."""
    return signer.sign("POST", INBOX, BODY, date=DATE)


def verify(headers, body=BODY, key=None, method="POST", target="/users/bob/inbox", now=NOW, **kwargs):
    return verify_signature(method, target, headers, body, key, now=now, **kwargs)


class TestKeys:
    """Test key generation and PEM handling."""

    def test_both_public_formats_decode(self, key_pair):
        pkcs1 = key_pair.public_key.to_pkcs1_pem()
        pkcs8 = key_pair.public_key.to_pkcs8_pem()
        assert pkcs1.startswith("-----BEGIN RSA PUBLIC KEY-----")
        assert pkcs8.startswith("-----BEGIN PUBLIC KEY-----")
        assert VerifyingKey.from_pem(pkcs1) == VerifyingKey.from_pem(pkcs8) == key_pair.public_key

    def test_private_formats_decode(self, key_pair):
        for pem in (key_pair.private_key.to_pkcs1_pem(), key_pair.private_key.to_pkcs8_pem()):
            assert SigningKey.from_pem(pem).public_key() == key_pair.public_key

    def test_pair_from_private_pem(self, key_pair):
        private_pem, public_pem = key_pair.to_pem()
        restored = KeyPair.from_private_pem(private_pem)
        assert restored.public_key == VerifyingKey.from_pem(public_pem)

    def test_undecodable_key(self):
        with pytest.raises(SignatureError) as exc:
            VerifyingKey.from_pem("-----BEGIN PUBLIC KEY-----\nnope\n-----END PUBLIC KEY-----\n")
        assert exc.value.kind == SignatureErrorKind.KEY_DECODE

    def test_default_key_size(self):
        assert DEFAULT_KEY_SIZE == 4096

    def test_key_size(self, key_pair):
        assert key_pair.private_key.key_size == 2048


class TestSigningString:
    """Test the canonical string."""

    def test_digest_of_empty_body(self):
        assert digest_header(b"") == "SHA-256=47DEQpj8HBSa+/TImW+5JCeuQeRkm5NMpJWZG3hSuFU="

    def test_lines_in_order(self):
        assert signing_string("POST", "/users/bob/inbox", "remote.example", DATE, "SHA-256=abc") == (
            "(request-target): post /users/bob/inbox\n"
            "host: remote.example\n"
            f"date: {DATE}\n"
            "digest: SHA-256=abc"
        )

    def test_no_digest_line_without_body(self):
        assert "digest" not in signing_string("GET", "/users/bob", "remote.example", DATE)


class TestSign:
    """Test outbound signing."""

    def test_headers(self, signed):
        assert signed["Host"] == "remote.example"
        assert signed["Date"] == DATE
        assert signed["Digest"] == digest_header(BODY)
        params = SignatureParams.from_header(signed["Signature"])
        assert params.key_id == str(KEY_ID)
        assert params.algorithm == "rsa-sha256"
        assert params.headers == ["(request-target)", "host", "date", "digest"]

    def test_get_has_no_digest(self, signer):
        headers = signer.sign("GET", INBOX, date=DATE)
        assert "Digest" not in headers
        assert SignatureParams.from_header(headers["Signature"]).headers == [
            "(request-target)", "host", "date",
        ]

    def test_default_date_is_http_date(self, signer):
        headers = signer.sign("GET", INBOX)
        assert headers["Date"].endswith(" GMT")


class TestVerify:
    """Test inbound verification."""

    def test_round_trip(self, signed, key_pair):
        params = verify(signed, key=key_pair.public_key)
        assert params.key_id == str(KEY_ID)

    def test_accepts_pem_and_any_header_case(self, signed, key_pair):
        lowered = {k.lower(): v for k, v in signed.items()}
        verify(lowered, key=key_pair.public_key.to_pkcs1_pem())

    def test_get_round_trip(self, signer, key_pair):
        headers = signer.sign("GET", INBOX, date=DATE)
        verify(headers, body=None, key=key_pair.public_key, method="GET")

    def test_mutated_body(self, signed, key_pair):
        with pytest.raises(SignatureError) as exc:
            verify(signed, body=b'{"type":"Undo"}', key=key_pair.public_key)
        assert exc.value.kind == SignatureErrorKind.DIGEST_MISMATCH

    def test_body_and_digest_header_both_swapped(self, signed, key_pair):
        forged = dict(signed, Digest=digest_header(b"other"))
        with pytest.raises(SignatureError) as exc:
            verify(forged, body=b"other", key=key_pair.public_key)
        assert exc.value.kind == SignatureErrorKind.INVALID

    def test_wrong_key(self, signed, other_key_pair):
        with pytest.raises(SignatureError) as exc:
            verify(signed, key=other_key_pair.public_key)
        assert exc.value.kind == SignatureErrorKind.INVALID

    def test_other_path(self, signed, key_pair):
        with pytest.raises(SignatureError) as exc:
            verify(signed, key=key_pair.public_key, target="/users/carol/inbox")
        assert exc.value.kind == SignatureErrorKind.INVALID

    def test_other_host(self, signed, key_pair):
        with pytest.raises(SignatureError) as exc:
            verify(dict(signed, Host="evil.example"), key=key_pair.public_key)
        assert exc.value.kind == SignatureErrorKind.INVALID

    def test_stale_date(self, signed, key_pair):
        with pytest.raises(SignatureError) as exc:
            verify(signed, key=key_pair.public_key, now=NOW + 301)
        assert exc.value.kind == SignatureErrorKind.STALE_DATE

    def test_window_is_configurable(self, signed, key_pair):
        verify(signed, key=key_pair.public_key, now=NOW + 3000, window=3600)

    def test_unsigned_digest(self, signer, key_pair):
        headers = signer.sign("POST", INBOX, None, date=DATE)
        headers["Digest"] = digest_header(BODY)
        with pytest.raises(SignatureError) as exc:
            verify(headers, key=key_pair.public_key)
        assert exc.value.kind == SignatureErrorKind.UNSIGNED_DIGEST

    def test_unsigned_request(self, key_pair):
        with pytest.raises(SignatureError) as exc:
            verify({"Host": "remote.example", "Date": DATE}, key=key_pair.public_key)
        assert exc.value.kind == SignatureErrorKind.MISSING_HEADER

    def test_malformed_header(self, signed, key_pair):
        with pytest.raises(SignatureError) as exc:
            verify(dict(signed, Signature="keyId=unquoted"), key=key_pair.public_key)
        assert exc.value.kind == SignatureErrorKind.MALFORMED

    def test_unsupported_algorithm(self, signed, key_pair):
        header = signed["Signature"].replace('algorithm="rsa-sha256"', 'algorithm="hmac-sha256"')
        with pytest.raises(SignatureError) as exc:
            verify(dict(signed, Signature=header), key=key_pair.public_key)
        assert exc.value.kind == SignatureErrorKind.UNSUPPORTED_ALGORITHM

    def test_hs2019_accepted(self, signed, key_pair):
        header = signed["Signature"].replace('algorithm="rsa-sha256"', 'algorithm="hs2019"')
        verify(dict(signed, Signature=header), key=key_pair.public_key)

    def test_undecodable_key_pem(self, signed):
        with pytest.raises(SignatureError) as exc:
            verify(signed, key="not a pem")
        assert exc.value.kind == SignatureErrorKind.KEY_DECODE


class TestSignatureVerifier:
    """Test key lookup by keyId."""

    def test_looks_up_key_by_id(self, signed, key_pair):
        seen = []

        def lookup(key_id):
            seen.append(key_id)
            return key_pair.public_key.to_pkcs8_pem()

        verifier = SignatureVerifier(lookup)
        params = verifier.verify("POST", "/users/bob/inbox", signed, BODY, now=NOW)

        assert params.key_id == str(KEY_ID)
        assert seen == [KEY_ID]

    def test_key_id_must_be_url(self, signed, key_pair):
        header = signed["Signature"].replace(str(KEY_ID), "main-key")
        verifier = SignatureVerifier(lambda key_id: key_pair.public_key)
        with pytest.raises(SignatureError) as exc:
            verifier.verify("POST", "/users/bob/inbox", dict(signed, Signature=header), BODY, now=NOW)
        assert exc.value.kind == SignatureErrorKind.MALFORMED
