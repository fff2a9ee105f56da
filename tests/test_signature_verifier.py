"""
Signature Verifier Tests
End-to-end flows: keystore, signing, fingerprint publication, verification
"""

import binascii
from datetime import datetime, timezone

import pytest

from certsign.services.signature import (
    DocumentSigner,
    FingerprintService,
    KeyMaterialStore,
    SignatureVerifier,
    VerificationError,
    VerificationErrorKind,
)

from .conftest import make_resolver, make_settings

SIGN_TIME = datetime(2026, 5, 4, 10, 15, 30, tzinfo=timezone.utc)


def _sign(document, key_material, signer=None):
    signer = signer or DocumentSigner()
    return signer.sign_with_details(document, key_material, "Test Signer", "Approval", "Online", sign_time=SIGN_TIME)


def _flip_hex(data: bytes, position: int) -> bytes:
    replacement = b"0" if data[position:position + 1] != b"0" else b"1"
    return data[:position] + replacement + data[position + 1:]


class TestEndToEnd:

    def test_keystore_sign_fingerprint_verify(self, tmp_path):
        """Test the full flow on a fresh keystore path"""
        settings = make_settings(tmp_path / "fresh" / "keystore.p12")
        store = KeyMaterialStore(settings, passphrase_resolver=make_resolver(settings))

        key_material = store.ensure()
        signed = _sign(b"0123456789", key_material).content
        published = FingerprintService.fingerprint(key_material.certificate)

        verifier = SignatureVerifier()
        result = verifier.verify(signed, expected_fingerprint=published)

        assert result.fingerprint_matches is True
        assert result.certificate_fingerprint == published
        assert result.signer_subject == settings.CERTIFICATE_SUBJECT

        tampered = bytes([signed[0] ^ 0x01]) + signed[1:]
        with pytest.raises(VerificationError) as exc_info:
            verifier.verify(tampered)
        assert exc_info.value.kind == VerificationErrorKind.DIGEST_MISMATCH

    def test_pdf_flow(self, key_material, verifier, sample_pdf):
        signed = _sign(sample_pdf, key_material).content

        assert verifier.is_valid(signed, FingerprintService.fingerprint(key_material.certificate))


class TestVerificationFailures:

    def test_unsigned_plain_document(self, verifier):
        with pytest.raises(VerificationError) as exc_info:
            verifier.verify(b"never signed")

        assert exc_info.value.kind == VerificationErrorKind.NOT_SIGNED

    def test_unsigned_pdf(self, verifier, sample_pdf):
        with pytest.raises(VerificationError) as exc_info:
            verifier.verify(sample_pdf)

        assert exc_info.value.kind == VerificationErrorKind.NOT_SIGNED

    def test_trailer_metadata_change_detected(self, verifier, key_material):
        signed = _sign(b"0123456789", key_material).content
        tampered = signed.replace(b'"Approval"', b'"Approvel"', 1)

        with pytest.raises(VerificationError) as exc_info:
            verifier.verify(tampered)

        assert exc_info.value.kind == VerificationErrorKind.DIGEST_MISMATCH

    def test_signature_value_change_detected(self, verifier, key_material):
        details = _sign(b"0123456789", key_material)
        encoded_signature = binascii.hexlify(details.signature.signature_bytes).upper()
        position = details.content.index(encoded_signature) + 10

        tampered = _flip_hex(details.content, position)

        with pytest.raises(VerificationError) as exc_info:
            verifier.verify(tampered)
        assert exc_info.value.kind == VerificationErrorKind.SIGNATURE_INVALID

    def test_pdf_signature_value_change_detected(self, verifier, key_material, sample_pdf):
        details = _sign(sample_pdf, key_material)
        encoded_signature = binascii.hexlify(details.signature.signature_bytes).upper()
        # /Contents hex may be written in either case
        position = details.content.upper().index(encoded_signature) + 10

        tampered = _flip_hex(details.content, position)

        with pytest.raises(VerificationError) as exc_info:
            verifier.verify(tampered)
        assert exc_info.value.kind == VerificationErrorKind.SIGNATURE_INVALID

    def test_garbage_placeholder_is_malformed(self, verifier, key_material):
        details = _sign(b"0123456789", key_material)
        start = details.byte_range[1] + 1
        content = details.content
        tampered = content[:start] + b"3082" + b"F" * 60 + content[start + 64:]

        with pytest.raises(VerificationError) as exc_info:
            verifier.verify(tampered)
        assert exc_info.value.kind == VerificationErrorKind.MALFORMED

    def test_broken_trailer_header_is_malformed(self, verifier, key_material):
        signed = _sign(b"0123456789", key_material).content
        tampered = signed.replace(b'"ByteRange"', b'"ByteRangX"', 1)

        with pytest.raises(VerificationError) as exc_info:
            verifier.verify(tampered)
        assert exc_info.value.kind == VerificationErrorKind.MALFORMED


class TestAppendedContent:
    """Bytes added after signing verify cryptographically but are not covered"""

    def test_appended_bytes_not_covered(self, verifier, key_material):
        signed = _sign(b"0123456789", key_material).content

        result = verifier.verify(signed + b"INJECTED CONTENT")

        assert result.covers_whole_document is False

    def test_appended_bytes_not_valid(self, verifier, key_material):
        signed = _sign(b"0123456789", key_material).content
        published = FingerprintService.fingerprint(key_material.certificate)

        assert verifier.is_valid(signed + b"INJECTED CONTENT") is False
        assert verifier.is_valid(signed + b"INJECTED CONTENT", published) is False
        assert verifier.is_valid(signed, published) is True

    def test_appended_bytes_after_pdf_not_valid(self, verifier, key_material, sample_pdf):
        signed = _sign(sample_pdf, key_material).content

        assert verifier.is_valid(signed + b"\n% INJECTED CONTENT\n") is False

    def test_report_for_appended_bytes(self, verifier, key_material):
        signed = _sign(b"0123456789", key_material).content

        report = verifier.create_verification_report(
            signed + b"INJECTED CONTENT", FingerprintService.fingerprint(key_material.certificate)
        )

        assert report["fingerprint_matches"] is True
        assert report["signature_info"]["covers_whole_document"] is False
        assert report["overall_valid"] is False
        assert report["warnings"]


class TestFingerprintComparison:

    def test_mismatched_fingerprint(self, verifier, key_material, other_key_material):
        signed = _sign(b"0123456789", key_material).content
        other = FingerprintService.fingerprint(other_key_material.certificate)

        result = verifier.verify(signed, expected_fingerprint=other)

        assert result.fingerprint_matches is False
        assert verifier.is_valid(signed, other) is False
        assert verifier.is_valid(signed) is True

    def test_fingerprint_comparison_ignores_case(self, verifier, key_material):
        signed = _sign(b"0123456789", key_material).content
        published = FingerprintService.fingerprint(key_material.certificate).lower()

        assert verifier.verify(signed, expected_fingerprint=published).fingerprint_matches is True


class TestVerificationReport:

    def test_report_for_valid_signature(self, verifier, key_material):
        signed = _sign(b"0123456789", key_material).content

        report = verifier.create_verification_report(
            signed, FingerprintService.fingerprint(key_material.certificate)
        )

        assert report["overall_valid"] is True
        assert report["fingerprint_matches"] is True
        assert report["signature_info"]["signer_name"] == "Test Signer"
        assert report["signature_info"]["signing_time"] == SIGN_TIME.isoformat()
        assert report["signature_info"]["covers_whole_document"] is True
        assert report["certificate_info"]["self_signed"] is True
        assert report["certificate_info"]["fingerprint_sha256"] == FingerprintService.fingerprint(
            key_material.certificate
        )
        assert report["certificate_pem"].startswith("-----BEGIN CERTIFICATE-----")

    def test_report_for_unsigned_document(self, verifier):
        report = verifier.create_verification_report(b"never signed")

        assert report["overall_valid"] is False
        assert report["error"]["kind"] == "not_signed"
        assert "signature_info" not in report

    def test_supported_algorithms(self, verifier):
        assert "sha512" in verifier.get_supported_algorithms()
