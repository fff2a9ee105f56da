"""
Signed Data Tests
Builds detached CMS structures directly and reads them back with asn1crypto
"""

import hashlib
from datetime import datetime, timezone

import pytest
from asn1crypto import cms
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from certsign.services.signature.signed_data import (
    build_signed_data,
    digest_byte_range,
    find_attribute,
    find_signer_certificate,
    load_signed_data,
    signed_attributes_bytes,
    trim_signed_data,
)

SIGN_TIME = datetime(2026, 5, 4, 10, 15, 30, tzinfo=timezone.utc)
MESSAGE_DIGEST = hashlib.sha512(b"0123456789").digest()


class TestBuildSignedData:

    def test_content_info_structure(self, key_material):
        encoded, _ = build_signed_data(MESSAGE_DIGEST, key_material, SIGN_TIME)

        content_info = cms.ContentInfo.load(encoded, strict=True)
        signed_data = content_info['content']

        assert content_info['content_type'].native == 'signed_data'
        assert signed_data['version'].native == 'v1'
        assert signed_data['encap_content_info']['content_type'].native == 'data'
        assert signed_data['encap_content_info']['content'].native is None
        assert [a['algorithm'].native for a in signed_data['digest_algorithms']] == ['sha512']

    def test_signed_attributes(self, key_material):
        encoded, _ = build_signed_data(MESSAGE_DIGEST, key_material, SIGN_TIME)

        signer_info = load_signed_data(encoded)['signer_infos'][0]

        assert find_attribute(signer_info, 'content_type') == 'data'
        assert find_attribute(signer_info, 'signing_time') == SIGN_TIME
        assert find_attribute(signer_info, 'message_digest') == MESSAGE_DIGEST

    def test_signature_over_signed_attributes(self, key_material):
        encoded, signature = build_signed_data(MESSAGE_DIGEST, key_material, SIGN_TIME)

        signer_info = load_signed_data(encoded)['signer_infos'][0]

        assert signer_info['signature'].native == signature
        key_material.public_key.verify(
            signature,
            signed_attributes_bytes(signer_info),
            padding.PKCS1v15(),
            hashes.SHA512()
        )

    def test_signer_certificate_embedded(self, key_material):
        encoded, _ = build_signed_data(MESSAGE_DIGEST, key_material, SIGN_TIME)

        signed_data = load_signed_data(encoded)
        certificate = find_signer_certificate(signed_data, signed_data['signer_infos'][0])

        assert certificate.serial_number == key_material.certificate.serial_number

    def test_generalized_time_from_2050(self, key_material):
        late = datetime(2055, 6, 1, 0, 0, 0, tzinfo=timezone.utc)

        encoded, _ = build_signed_data(MESSAGE_DIGEST, key_material, late)

        signer_info = load_signed_data(encoded)['signer_infos'][0]
        for attribute in signer_info['signed_attrs']:
            if attribute['type'].native == 'signing_time':
                assert attribute['values'][0].name == 'generalized_time'
        assert find_attribute(signer_info, 'signing_time') == late

    def test_unsupported_digest_algorithm(self, key_material):
        with pytest.raises(ValueError):
            build_signed_data(MESSAGE_DIGEST, key_material, SIGN_TIME, algorithm="md5")


class TestParsing:

    def test_padded_placeholder_is_loaded_and_trimmed(self, key_material):
        encoded, _ = build_signed_data(MESSAGE_DIGEST, key_material, SIGN_TIME)
        padded = encoded + b"\x00" * 64

        assert load_signed_data(padded)['signer_infos'][0]['signature'].native
        assert trim_signed_data(padded) == encoded

    def test_wrong_content_type(self):
        data = cms.ContentInfo({'content_type': 'data', 'content': b"plain"}).dump()

        with pytest.raises(ValueError):
            load_signed_data(data)


class TestDigestByteRange:

    def test_hashes_both_segments(self):
        data = b"AAAA<00>BBBB"

        assert digest_byte_range(data, [0, 4, 8, 4]) == hashlib.sha512(b"AAAABBBB").digest()

    def test_range_past_end_rejected(self):
        with pytest.raises(ValueError):
            digest_byte_range(b"short", [0, 2, 3, 10])
