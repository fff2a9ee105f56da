"""
CMS SignedData assembly and parsing for detached document signatures.

The signature covers the signed attributes (content type, signing time and
the message digest of the document's byte range), not the content itself.
"""
from datetime import datetime
from typing import Any, Optional, Sequence, Tuple

from asn1crypto import algos, cms, core
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from ...models.signature import KeyMaterial

DIGEST_ALGORITHM = "sha512"

HASH_ALGORITHMS = {
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
}


def hash_algorithm(name: str) -> hashes.HashAlgorithm:
    try:
        return HASH_ALGORITHMS[name]()
    except KeyError:
        raise ValueError(f"Unsupported digest algorithm: {name}")


def digest_byte_range(data: bytes, byte_range: Sequence[int], algorithm: str = DIGEST_ALGORITHM) -> bytes:
    """
    Hash the two segments described by a /ByteRange [offset1 length1 offset2 length2].
    """
    offset1, length1, offset2, length2 = byte_range
    if offset1 < 0 or length1 < 0 or offset2 < offset1 + length1 or offset2 + length2 > len(data):
        raise ValueError(f"Byte range {list(byte_range)} does not fit a {len(data)}-byte document")

    digest = hashes.Hash(hash_algorithm(algorithm))
    digest.update(data[offset1:offset1 + length1])
    digest.update(data[offset2:offset2 + length2])
    return digest.finalize()


def to_asn1_certificate(certificate: x509.Certificate) -> asn1_x509.Certificate:
    return asn1_x509.Certificate.load(certificate.public_bytes(serialization.Encoding.DER))


def _signing_time_value(signing_time: datetime) -> cms.Time:
    # UTCTime only covers 1950-2049
    if signing_time.year < 2050:
        return cms.Time({'utc_time': core.UTCTime(signing_time)})
    return cms.Time({'generalized_time': core.GeneralizedTime(signing_time)})


def build_signed_attributes(message_digest: bytes, signing_time: datetime) -> cms.CMSAttributes:
    attributes = [
        cms.CMSAttribute({
            'type': cms.CMSAttributeType('content_type'),
            'values': cms.SetOfContentType([cms.ContentType('data')]),
        }),
        cms.CMSAttribute({
            'type': cms.CMSAttributeType('signing_time'),
            'values': cms.SetOfTime([_signing_time_value(signing_time)]),
        }),
        cms.CMSAttribute({
            'type': cms.CMSAttributeType('message_digest'),
            'values': cms.SetOfOctetString([core.OctetString(message_digest)]),
        }),
    ]
    # DER: members of a SET OF appear in ascending order of their encodings
    return cms.CMSAttributes(sorted(attributes, key=lambda attribute: attribute.dump()))


def build_signed_data(
    message_digest: bytes,
    key_material: KeyMaterial,
    signing_time: datetime,
    algorithm: str = DIGEST_ALGORITHM
) -> Tuple[bytes, bytes]:
    """
    Build a detached CMS SignedData over a precomputed message digest.

    Args:
        message_digest: Digest of the document's byte range
        key_material: Signing key and certificate chain (leaf first)
        signing_time: Value of the signingTime signed attribute
        algorithm: Digest algorithm name

    Returns:
        Tuple of (DER-encoded ContentInfo, raw RSA signature value)
    """
    certificates = [to_asn1_certificate(c) for c in key_material.certificate_chain]
    leaf = certificates[0]

    signed_attrs = build_signed_attributes(message_digest, signing_time)
    # The signature is computed over the SET OF encoding, not the [0] IMPLICIT one
    signature = key_material.private_key.sign(
        signed_attrs.dump(),
        padding.PKCS1v15(),
        hash_algorithm(algorithm)
    )

    signer_info = cms.SignerInfo({
        'version': 'v1',
        'sid': cms.SignerIdentifier({
            'issuer_and_serial_number': cms.IssuerAndSerialNumber({
                'issuer': leaf.issuer,
                'serial_number': leaf.serial_number,
            })
        }),
        'digest_algorithm': algos.DigestAlgorithm({'algorithm': algorithm}),
        'signed_attrs': signed_attrs,
        'signature_algorithm': algos.SignedDigestAlgorithm({'algorithm': 'rsassa_pkcs1v15'}),
        'signature': signature,
    })

    signed_data = cms.SignedData({
        'version': 'v1',
        'digest_algorithms': cms.DigestAlgorithms([algos.DigestAlgorithm({'algorithm': algorithm})]),
        'encap_content_info': {'content_type': 'data'},
        'certificates': cms.CertificateSet([
            cms.CertificateChoices(name='certificate', value=c) for c in certificates
        ]),
        'signer_infos': cms.SignerInfos([signer_info]),
    })

    content_info = cms.ContentInfo({'content_type': 'signed_data', 'content': signed_data})
    return content_info.dump(), signature


def load_signed_data(encoded: bytes) -> cms.SignedData:
    """Parse a ContentInfo, tolerating the zero padding left in a placeholder."""
    content_info = cms.ContentInfo.load(encoded, strict=False)
    if content_info['content_type'].native != 'signed_data':
        raise ValueError(f"Expected signed_data, found {content_info['content_type'].native}")
    return content_info['content']


def trim_signed_data(encoded: bytes) -> bytes:
    """Return the ContentInfo DER without the placeholder's trailing zeros."""
    return cms.ContentInfo.load(encoded, strict=False).dump()


def signed_attributes_bytes(signer_info: cms.SignerInfo) -> bytes:
    """Re-tag the [0] IMPLICIT signed attributes as the SET OF that was signed."""
    encoded = signer_info['signed_attrs'].dump()
    return b'\x31' + encoded[1:]


def find_attribute(signer_info: cms.SignerInfo, name: str) -> Optional[Any]:
    for attribute in signer_info['signed_attrs']:
        if attribute['type'].native == name:
            return attribute['values'][0].native
    return None


def find_signer_certificate(signed_data: cms.SignedData, signer_info: cms.SignerInfo) -> asn1_x509.Certificate:
    sid = signer_info['sid']
    if sid.name != 'issuer_and_serial_number':
        raise ValueError(f"Unsupported signer identifier: {sid.name}")

    issuer = sid.chosen['issuer']
    serial_number = sid.chosen['serial_number'].native
    for choice in signed_data['certificates']:
        if choice.name != 'certificate':
            continue
        certificate = choice.chosen
        if certificate.issuer == issuer and certificate.serial_number == serial_number:
            return certificate
    raise ValueError("Signer certificate is not embedded in the signature")
