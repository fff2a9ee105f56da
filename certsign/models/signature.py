"""
Data models for key material, signature requests and embedded signatures.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import BaseModel, Field, validator

# Signature dictionary identifiers ("self-signed PKI-lite", "detached CMS")
FILTER_ADOBE_PPKLITE = "Adobe.PPKLite"
SUBFILTER_ADBE_PKCS7_DETACHED = "adbe.pkcs7.detached"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _spki(public_key) -> bytes:
    return public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    )


class KeyMaterial(BaseModel):
    """
    Private key, public key and certificate chain (leaf first).

    Instances are immutable. The private key must belong to the leaf
    certificate.
    """
    private_key: rsa.RSAPrivateKey = Field(repr=False)
    public_key: rsa.RSAPublicKey = Field(repr=False)
    certificate_chain: Tuple[x509.Certificate, ...]

    @validator('certificate_chain')
    def check_chain(cls, v, values):
        if not v:
            raise ValueError("certificate chain must contain at least the leaf certificate")

        private_key = values.get('private_key')
        if private_key is not None and _spki(private_key.public_key()) != _spki(v[0].public_key()):
            raise ValueError("private key does not match the leaf certificate")
        return v

    @property
    def certificate(self) -> x509.Certificate:
        """The leaf certificate"""
        return self.certificate_chain[0]

    class Config:
        arbitrary_types_allowed = True
        frozen = True


class SignatureRequest(BaseModel):
    """One signing call: the unsigned document and the caller-supplied metadata"""
    document_bytes: bytes = Field(repr=False)
    signer_display_name: str
    reason: str
    location: str
    sign_time: datetime = Field(default_factory=_utcnow)

    @validator('sign_time')
    def ensure_aware(cls, v):
        # UTCTime in the signed attributes needs an explicit zone
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    class Config:
        frozen = True


class SignedAttributes(BaseModel):
    """The CMS signed attributes covered by the RSA signature"""
    content_type: str = "data"
    signing_time: datetime
    message_digest: bytes


class EmbeddedSignature(BaseModel):
    """The signature as written into (or read back from) a document"""
    filter_id: str = FILTER_ADOBE_PPKLITE
    sub_filter_id: str = SUBFILTER_ADBE_PKCS7_DETACHED
    digest_algorithm: str = "sha512"
    signer_display_name: Optional[str] = None
    reason: Optional[str] = None
    location: Optional[str] = None
    signed_attributes: SignedAttributes
    signature_bytes: bytes = Field(repr=False)
    signed_data: bytes = Field(repr=False)


class SignedDocument(BaseModel):
    """Output of DocumentSigner.sign_with_details"""
    content: bytes = Field(repr=False)
    signature: EmbeddedSignature
    byte_range: List[int]


class Fingerprint(BaseModel):
    """SHA-256 over the certificate's DER encoding"""
    digest: bytes
    hex_digest: str

    def __str__(self):
        return self.hex_digest


class VerificationResult(BaseModel):
    """Outcome of a successful signature verification"""
    signature: EmbeddedSignature
    byte_range: List[int]
    signer_subject: str
    certificate_fingerprint: str
    covers_whole_document: bool
    fingerprint_matches: Optional[bool] = None
