# Models package

from .signature import (
    KeyMaterial,
    SignatureRequest,
    SignedAttributes,
    EmbeddedSignature,
    SignedDocument,
    Fingerprint,
    VerificationResult
)

__all__ = [
    "KeyMaterial",
    "SignatureRequest",
    "SignedAttributes",
    "EmbeddedSignature",
    "SignedDocument",
    "Fingerprint",
    "VerificationResult"
]
