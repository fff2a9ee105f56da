"""
Certificate Lifecycle and Document Signing Services

This package issues and stores the self-signed signing identity, applies
detached CMS signatures to documents, and derives certificate fingerprints
for out-of-band verification.
"""

from .certificate_authority import CertificateAuthority, SerialNumberPolicy
from .certificate_manager import CertificateManager
from .document_signer import DocumentSigner
from .errors import (
    CertificateBuildError,
    CertSignError,
    FingerprintError,
    KeyMaterialError,
    KeyMaterialErrorKind,
    SigningError,
    SigningErrorKind,
    VerificationError,
    VerificationErrorKind
)
from .fingerprint_service import FINGERPRINT_UNAVAILABLE, FingerprintService
from .key_store import KeyMaterialStore
from .layouts import DetachedTrailerLayout, PdfIncrementalLayout, SignatureLayout
from .signature_verifier import SignatureVerifier

__all__ = [
    'CertificateAuthority',
    'SerialNumberPolicy',
    'CertificateManager',
    'DocumentSigner',
    'CertificateBuildError',
    'CertSignError',
    'FingerprintError',
    'KeyMaterialError',
    'KeyMaterialErrorKind',
    'SigningError',
    'SigningErrorKind',
    'VerificationError',
    'VerificationErrorKind',
    'FINGERPRINT_UNAVAILABLE',
    'FingerprintService',
    'KeyMaterialStore',
    'DetachedTrailerLayout',
    'PdfIncrementalLayout',
    'SignatureLayout',
    'SignatureVerifier'
]
