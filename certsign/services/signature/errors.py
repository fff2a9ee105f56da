"""
Error taxonomy for the signing services.

Every error carries a ``kind`` from a closed enumeration so callers can
branch on the failure without inspecting message strings.
"""
from enum import Enum
from typing import Optional


class CertSignError(Exception):
    """Base class for all certificate and signing errors"""
    pass


class KeyMaterialErrorKind(str, Enum):
    """Why key material could not be provided"""
    CREATE = "create"   # generation, certificate building or serialization failed
    LOAD = "load"       # container exists but cannot be opened or parsed


class KeyMaterialError(CertSignError):
    """Raised by KeyMaterialStore when the container cannot be created or loaded"""

    def __init__(self, kind: KeyMaterialErrorKind, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.path = path


class CertificateBuildError(CertSignError):
    """Raised when the self-signed certificate cannot be built"""
    pass


class SigningErrorKind(str, Enum):
    """Why a document could not be signed"""
    MISSING_KEY_MATERIAL = "missing_key_material"
    DIGEST_FAILURE = "digest_failure"
    ENCODING_FAILURE = "encoding_failure"


class SigningError(CertSignError):
    """Raised by DocumentSigner. Terminal for the call; no partial output exists."""

    def __init__(self, kind: SigningErrorKind, message: str):
        super().__init__(message)
        self.kind = kind


class FingerprintError(CertSignError):
    """Raised when a certificate's canonical encoding cannot be produced"""
    pass


class VerificationErrorKind(str, Enum):
    """Why an embedded signature failed verification"""
    NOT_SIGNED = "not_signed"
    MALFORMED = "malformed"
    DIGEST_MISMATCH = "digest_mismatch"
    SIGNATURE_INVALID = "signature_invalid"


class VerificationError(CertSignError):
    """Raised by SignatureVerifier when a signed document does not verify"""

    def __init__(self, kind: VerificationErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
