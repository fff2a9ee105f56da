"""
CertSign: self-signed signing identity, detached document signatures and
certificate fingerprints.
"""

from .core.config import PassphraseResolver, Settings
from .services.signature import (
    CertificateAuthority,
    DocumentSigner,
    FingerprintService,
    KeyMaterialStore,
    SignatureVerifier
)

__version__ = "0.1.0"

__all__ = [
    "PassphraseResolver",
    "Settings",
    "CertificateAuthority",
    "DocumentSigner",
    "FingerprintService",
    "KeyMaterialStore",
    "SignatureVerifier"
]
