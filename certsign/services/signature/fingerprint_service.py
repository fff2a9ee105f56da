"""
Certificate Fingerprint Service

Derives the SHA-256 fingerprint shown on verification pages so readers can
compare it out of band. This is advisory; it is not a trust decision.
"""
import logging
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization

from ...models.signature import Fingerprint
from .errors import FingerprintError

logger = logging.getLogger(__name__)

FINGERPRINT_UNAVAILABLE = "Certificate fingerprint not available"


def format_fingerprint(digest: bytes) -> str:
    """Uppercase hex octets joined by ':' (e.g. 'A1:B2:...')"""
    return ":".join(f"{octet:02X}" for octet in digest)


class FingerprintService:
    """Service for deriving certificate fingerprints"""

    @staticmethod
    def compute(certificate: x509.Certificate) -> Fingerprint:
        """
        Compute the SHA-256 fingerprint of a certificate's DER encoding.

        Raises:
            FingerprintError: if the certificate cannot be DER-encoded
        """
        try:
            der = certificate.public_bytes(serialization.Encoding.DER)
        except Exception as e:
            logger.error(f"Failed to encode certificate for fingerprinting: {e}")
            raise FingerprintError(f"Certificate cannot be DER-encoded: {e}") from e

        digest = hashes.Hash(hashes.SHA256())
        digest.update(der)
        value = digest.finalize()
        return Fingerprint(digest=value, hex_digest=format_fingerprint(value))

    @staticmethod
    def fingerprint(certificate: x509.Certificate) -> str:
        return FingerprintService.compute(certificate).hex_digest

    @staticmethod
    def display_fingerprint(certificate: Optional[x509.Certificate]) -> str:
        """
        Fingerprint for display, or FINGERPRINT_UNAVAILABLE when it cannot be
        computed. Never returns an empty string.
        """
        if certificate is None:
            return FINGERPRINT_UNAVAILABLE
        try:
            return FingerprintService.fingerprint(certificate)
        except FingerprintError as e:
            logger.warning(f"Could not generate certificate fingerprint: {e}")
            return FINGERPRINT_UNAVAILABLE
