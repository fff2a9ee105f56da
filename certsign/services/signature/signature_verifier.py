"""
Signature Verification Service

Checks a signed document by recomputing the byte-range digest and verifying
the RSA signature over the signed attributes with the embedded certificate.
Verification is advisory: the certificate is self-signed, so the only
identity check is an optional fingerprint comparison.
"""
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ...models.signature import EmbeddedSignature, SignedAttributes, VerificationResult
from .certificate_manager import CertificateManager
from .errors import VerificationError, VerificationErrorKind
from .fingerprint_service import FingerprintService
from .layouts import SignatureLayout, default_layouts, select_layout
from .signed_data import (
    HASH_ALGORITHMS,
    digest_byte_range,
    find_attribute,
    find_signer_certificate,
    hash_algorithm,
    load_signed_data,
    signed_attributes_bytes,
)

logger = logging.getLogger(__name__)


class SignatureVerifier:
    """Service for verifying embedded document signatures"""

    def __init__(self, layouts: Optional[Sequence[SignatureLayout]] = None):
        """Initialize the signature verifier"""
        self.layouts = list(layouts) if layouts is not None else default_layouts()

    def verify(self, signed_bytes: bytes, expected_fingerprint: Optional[str] = None) -> VerificationResult:
        """
        Verify the most recent signature in a signed document.

        Args:
            signed_bytes: Signed document
            expected_fingerprint: Optional fingerprint published out of band

        Returns:
            VerificationResult describing the signature

        Raises:
            VerificationError: NOT_SIGNED, MALFORMED, DIGEST_MISMATCH or SIGNATURE_INVALID
        """
        result, _ = self._verify(signed_bytes, expected_fingerprint)
        return result

    def _verify(
        self,
        signed_bytes: bytes,
        expected_fingerprint: Optional[str]
    ) -> Tuple[VerificationResult, x509.Certificate]:
        layout = select_layout(signed_bytes, self.layouts)
        located = layout.locate(signed_bytes)

        try:
            signed_data = load_signed_data(located.signed_data)
            signer_info = signed_data['signer_infos'][0]
            algorithm = signer_info['digest_algorithm']['algorithm'].native
            message_digest = find_attribute(signer_info, 'message_digest')
            signing_time = find_attribute(signer_info, 'signing_time')
            signature = signer_info['signature'].native
            attributes = signed_attributes_bytes(signer_info)
            certificate = CertificateManager.parse_certificate(
                find_signer_certificate(signed_data, signer_info).dump()
            )
            digest = digest_byte_range(signed_bytes, located.byte_range, algorithm)
        except Exception as e:
            logger.error(f"Malformed signature: {e}")
            raise VerificationError(VerificationErrorKind.MALFORMED, f"Malformed signature: {e}") from e

        if message_digest is None or signing_time is None:
            raise VerificationError(
                VerificationErrorKind.MALFORMED,
                "Signature lacks the message digest or signing time attribute"
            )

        if not hmac.compare_digest(digest, message_digest):
            logger.warning("Signature verification failed - document digest mismatch")
            raise VerificationError(
                VerificationErrorKind.DIGEST_MISMATCH,
                "Document content does not match the signed digest"
            )

        public_key = certificate.public_key()
        if not isinstance(public_key, rsa.RSAPublicKey):
            raise VerificationError(VerificationErrorKind.MALFORMED, "Certificate does not contain an RSA public key")

        try:
            public_key.verify(signature, attributes, padding.PKCS1v15(), hash_algorithm(algorithm))
        except InvalidSignature as e:
            logger.warning("Signature verification failed - invalid signature")
            raise VerificationError(
                VerificationErrorKind.SIGNATURE_INVALID,
                "Signature does not verify with the embedded certificate"
            ) from e

        fingerprint = FingerprintService.fingerprint(certificate)
        fingerprint_matches = None
        if expected_fingerprint is not None:
            fingerprint_matches = fingerprint == expected_fingerprint.strip().upper()
            if not fingerprint_matches:
                logger.warning("Signer certificate fingerprint differs from the expected fingerprint")

        byte_range = located.byte_range
        result = VerificationResult(
            signature=EmbeddedSignature(
                filter_id=located.filter_id or "",
                sub_filter_id=located.sub_filter_id or "",
                digest_algorithm=algorithm,
                signer_display_name=located.signer_display_name,
                reason=located.reason,
                location=located.location,
                signed_attributes=SignedAttributes(
                    signing_time=signing_time,
                    message_digest=message_digest
                ),
                signature_bytes=signature,
                signed_data=located.signed_data
            ),
            byte_range=byte_range,
            signer_subject=certificate.subject.rfc4514_string(),
            certificate_fingerprint=fingerprint,
            covers_whole_document=byte_range[0] == 0 and byte_range[2] + byte_range[3] == len(signed_bytes),
            fingerprint_matches=fingerprint_matches
        )

        if not result.covers_whole_document:
            logger.warning("Signed byte range does not cover the whole document")

        logger.info(f"Signature verification successful for {result.signer_subject}")
        return result, certificate

    @staticmethod
    def _is_acceptable(result: VerificationResult) -> bool:
        # Bytes after the signed range are not covered by the signature
        return result.covers_whole_document and result.fingerprint_matches is not False

    def is_valid(self, signed_bytes: bytes, expected_fingerprint: Optional[str] = None) -> bool:
        """
        True if the document verifies, the signature covers every byte of it,
        and the certificate matches the expected fingerprint, if given.
        """
        try:
            result = self.verify(signed_bytes, expected_fingerprint)
        except VerificationError as e:
            logger.info(f"Document failed verification ({e.kind.value}): {e}")
            return False
        return self._is_acceptable(result)

    def create_verification_report(
        self,
        signed_bytes: bytes,
        expected_fingerprint: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Create a verification report for display on a verification page.
        """
        report = {
            "verification_timestamp": datetime.now(timezone.utc).isoformat(),
            "overall_valid": False
        }

        try:
            result, certificate = self._verify(signed_bytes, expected_fingerprint)
        except VerificationError as e:
            report["error"] = {"kind": e.kind.value, "message": str(e)}
            return report

        signature = result.signature

        report["signature_info"] = {
            "filter": signature.filter_id,
            "sub_filter": signature.sub_filter_id,
            "digest_algorithm": signature.digest_algorithm,
            "signer_name": signature.signer_display_name,
            "reason": signature.reason,
            "location": signature.location,
            "signing_time": signature.signed_attributes.signing_time.isoformat(),
            "byte_range": result.byte_range,
            "covers_whole_document": result.covers_whole_document
        }
        report["certificate_info"] = CertificateManager.extract_certificate_info(certificate)
        report["certificate_pem"] = CertificateManager.certificate_pem(certificate)
        report["fingerprint_matches"] = result.fingerprint_matches
        report["overall_valid"] = self._is_acceptable(result)
        if not result.covers_whole_document:
            report["warnings"] = ["Document contains bytes appended after the signed revision"]

        logger.info(f"Verification report created: overall_valid={report['overall_valid']}")
        return report

    def get_supported_algorithms(self) -> List[str]:
        """Get list of supported digest algorithms"""
        return list(HASH_ALGORITHMS.keys())
