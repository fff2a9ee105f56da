"""
Certificate Management Service

Handles X.509 certificate parsing, advisory validation, and information
extraction for verification pages.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .fingerprint_service import FingerprintService

logger = logging.getLogger(__name__)

EXPIRY_WARNING_DAYS = 30
MIN_KEY_SIZE = 2048


class CertificateManager:
    """Service for inspecting X.509 certificates"""

    @staticmethod
    def parse_certificate(data: bytes) -> x509.Certificate:
        """
        Parse a certificate from PEM or DER bytes.

        Raises:
            ValueError: if the data is neither
        """
        if data.lstrip().startswith(b'-----BEGIN CERTIFICATE-----'):
            return x509.load_pem_x509_certificate(data)
        return x509.load_der_x509_certificate(data)

    @staticmethod
    def extract_certificate_info(certificate: x509.Certificate) -> Dict[str, Any]:
        """
        Extract information from an X.509 certificate.

        Args:
            certificate: Certificate to describe

        Returns:
            Dictionary with certificate information
        """
        info = {
            "version": certificate.version.name,
            "serial_number": format(certificate.serial_number, 'X'),
            "not_valid_before": certificate.not_valid_before_utc.isoformat(),
            "not_valid_after": certificate.not_valid_after_utc.isoformat(),
            "subject": CertificateManager._format_name(certificate.subject),
            "issuer": CertificateManager._format_name(certificate.issuer),
            "self_signed": certificate.subject == certificate.issuer,
            "signature_algorithm": certificate.signature_algorithm_oid._name,
            "public_key_algorithm": type(certificate.public_key()).__name__
        }

        public_key = certificate.public_key()
        if hasattr(public_key, 'key_size'):
            info["public_key_size"] = public_key.key_size

        try:
            key_usage = certificate.extensions.get_extension_for_class(x509.KeyUsage).value
            info["key_usage"] = {
                "digital_signature": key_usage.digital_signature,
                "content_commitment": key_usage.content_commitment,
                "key_encipherment": key_usage.key_encipherment,
                "data_encipherment": key_usage.data_encipherment,
                "key_agreement": key_usage.key_agreement,
                "key_cert_sign": key_usage.key_cert_sign,
                "crl_sign": key_usage.crl_sign
            }
        except x509.ExtensionNotFound:
            info["key_usage"] = {}

        info["extended_key_usage"] = CertificateManager._extended_key_usages(certificate)

        try:
            basic_constraints = certificate.extensions.get_extension_for_class(x509.BasicConstraints).value
            info["is_ca"] = basic_constraints.ca
        except x509.ExtensionNotFound:
            info["is_ca"] = None

        info["fingerprint_sha256"] = FingerprintService.display_fingerprint(certificate)
        return info

    @staticmethod
    def _extended_key_usages(certificate: x509.Certificate) -> List[str]:
        try:
            usages = certificate.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        except x509.ExtensionNotFound:
            return []
        return [oid.dotted_string for oid in usages]

    @staticmethod
    def _format_name(name: x509.Name) -> str:
        """
        Format an X.509 Name object as a readable string.
        """
        name_map = {
            "commonName": "CN",
            "organizationName": "O",
            "organizationalUnitName": "OU",
            "countryName": "C",
            "localityName": "L",
            "stateOrProvinceName": "ST",
            "emailAddress": "E"
        }

        parts = []
        for attribute in name:
            display_name = name_map.get(attribute.oid._name, attribute.oid._name)
            parts.append(f"{display_name}={attribute.value}")
        return ", ".join(parts)

    @staticmethod
    def validate_certificate_for_signing(
        certificate: x509.Certificate,
        now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Advisory validation of a certificate for document signing.

        No chain building or revocation checking happens here; the
        certificate is self-signed by construction.

        Returns:
            Validation result dictionary with "valid", "errors" and "warnings"
        """
        result = {
            "valid": False,
            "errors": [],
            "warnings": []
        }

        now = now or datetime.now(timezone.utc)
        if certificate.not_valid_before_utc > now:
            result["errors"].append("Certificate is not yet valid")
        elif certificate.not_valid_after_utc < now:
            result["errors"].append("Certificate has expired")
        else:
            time_to_expiry = certificate.not_valid_after_utc - now
            if time_to_expiry.days < EXPIRY_WARNING_DAYS:
                result["warnings"].append(f"Certificate expires in {time_to_expiry.days} days")

        try:
            key_usage = certificate.extensions.get_extension_for_class(x509.KeyUsage).value
            if not key_usage.digital_signature:
                result["errors"].append("Certificate not marked for digital signature")
            if not key_usage.content_commitment:
                result["warnings"].append("Certificate not marked for non-repudiation")
        except x509.ExtensionNotFound:
            result["warnings"].append("No key usage extension found")

        public_key = certificate.public_key()
        if hasattr(public_key, 'key_size') and public_key.key_size < MIN_KEY_SIZE:
            result["warnings"].append(f"Public key size ({public_key.key_size}) may be insufficient")

        result["valid"] = len(result["errors"]) == 0

        logger.info(f"Certificate validation: valid={result['valid']}, "
                    f"errors={len(result['errors'])}, warnings={len(result['warnings'])}")
        return result

    @staticmethod
    def certificate_pem(certificate: x509.Certificate) -> str:
        """PEM text of a certificate, for download from a verification page"""
        return certificate.public_bytes(serialization.Encoding.PEM).decode()
