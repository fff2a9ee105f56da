"""
Self-Signed Certificate Issuance

Builds the long-lived signing certificate: subject and issuer are the same
name, and the certificate is signed with its own key (SHA-512/RSA).
"""
import logging
import secrets
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, List, Optional, Sequence, Union

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ObjectIdentifier

from ...core.config import DEFAULT_EXTENDED_KEY_USAGE_OIDS, Settings
from .errors import CertificateBuildError

logger = logging.getLogger(__name__)

DEFAULT_VALIDITY_DAYS = 3650


class SerialNumberPolicy(str, Enum):
    """How certificate serial numbers are chosen"""
    RANDOM = "random"          # 128 random bits
    TIMESTAMP = "timestamp"    # wall-clock milliseconds; collides under rapid issuance


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CertificateAuthority:
    """Issues self-signed certificates suitable for document signing"""

    def __init__(
        self,
        validity_days: int = DEFAULT_VALIDITY_DAYS,
        extended_key_usage_oids: Optional[Sequence[str]] = None,
        serial_policy: SerialNumberPolicy = SerialNumberPolicy.RANDOM,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.validity_days = validity_days
        if extended_key_usage_oids is None:
            extended_key_usage_oids = DEFAULT_EXTENDED_KEY_USAGE_OIDS
        self.extended_key_usage_oids = list(extended_key_usage_oids)
        self.serial_policy = SerialNumberPolicy(serial_policy)
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "CertificateAuthority":
        return cls(
            validity_days=settings.CERTIFICATE_VALIDITY_DAYS,
            extended_key_usage_oids=settings.EXTENDED_KEY_USAGE_OIDS,
            serial_policy=SerialNumberPolicy(settings.SERIAL_NUMBER_POLICY)
        )

    def next_serial_number(self) -> int:
        if self.serial_policy == SerialNumberPolicy.TIMESTAMP:
            return int(time.time() * 1000)
        # Positive and non-zero as RFC 5280 requires
        return secrets.randbits(128) or 1

    def issue_self_signed(
        self,
        key_pair: rsa.RSAPrivateKey,
        subject_name: Union[str, x509.Name]
    ) -> x509.Certificate:
        """
        Build and self-sign a certificate for the given key pair.

        Args:
            key_pair: RSA private key; its public half goes into the certificate
            subject_name: RFC 4514 string or x509.Name, used as subject and issuer

        Returns:
            The signed certificate

        Raises:
            CertificateBuildError: on any failure of the underlying library
        """
        try:
            if isinstance(subject_name, str):
                subject_name = x509.Name.from_rfc4514_string(subject_name)

            # Both bounds are encoded with second precision, so truncate once
            # to keep the span exactly validity_days.
            not_before = self.clock().replace(microsecond=0)
            not_after = not_before + timedelta(days=self.validity_days)

            builder = (
                x509.CertificateBuilder()
                .subject_name(subject_name)
                .issuer_name(subject_name)
                .public_key(key_pair.public_key())
                .serial_number(self.next_serial_number())
                .not_valid_before(not_before)
                .not_valid_after(not_after)
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=True,
                        content_commitment=True,
                        key_encipherment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        key_cert_sign=False,
                        crl_sign=False,
                        encipher_only=False,
                        decipher_only=False
                    ),
                    critical=True
                )
                .add_extension(
                    x509.ExtendedKeyUsage(self._extended_key_usages()),
                    critical=True
                )
            )

            certificate = builder.sign(private_key=key_pair, algorithm=hashes.SHA512())

        except Exception as e:
            logger.error(f"Failed to build self-signed certificate: {e}")
            raise CertificateBuildError(f"Failed to build self-signed certificate: {e}") from e

        logger.info(
            f"Issued self-signed certificate for {certificate.subject.rfc4514_string()} "
            f"(serial {certificate.serial_number:x}, valid until {not_after.isoformat()})"
        )
        return certificate

    def _extended_key_usages(self) -> List[ObjectIdentifier]:
        return [ObjectIdentifier(oid) for oid in self.extended_key_usage_oids]
