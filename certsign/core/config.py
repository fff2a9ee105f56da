import logging
import os
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from pydantic import BaseModel, Field, validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

# Fallback used only when neither the environment nor the configuration
# supplies a passphrase. Not suitable for production.
INSECURE_DEFAULT_PASSPHRASE = "changeit"

# id-kp-emailProtection, id-kp-codeSigning. There is no public OID for
# "PDF signing" (Adobe's 1.2.840.113583.1.1.5 is a restricted arc), so this
# pair is an approximation for strict PAdES consumers.
DEFAULT_EXTENDED_KEY_USAGE_OIDS = ["1.3.6.1.5.5.7.3.4", "1.3.6.1.5.5.7.3.3"]


class Settings(BaseSettings):
    PROJECT_NAME: str = "CertSign"
    VERSION: str = "0.1.0"

    # Key/certificate container
    KEYSTORE_PATH: str = str(Path.home() / ".cert_keystore.p12")
    KEYSTORE_PASSWORD: Optional[str] = None
    KEYSTORE_PASSWORD_ENV: str = "CERT_PWD"
    KEYSTORE_LOCK_TIMEOUT_SECONDS: float = 30.0
    KEY_ALIAS: str = "authorKey"
    KEY_SIZE: int = 4096

    # Self-signed certificate
    CERTIFICATE_SUBJECT: str = "CN=Certificate Signer,OU=PDF Signing,O=CertSign,C=US"
    CERTIFICATE_VALIDITY_DAYS: int = 3650
    EXTENDED_KEY_USAGE_OIDS: List[str] = DEFAULT_EXTENDED_KEY_USAGE_OIDS
    SERIAL_NUMBER_POLICY: str = "random"

    # Document signing
    SIGNATURE_RESERVED_BYTES: int = 18944
    SIGNATURE_FIELD_NAME: str = "Signature1"
    DEFAULT_SIGNER_NAME: str = "Certificate Signer"
    DEFAULT_SIGNING_REASON: str = "Certificate of completion"
    DEFAULT_SIGNING_LOCATION: str = "Online"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    @validator('SERIAL_NUMBER_POLICY')
    def check_serial_policy(cls, v):
        if v not in ("random", "timestamp"):
            raise ValueError("SERIAL_NUMBER_POLICY must be 'random' or 'timestamp'")
        return v

    @validator('KEY_SIZE')
    def check_key_size(cls, v):
        if v < 1024:
            raise ValueError("KEY_SIZE must be at least 1024 bits")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = True


class ResolvedPassphrase(BaseModel):
    """A passphrase together with the name of the source that supplied it"""
    value: str = Field(repr=False)
    source: str
    insecure: bool = False


class PassphraseSource:
    """One step of the passphrase lookup chain"""

    name = "source"
    insecure = False

    def lookup(self) -> Optional[str]:
        raise NotImplementedError


class EnvironmentPassphraseSource(PassphraseSource):
    """Reads the passphrase from an environment variable"""

    def __init__(self, variable: str, environ: Optional[Mapping[str, str]] = None):
        self.variable = variable
        self.environ = environ
        self.name = f"env:{variable}"

    def lookup(self) -> Optional[str]:
        environ = os.environ if self.environ is None else self.environ
        return environ.get(self.variable)


class ConfiguredPassphraseSource(PassphraseSource):
    """Passphrase taken from process configuration (Settings.KEYSTORE_PASSWORD)"""

    name = "config:KEYSTORE_PASSWORD"

    def __init__(self, value: Optional[str]):
        self.value = value

    def lookup(self) -> Optional[str]:
        return self.value


class DefaultPassphraseSource(PassphraseSource):
    """Fixed fallback constant. Flagged insecure."""

    name = "default"
    insecure = True

    def __init__(self, value: str = INSECURE_DEFAULT_PASSPHRASE):
        self.value = value

    def lookup(self) -> Optional[str]:
        return self.value


class PassphraseResolver:
    """
    Resolves the container passphrase from an ordered list of sources.

    The first source returning a non-empty value wins. The default order is
    environment variable, then process configuration, then the insecure
    fallback constant.
    """

    def __init__(self, sources: Sequence[PassphraseSource]):
        self.sources = list(sources)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        environ: Optional[Mapping[str, str]] = None
    ) -> "PassphraseResolver":
        return cls([
            EnvironmentPassphraseSource(settings.KEYSTORE_PASSWORD_ENV, environ),
            ConfiguredPassphraseSource(settings.KEYSTORE_PASSWORD),
            DefaultPassphraseSource(),
        ])

    def resolve(self) -> Optional[ResolvedPassphrase]:
        """
        Walk the sources in order.

        Returns:
            The resolved passphrase, or None if no source produced one
        """
        for source in self.sources:
            value = source.lookup()
            # An empty environment variable counts as unset
            if not value:
                continue
            if source.insecure:
                logger.warning(
                    f"Using insecure default keystore passphrase from '{source.name}'; "
                    f"set a passphrase explicitly for production use"
                )
            return ResolvedPassphrase(value=value, source=source.name, insecure=source.insecure)
        return None
