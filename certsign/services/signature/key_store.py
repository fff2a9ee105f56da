"""
Key Material Store

Owns the password-protected PKCS#12 container holding the signing key and
its self-signed certificate. The container is created on first use and
loaded on every later call.
"""
import logging
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Dict, Optional, Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12

from ...core.config import PassphraseResolver, ResolvedPassphrase, Settings
from ...core.logging_config import signing_context
from ...models.signature import KeyMaterial
from .certificate_authority import CertificateAuthority
from .certificate_manager import CertificateManager
from .errors import CertificateBuildError, KeyMaterialError, KeyMaterialErrorKind

logger = logging.getLogger(__name__)


class PathLockTimeout(TimeoutError):
    """Raised when a path lock cannot be acquired in time"""
    pass


class PathLock:
    """
    Mutual exclusion scoped to one filesystem path, across threads and
    processes.

    Threads of this process serialize on a per-path threading.Lock; processes
    serialize on a '<path>.lock' file created with O_CREAT | O_EXCL.
    """

    _locks: Dict[str, threading.Lock] = {}
    _locks_guard = threading.Lock()

    def __init__(self, path: Path, timeout: float = 30.0, poll_interval: float = 0.05):
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.timeout = timeout
        self.poll_interval = poll_interval
        with PathLock._locks_guard:
            key = str(self.path.resolve())
            self._thread_lock = PathLock._locks.setdefault(key, threading.Lock())

    def __enter__(self):
        deadline = time.monotonic() + self.timeout
        if not self._thread_lock.acquire(timeout=self.timeout):
            raise PathLockTimeout(f"Timed out waiting for lock on {self.path}")

        try:
            while True:
                try:
                    fd = os.open(str(self.lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
                except FileExistsError:
                    if time.monotonic() >= deadline:
                        raise PathLockTimeout(
                            f"Timed out waiting for lock file {self.lock_path}; "
                            f"remove it if no other process is creating the keystore"
                        )
                    time.sleep(self.poll_interval)
                    continue
                with os.fdopen(fd, 'w') as f:
                    f.write(str(os.getpid()))
                return self
        except BaseException:
            self._thread_lock.release()
            raise

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            os.unlink(str(self.lock_path))
        except FileNotFoundError:
            pass
        finally:
            self._thread_lock.release()


class KeyMaterialStore:
    """Creates or loads the signing key material at a container path"""

    def __init__(
        self,
        settings: Settings,
        certificate_authority: Optional[CertificateAuthority] = None,
        passphrase_resolver: Optional[PassphraseResolver] = None
    ):
        self.default_path = Path(settings.KEYSTORE_PATH).expanduser()
        self.key_alias = settings.KEY_ALIAS
        self.key_size = settings.KEY_SIZE
        self.subject_name = settings.CERTIFICATE_SUBJECT
        self.lock_timeout = settings.KEYSTORE_LOCK_TIMEOUT_SECONDS
        self.certificate_authority = certificate_authority or CertificateAuthority.from_settings(settings)
        self.passphrase_resolver = passphrase_resolver or PassphraseResolver.from_settings(settings)

    def ensure(
        self,
        path: Optional[Union[str, Path]] = None,
        passphrase_resolver: Optional[PassphraseResolver] = None
    ) -> KeyMaterial:
        """
        Return the key material stored at path, creating it first if absent.

        Args:
            path: Container path; defaults to Settings.KEYSTORE_PATH
            passphrase_resolver: Passphrase lookup; defaults to the store's resolver

        Raises:
            KeyMaterialError: kind CREATE or LOAD
        """
        path = Path(path).expanduser() if path is not None else self.default_path
        resolver = passphrase_resolver or self.passphrase_resolver

        with signing_context(keystore_path=str(path)):
            if path.exists():
                return self._load(path, resolver)

            try:
                path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error(f"Failed to create keystore directory {path.parent}: {e}")
                raise KeyMaterialError(
                    KeyMaterialErrorKind.CREATE,
                    f"Failed to create keystore directory {path.parent}: {e}",
                    path=str(path)
                ) from e

            try:
                with PathLock(path, timeout=self.lock_timeout):
                    # Another thread or process may have created it while we waited
                    if path.exists():
                        return self._load(path, resolver)
                    return self._create(path, resolver)
            except PathLockTimeout as e:
                logger.error(str(e))
                raise KeyMaterialError(KeyMaterialErrorKind.CREATE, str(e), path=str(path)) from e
            except OSError as e:
                logger.error(f"Failed to lock keystore {path}: {e}")
                raise KeyMaterialError(
                    KeyMaterialErrorKind.CREATE,
                    f"Failed to lock keystore {path}: {e}",
                    path=str(path)
                ) from e

    def _resolve_passphrase(
        self,
        resolver: PassphraseResolver,
        kind: KeyMaterialErrorKind,
        path: Path
    ) -> ResolvedPassphrase:
        passphrase = resolver.resolve()
        if passphrase is None:
            raise KeyMaterialError(kind, "No keystore passphrase could be resolved", path=str(path))
        logger.debug(f"Keystore passphrase resolved from {passphrase.source}")
        return passphrase

    def _create(self, path: Path, resolver: PassphraseResolver) -> KeyMaterial:
        passphrase = self._resolve_passphrase(resolver, KeyMaterialErrorKind.CREATE, path)

        try:
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=self.key_size)
        except Exception as e:
            logger.error(f"Failed to generate {self.key_size}-bit RSA key: {e}")
            raise KeyMaterialError(
                KeyMaterialErrorKind.CREATE,
                f"Failed to generate RSA key: {e}",
                path=str(path)
            ) from e

        try:
            certificate = self.certificate_authority.issue_self_signed(private_key, self.subject_name)
        except CertificateBuildError as e:
            raise KeyMaterialError(KeyMaterialErrorKind.CREATE, str(e), path=str(path)) from e

        try:
            key_material = KeyMaterial(
                private_key=private_key,
                public_key=private_key.public_key(),
                certificate_chain=(certificate,)
            )
            data = pkcs12.serialize_key_and_certificates(
                name=self.key_alias.encode('utf-8'),
                key=private_key,
                cert=certificate,
                cas=None,
                encryption_algorithm=serialization.BestAvailableEncryption(passphrase.value.encode('utf-8'))
            )
        except Exception as e:
            logger.error(f"Failed to serialize keystore: {e}")
            raise KeyMaterialError(
                KeyMaterialErrorKind.CREATE,
                f"Failed to serialize keystore: {e}",
                path=str(path)
            ) from e

        try:
            self._write_atomically(path, data)
        except OSError as e:
            logger.error(f"Failed to write keystore {path}: {e}")
            raise KeyMaterialError(
                KeyMaterialErrorKind.CREATE,
                f"Failed to write keystore {path}: {e}",
                path=str(path)
            ) from e

        logger.info(f"Created keystore {path} for {certificate.subject.rfc4514_string()}")
        return key_material

    @staticmethod
    def _write_atomically(path: Path, data: bytes):
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, str(path))
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise

    def _load(self, path: Path, resolver: PassphraseResolver) -> KeyMaterial:
        passphrase = self._resolve_passphrase(resolver, KeyMaterialErrorKind.LOAD, path)

        try:
            data = path.read_bytes()
        except OSError as e:
            logger.error(f"Failed to read keystore {path}: {e}")
            raise KeyMaterialError(
                KeyMaterialErrorKind.LOAD,
                f"Failed to read keystore {path}: {e}",
                path=str(path)
            ) from e

        try:
            private_key, certificate, additional = pkcs12.load_key_and_certificates(
                data, passphrase.value.encode('utf-8')
            )
        except Exception as e:
            logger.error(f"Failed to open keystore {path}: {e}")
            raise KeyMaterialError(
                KeyMaterialErrorKind.LOAD,
                f"Failed to open keystore {path} (wrong passphrase or corrupt file): {e}",
                path=str(path)
            ) from e

        if private_key is None or certificate is None:
            raise KeyMaterialError(
                KeyMaterialErrorKind.LOAD,
                f"Keystore {path} does not contain a key and certificate",
                path=str(path)
            )

        try:
            key_material = KeyMaterial(
                private_key=private_key,
                public_key=private_key.public_key(),
                certificate_chain=(certificate,) + tuple(additional)
            )
        except ValueError as e:
            logger.error(f"Keystore {path} holds unusable key material: {e}")
            raise KeyMaterialError(
                KeyMaterialErrorKind.LOAD,
                f"Keystore {path} holds unusable key material: {e}",
                path=str(path)
            ) from e

        validation = CertificateManager.validate_certificate_for_signing(certificate)
        for problem in validation["errors"] + validation["warnings"]:
            logger.warning(f"Keystore certificate: {problem}")

        logger.info(f"Loaded keystore {path}")
        return key_material
