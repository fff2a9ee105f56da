"""
Test Configuration and Fixtures
Keystores are created under pytest's tmp paths; nothing touches the home directory.
"""

import logging
from io import BytesIO

import pytest
from reportlab.lib.pagesizes import A4
from reportlab.pdfgen import canvas

from certsign.core.config import PassphraseResolver, Settings
from certsign.services.signature import DocumentSigner, KeyMaterialStore, SignatureVerifier

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Smaller than production keys so the suite stays fast
TEST_KEY_SIZE = 2048
TEST_PASSPHRASE = "test-passphrase"
PDF_TEXT = "Certificate of Completion awarded to Test Reader"


def make_settings(keystore_path, **overrides) -> Settings:
    values = {
        "KEYSTORE_PATH": str(keystore_path),
        "KEYSTORE_PASSWORD": TEST_PASSPHRASE,
        "KEY_SIZE": TEST_KEY_SIZE,
        "KEYSTORE_LOCK_TIMEOUT_SECONDS": 10.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_resolver(settings: Settings, environ=None) -> PassphraseResolver:
    # Never consult the real process environment in tests
    return PassphraseResolver.from_settings(settings, environ=environ or {})


def render_pdf(text: str = PDF_TEXT) -> bytes:
    """One-page uncompressed PDF, so the drawn text appears verbatim in the file"""
    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4, pageCompression=0)
    pdf.setTitle("Test certificate")
    pdf.drawString(72, 720, text)
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path / "keys" / "keystore.p12")


@pytest.fixture
def resolver(settings) -> PassphraseResolver:
    return make_resolver(settings)


@pytest.fixture
def key_store(settings, resolver) -> KeyMaterialStore:
    return KeyMaterialStore(settings, passphrase_resolver=resolver)


@pytest.fixture(scope="session")
def key_material(tmp_path_factory):
    """Key material shared by the signing tests"""
    settings = make_settings(tmp_path_factory.mktemp("shared") / "keystore.p12")
    store = KeyMaterialStore(settings, passphrase_resolver=make_resolver(settings))
    return store.ensure()


@pytest.fixture(scope="session")
def other_key_material(tmp_path_factory):
    """A second, unrelated identity"""
    settings = make_settings(tmp_path_factory.mktemp("other") / "keystore.p12")
    store = KeyMaterialStore(settings, passphrase_resolver=make_resolver(settings))
    return store.ensure()


@pytest.fixture
def signer() -> DocumentSigner:
    return DocumentSigner()


@pytest.fixture
def verifier() -> SignatureVerifier:
    return SignatureVerifier()


@pytest.fixture
def sample_pdf() -> bytes:
    return render_pdf()
