"""
Document Signing Service

Applies a detached CMS signature to a document:

1. reserve a hex placeholder inside the document,
2. hash every byte except the placeholder (the /ByteRange),
3. build a SignedData with the leaf certificate, the chain, and signed
   attributes carrying the signing time and the digest,
4. write the DER into the placeholder.

The layout chosen for the document carries out these steps. Bytes
preceding the placeholder are never modified, so the output always starts
with the unmodified input.
"""
import hashlib
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from ...core.config import Settings
from ...core.logging_config import signing_context
from ...models.signature import (
    EmbeddedSignature,
    KeyMaterial,
    SignatureRequest,
    SignedAttributes,
    SignedDocument,
)
from .errors import SigningError, SigningErrorKind
from .layouts import SignatureLayout, default_layouts, select_layout

logger = logging.getLogger(__name__)

# Twice the 9472-byte default commonly reserved for a PKCS#7 signature
DEFAULT_RESERVED_BYTES = 18944


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocumentSigner:
    """Service for signing document byte streams with stored key material"""

    def __init__(
        self,
        reserved_bytes: int = DEFAULT_RESERVED_BYTES,
        layouts: Optional[Sequence[SignatureLayout]] = None,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.reserved_bytes = reserved_bytes
        self.layouts = list(layouts) if layouts is not None else default_layouts()
        self.clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> "DocumentSigner":
        return cls(
            reserved_bytes=settings.SIGNATURE_RESERVED_BYTES,
            layouts=default_layouts(field_name=settings.SIGNATURE_FIELD_NAME)
        )

    def sign(
        self,
        document_bytes: bytes,
        key_material: KeyMaterial,
        signer_display_name: str,
        reason: str,
        location: str,
        sign_time: Optional[datetime] = None
    ) -> bytes:
        """
        Sign a document and return the signed bytes.

        Raises:
            SigningError: MISSING_KEY_MATERIAL, DIGEST_FAILURE or ENCODING_FAILURE
        """
        return self.sign_with_details(
            document_bytes,
            key_material,
            signer_display_name,
            reason,
            location,
            sign_time=sign_time
        ).content

    def sign_with_details(
        self,
        document_bytes: bytes,
        key_material: KeyMaterial,
        signer_display_name: str,
        reason: str,
        location: str,
        sign_time: Optional[datetime] = None
    ) -> SignedDocument:
        """
        Sign a document and return the signed bytes together with the
        embedded signature and its byte range.
        """
        self._check_key_material(key_material)

        try:
            request = SignatureRequest(
                document_bytes=bytes(document_bytes),
                signer_display_name=signer_display_name,
                reason=reason,
                location=location,
                sign_time=sign_time or self.clock()
            )
        except (TypeError, ValueError) as e:
            raise SigningError(SigningErrorKind.ENCODING_FAILURE, f"Invalid signature request: {e}") from e

        document_id = hashlib.sha256(request.document_bytes).hexdigest()[:16]
        with signing_context(signer=signer_display_name, document_id=document_id):
            layout = self._select_layout(request.document_bytes)
            applied = layout.sign(request, key_material, self.reserved_bytes)

            if applied.content[:len(request.document_bytes)] != request.document_bytes:
                logger.error("Signed output does not preserve the original document bytes")
                raise SigningError(
                    SigningErrorKind.ENCODING_FAILURE,
                    "Signed output does not preserve the original document bytes"
                )

            logger.info(
                f"Signed {len(request.document_bytes)}-byte document as {len(applied.content)} bytes "
                f"using the {layout.name} layout"
            )

        return SignedDocument(
            content=applied.content,
            signature=EmbeddedSignature(
                signer_display_name=request.signer_display_name,
                reason=request.reason,
                location=request.location,
                digest_algorithm=applied.digest_algorithm,
                signed_attributes=SignedAttributes(
                    signing_time=request.sign_time,
                    message_digest=applied.message_digest
                ),
                signature_bytes=applied.signature_bytes,
                signed_data=applied.signed_data
            ),
            byte_range=applied.byte_range
        )

    @staticmethod
    def _check_key_material(key_material: Optional[KeyMaterial]):
        if key_material is None:
            raise SigningError(SigningErrorKind.MISSING_KEY_MATERIAL, "No key material supplied")
        if getattr(key_material, 'private_key', None) is None:
            raise SigningError(SigningErrorKind.MISSING_KEY_MATERIAL, "Private key not found")
        if not getattr(key_material, 'certificate_chain', None):
            raise SigningError(SigningErrorKind.MISSING_KEY_MATERIAL, "Certificate chain not found")

    def _select_layout(self, document_bytes: bytes) -> SignatureLayout:
        try:
            return select_layout(document_bytes, self.layouts)
        except ValueError as e:
            raise SigningError(SigningErrorKind.ENCODING_FAILURE, str(e)) from e
