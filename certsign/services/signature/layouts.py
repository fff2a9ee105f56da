"""
Document layouts for detached signatures.

A layout knows how to sign a particular document format and how to find
the signature again. The signature value is always a hex string delimited
by '<' and '>', and the signed byte range is every byte of the output
except that string, as in PDF's /ByteRange model.
"""
import asyncio
import binascii
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from io import BytesIO
from typing import List, Optional, Sequence

from asn1crypto import keys
from cryptography.hazmat.primitives import serialization
from pyhanko.pdf_utils.incremental_writer import IncrementalPdfFileWriter
from pyhanko.pdf_utils.reader import PdfFileReader
from pyhanko.sign import signers
from pyhanko.sign.fields import SigSeedSubFilter, enumerate_sig_fields
from pyhanko.sign.signers.pdf_cms import PdfCMSSignedAttributes
from pyhanko_certvalidator.registry import SimpleCertificateStore

from ...models.signature import (
    FILTER_ADOBE_PPKLITE,
    SUBFILTER_ADBE_PKCS7_DETACHED,
    KeyMaterial,
    SignatureRequest,
)
from .errors import SigningError, SigningErrorKind, VerificationError, VerificationErrorKind
from .signed_data import (
    DIGEST_ALGORITHM,
    build_signed_data,
    digest_byte_range,
    find_attribute,
    load_signed_data,
    to_asn1_certificate,
    trim_signed_data,
)

logger = logging.getLogger(__name__)

PDF_HEADER = b"%PDF-"


@dataclass
class PreparedDocument:
    """A document in its final pre-signing state, placeholder still zeroed"""
    buffer: bytearray
    placeholder_start: int  # offset of '<'
    placeholder_end: int    # offset just past '>'

    @property
    def byte_range(self) -> List[int]:
        return [
            0,
            self.placeholder_start,
            self.placeholder_end,
            len(self.buffer) - self.placeholder_end,
        ]

    @property
    def capacity(self) -> int:
        """Number of DER bytes that fit in the placeholder"""
        return (self.placeholder_end - self.placeholder_start - 2) // 2


@dataclass
class AppliedSignature:
    """A signed document as produced by a layout"""
    content: bytes
    byte_range: List[int]
    signed_data: bytes
    signature_bytes: bytes
    message_digest: bytes
    digest_algorithm: str = DIGEST_ALGORITHM


@dataclass
class LocatedSignature:
    """A signature found in a signed document"""
    byte_range: List[int]
    signed_data: bytes
    filter_id: Optional[str] = None
    sub_filter_id: Optional[str] = None
    signer_display_name: Optional[str] = None
    reason: Optional[str] = None
    location: Optional[str] = None


def decode_placeholder(data: bytes, byte_range: Sequence[int]) -> bytes:
    """Decode the hex placeholder that sits between the two byte-range segments."""
    start = byte_range[0] + byte_range[1]
    end = byte_range[2]
    region = data[start:end]
    if len(region) < 2 or region[:1] != b"<" or region[-1:] != b">":
        raise VerificationError(
            VerificationErrorKind.MALFORMED,
            f"No signature placeholder between offsets {start} and {end}"
        )
    try:
        return binascii.unhexlify(region[1:-1])
    except (binascii.Error, ValueError) as e:
        raise VerificationError(VerificationErrorKind.MALFORMED, f"Signature placeholder is not hex: {e}") from e


def run_coroutine(coroutine):
    """
    Run a coroutine to completion from synchronous code.

    Inside a running event loop (an async request handler, say) the
    coroutine is run on a private loop in a worker thread instead.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coroutine)
    with ThreadPoolExecutor(max_workers=1) as executor:
        return executor.submit(asyncio.run, coroutine).result()


class SignatureLayout:
    """Format-specific half of the signing protocol"""

    name = "layout"

    def accepts(self, document_bytes: bytes) -> bool:
        raise NotImplementedError

    def reserve(
        self,
        request: SignatureRequest,
        key_material: KeyMaterial,
        reserved_bytes: int
    ) -> PreparedDocument:
        raise NotImplementedError

    def locate(self, signed_bytes: bytes) -> LocatedSignature:
        raise NotImplementedError

    def sign(
        self,
        request: SignatureRequest,
        key_material: KeyMaterial,
        reserved_bytes: int
    ) -> AppliedSignature:
        """
        Reserve a placeholder, digest the byte range, build the CMS and
        write it into the placeholder.

        Raises:
            SigningError: DIGEST_FAILURE or ENCODING_FAILURE
        """
        try:
            prepared = self.reserve(request, key_material, reserved_bytes)
        except Exception as e:
            logger.error(f"Failed to reserve signature placeholder: {e}")
            raise SigningError(
                SigningErrorKind.ENCODING_FAILURE,
                f"Failed to reserve signature placeholder: {e}"
            ) from e

        try:
            message_digest = digest_byte_range(prepared.buffer, prepared.byte_range, DIGEST_ALGORITHM)
        except Exception as e:
            logger.error(f"Failed to digest document byte range: {e}")
            raise SigningError(SigningErrorKind.DIGEST_FAILURE, f"Failed to digest document: {e}") from e

        try:
            signed_data, signature = build_signed_data(
                message_digest, key_material, request.sign_time, DIGEST_ALGORITHM
            )
        except Exception as e:
            logger.error(f"Failed to build signed data: {e}")
            raise SigningError(SigningErrorKind.ENCODING_FAILURE, f"Failed to build signed data: {e}") from e

        if len(signed_data) > prepared.capacity:
            logger.error(f"Signature of {len(signed_data)} bytes exceeds the {prepared.capacity}-byte placeholder")
            raise SigningError(
                SigningErrorKind.ENCODING_FAILURE,
                f"Signature of {len(signed_data)} bytes does not fit the "
                f"{prepared.capacity}-byte placeholder"
            )

        encoded = binascii.hexlify(signed_data).upper()
        start = prepared.placeholder_start + 1
        prepared.buffer[start:start + len(encoded)] = encoded

        return AppliedSignature(
            content=bytes(prepared.buffer),
            byte_range=prepared.byte_range,
            signed_data=signed_data,
            signature_bytes=signature,
            message_digest=message_digest
        )


class PdfIncrementalLayout(SignatureLayout):
    """
    PDF incremental update: a signature field and signature dictionary are
    appended after the original bytes, which are left untouched. pyHanko
    produces the CMS, with the request's signing time both as the
    signingTime attribute and as the dictionary's /M entry.
    """

    name = "pdf"

    def __init__(self, field_name: str = "Signature1", digest_algorithm: str = DIGEST_ALGORITHM):
        self.field_name = field_name
        self.digest_algorithm = digest_algorithm

    def accepts(self, document_bytes: bytes) -> bool:
        return document_bytes.startswith(PDF_HEADER)

    def _free_field_name(self, writer: IncrementalPdfFileWriter) -> str:
        existing = {name for name, _, _ in enumerate_sig_fields(writer.prev)}
        if self.field_name not in existing:
            return self.field_name
        counter = 2
        while f"{self.field_name}_{counter}" in existing:
            counter += 1
        return f"{self.field_name}_{counter}"

    @staticmethod
    def _signer(key_material: KeyMaterial) -> signers.SimpleSigner:
        chain = [to_asn1_certificate(c) for c in key_material.certificate_chain]
        signing_key = keys.PrivateKeyInfo.load(
            key_material.private_key.private_bytes(
                encoding=serialization.Encoding.DER,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption()
            )
        )
        return signers.SimpleSigner(
            signing_cert=chain[0],
            signing_key=signing_key,
            cert_registry=SimpleCertificateStore.from_certs(chain)
        )

    async def _sign_pdf(
        self,
        request: SignatureRequest,
        key_material: KeyMaterial,
        reserved_bytes: int
    ) -> bytes:
        writer = IncrementalPdfFileWriter(BytesIO(request.document_bytes))
        signature_meta = signers.PdfSignatureMetadata(
            field_name=self._free_field_name(writer),
            md_algorithm=self.digest_algorithm,
            name=request.signer_display_name,
            reason=request.reason,
            location=request.location,
            subfilter=SigSeedSubFilter.ADOBE_PKCS7_DETACHED
        )
        pdf_signer = signers.PdfSigner(signature_meta, signer=self._signer(key_material))

        session = pdf_signer.init_signing_session(writer)
        session.system_time = request.sign_time
        validation_info = await session.perform_presign_validation(writer)
        tbs_document = session.prepare_tbs_document(
            validation_info=validation_info,
            bytes_reserved=reserved_bytes
        )
        prepared_digest, output = tbs_document.digest_tbs_document(output=BytesIO())
        post_signing = await tbs_document.perform_signature(
            document_digest=prepared_digest.document_digest,
            pdf_cms_signed_attrs=PdfCMSSignedAttributes(signing_time=request.sign_time)
        )
        await post_signing.post_signature_processing(output)

        logger.debug(f"Signed PDF signature field {signature_meta.field_name}")
        return output.getvalue()

    def sign(
        self,
        request: SignatureRequest,
        key_material: KeyMaterial,
        reserved_bytes: int
    ) -> AppliedSignature:
        try:
            content = run_coroutine(self._sign_pdf(request, key_material, reserved_bytes))
            located = self.locate(content)
            signer_info = load_signed_data(located.signed_data)['signer_infos'][0]
        except Exception as e:
            logger.error(f"Failed to sign PDF: {e}")
            raise SigningError(SigningErrorKind.ENCODING_FAILURE, f"Failed to sign PDF: {e}") from e

        return AppliedSignature(
            content=content,
            byte_range=located.byte_range,
            signed_data=trim_signed_data(located.signed_data),
            signature_bytes=signer_info['signature'].native,
            message_digest=find_attribute(signer_info, 'message_digest'),
            digest_algorithm=signer_info['digest_algorithm']['algorithm'].native
        )

    def locate(self, signed_bytes: bytes) -> LocatedSignature:
        try:
            reader = PdfFileReader(BytesIO(signed_bytes))
            embedded = reader.embedded_signatures
        except Exception as e:
            raise VerificationError(VerificationErrorKind.MALFORMED, f"Cannot parse PDF: {e}") from e

        if not embedded:
            raise VerificationError(VerificationErrorKind.NOT_SIGNED, "PDF contains no signatures")

        # The most recent revision's signature
        sig_object = embedded[-1].sig_object
        try:
            byte_range = [int(value) for value in sig_object['/ByteRange']]
        except (KeyError, TypeError, ValueError) as e:
            raise VerificationError(VerificationErrorKind.MALFORMED, f"Invalid /ByteRange: {e}") from e

        return LocatedSignature(
            byte_range=byte_range,
            signed_data=decode_placeholder(signed_bytes, byte_range),
            filter_id=_pdf_name(sig_object.get('/Filter')),
            sub_filter_id=_pdf_name(sig_object.get('/SubFilter')),
            signer_display_name=_pdf_text(sig_object.get('/Name')),
            reason=_pdf_text(sig_object.get('/Reason')),
            location=_pdf_text(sig_object.get('/Location'))
        )


def _pdf_name(value) -> Optional[str]:
    if value is None:
        return None
    return str(value).lstrip('/')


def _pdf_text(value) -> Optional[str]:
    if value is None:
        return None
    return str(value)


TRAILER_BEGIN = b"\n%%SIGNATURE-BEGIN\n"
TRAILER_END = b"\n%%SIGNATURE-END\n"
BYTE_RANGE_WIDTH = 10
BYTE_RANGE_PLACEHOLDER = " ".join(["0" * BYTE_RANGE_WIDTH] * 4)


class DetachedTrailerLayout(SignatureLayout):
    """
    Generic layout for byte streams without a native signature container.

    The original bytes are followed by a trailer:

        %%SIGNATURE-BEGIN
        {"ByteRange": "...", "Filter": ..., "SubFilter": ..., "Name": ..., ...}
        <hex placeholder>
        %%SIGNATURE-END

    The signature dictionary is inside the signed byte range, so the signer
    metadata and signing time are covered by the signature.
    """

    name = "trailer"

    def accepts(self, document_bytes: bytes) -> bool:
        return True

    def reserve(
        self,
        request: SignatureRequest,
        key_material: KeyMaterial,
        reserved_bytes: int
    ) -> PreparedDocument:
        # ByteRange first, so its placeholder is the first match after the document
        dictionary = {
            "ByteRange": BYTE_RANGE_PLACEHOLDER,
            "Filter": FILTER_ADOBE_PPKLITE,
            "SubFilter": SUBFILTER_ADBE_PKCS7_DETACHED,
            "Name": request.signer_display_name,
            "Reason": request.reason,
            "Location": request.location,
            "M": request.sign_time.isoformat(),
        }
        header = json.dumps(dictionary, ensure_ascii=True).encode("ascii")

        buffer = bytearray(request.document_bytes)
        trailer_offset = len(buffer)
        buffer += TRAILER_BEGIN + header + b"\n"
        placeholder_start = len(buffer)
        buffer += b"<" + b"0" * (2 * reserved_bytes) + b">"
        placeholder_end = len(buffer)
        buffer += TRAILER_END

        prepared = PreparedDocument(buffer, placeholder_start, placeholder_end)
        encoded_range = " ".join(f"{n:0{BYTE_RANGE_WIDTH}d}" for n in prepared.byte_range).encode("ascii")
        position = buffer.index(BYTE_RANGE_PLACEHOLDER.encode("ascii"), trailer_offset)
        buffer[position:position + len(encoded_range)] = encoded_range
        return prepared

    def locate(self, signed_bytes: bytes) -> LocatedSignature:
        begin = signed_bytes.rfind(TRAILER_BEGIN)
        if begin < 0:
            raise VerificationError(VerificationErrorKind.NOT_SIGNED, "Document has no signature trailer")

        header_start = begin + len(TRAILER_BEGIN)
        header_end = signed_bytes.find(b"\n", header_start)
        try:
            dictionary = json.loads(signed_bytes[header_start:header_end].decode("ascii"))
            byte_range = [int(value) for value in dictionary["ByteRange"].split()]
        except (ValueError, KeyError, AttributeError, UnicodeDecodeError) as e:
            raise VerificationError(VerificationErrorKind.MALFORMED, f"Invalid signature trailer: {e}") from e

        if len(byte_range) != 4:
            raise VerificationError(VerificationErrorKind.MALFORMED, f"Invalid /ByteRange: {byte_range}")

        return LocatedSignature(
            byte_range=byte_range,
            signed_data=decode_placeholder(signed_bytes, byte_range),
            filter_id=dictionary.get("Filter"),
            sub_filter_id=dictionary.get("SubFilter"),
            signer_display_name=dictionary.get("Name"),
            reason=dictionary.get("Reason"),
            location=dictionary.get("Location")
        )


def default_layouts(field_name: str = "Signature1") -> List[SignatureLayout]:
    return [PdfIncrementalLayout(field_name=field_name), DetachedTrailerLayout()]


def select_layout(document_bytes: bytes, layouts: Sequence[SignatureLayout]) -> SignatureLayout:
    for layout in layouts:
        if layout.accepts(document_bytes):
            return layout
    raise ValueError("No signature layout accepts this document")
