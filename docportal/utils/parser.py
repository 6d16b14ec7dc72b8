import io
import logging
import os
from typing import Optional
import filetype
from PyPDF2 import PdfReader

logger = logging.getLogger(__name__)

PDF_MIMETYPE = "application/pdf"
PDF_EXTENSION = ".pdf"


class UnsupportedFileTypeError(ValueError):
    pass


class InvalidPDFError(ValueError):
    pass


def validate_pdf_upload(filename: Optional[str], content_type: Optional[str], content: bytes) -> None:
    """
        Accept only files declared as PDF, named *.pdf and starting with PDF magic bytes.
    """
    ext = os.path.splitext(filename or "")[1].lower()
    if content_type != PDF_MIMETYPE or ext != PDF_EXTENSION:
        raise UnsupportedFileTypeError("Only PDF files are allowed")

    kind = filetype.guess(content)
    if kind is None or kind.mime != PDF_MIMETYPE:
        raise UnsupportedFileTypeError("Only PDF files are allowed")


def inspect_pdf(content: bytes) -> int:
    """
        Parse the PDF and return its page count.
    """
    try:
        reader = PdfReader(io.BytesIO(content))
        pages = len(reader.pages)
    except Exception as exc:
        # besides PdfReadError, damaged xref data surfaces as AttributeError, TypeError and others
        logger.info("Rejected unreadable PDF: %s", exc)
        raise InvalidPDFError("File is not a readable PDF") from exc
    if pages == 0:
        raise InvalidPDFError("File is not a readable PDF")
    return pages
