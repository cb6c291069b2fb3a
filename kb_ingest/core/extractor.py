import logging

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF-"


def extract_pdf_text(data: bytes) -> str:
    """Extracts the text of every page of a PDF, pages separated by form feeds."""
    with fitz.open(stream=data, filetype="pdf") as doc:
        pages = [page.get_text("text") for page in doc]
    logger.debug(f"Extracted text from {len(pages)} PDF pages.")
    if not any(page.strip() for page in pages):
        return ""
    # Blank pages are kept so page numbers stay aligned
    return "\f".join(page.strip() for page in pages)


def extract_text(data: bytes) -> str:
    """
    Default text extraction: PDFs go through PyMuPDF, anything else is decoded
    as UTF-8 text.
    """
    if data.lstrip()[:len(PDF_MAGIC)] == PDF_MAGIC:
        return extract_pdf_text(data)
    return data.decode("utf-8", errors="replace")
