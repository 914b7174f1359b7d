"""
Document Text Extraction
========================

Turns uploaded study material into plain text for document chat:
- PDF (.pdf) via PyPDF2
- Word (.docx) via python-docx, including tables
- PowerPoint (.pptx) via python-pptx, one block per slide
- Plain text (.txt), UTF-8 with a latin-1 fallback

Scanned/image-only files produce no text and are rejected.

Author: EduGenie Team
"""

import io

from docx import Document
from pptx import Presentation
from PyPDF2 import PdfReader

MIN_TEXT_LENGTH = 50


def _require_text(parts: list, kind: str) -> str:
    text = "\n\n".join(p for p in parts if p).strip()
    if len(text) < MIN_TEXT_LENGTH:
        raise ValueError(
            f"Could not extract sufficient text from {kind}. "
            "It might be empty, scanned, or contain only images."
        )
    return text


def _row_text(cells) -> str:
    return " | ".join(cell.text.strip() for cell in cells if cell.text.strip())


class DocumentExtractor:
    """Extract text from supported document formats"""

    @staticmethod
    def extract_from_pdf(file_bytes: bytes) -> str:
        """
        Raises:
            ValueError: Encrypted, unreadable or image-only PDF
        """
        try:
            reader = PdfReader(io.BytesIO(file_bytes))
        except Exception as e:
            raise ValueError(f"Failed to process PDF: {e}") from e

        if reader.is_encrypted:
            raise ValueError("Encrypted PDFs are not supported. Please provide an unencrypted PDF.")

        pages = []
        for page_num, page in enumerate(reader.pages, 1):
            try:
                pages.append((page.extract_text() or "").strip())
            except Exception as e:
                print(f"Warning: Could not extract text from page {page_num}: {e}")

        text = _require_text(pages, "PDF")
        print(f"Extracted {len(text)} characters from {len(reader.pages)} PDF pages")
        return text

    @staticmethod
    def extract_from_docx(file_bytes: bytes) -> str:
        try:
            doc = Document(io.BytesIO(file_bytes))
        except Exception as e:
            raise ValueError(f"Failed to process Word document: {e}") from e

        parts = [p.text.strip() for p in doc.paragraphs]
        for table in doc.tables:
            parts.extend(_row_text(row.cells) for row in table.rows)
        return _require_text(parts, "Word document")

    @staticmethod
    def extract_from_pptx(file_bytes: bytes) -> str:
        try:
            prs = Presentation(io.BytesIO(file_bytes))
        except Exception as e:
            raise ValueError(f"Failed to process PowerPoint presentation: {e}") from e

        slides = []
        for slide_num, slide in enumerate(prs.slides, 1):
            title_shape = slide.shapes.title
            title = title_shape.text.strip() if title_shape is not None else ""
            title_id = title_shape.shape_id if title_shape is not None else None
            lines = [f"=== Slide {slide_num}: {title} ===" if title else f"=== Slide {slide_num} ==="]

            for shape in slide.shapes:
                if title_id is not None and shape.shape_id == title_id:
                    continue
                if getattr(shape, "has_text_frame", False) and shape.text_frame.text.strip():
                    lines.append(shape.text_frame.text.strip())
                if getattr(shape, "has_table", False):
                    lines.extend(_row_text(row.cells) for row in shape.table.rows)

            if len(lines) > 1 or title:
                slides.append("\n".join(line for line in lines if line))

        return _require_text(slides, "PowerPoint")

    @staticmethod
    def extract_from_txt(file_bytes: bytes) -> str:
        try:
            text = file_bytes.decode("utf-8")
        except UnicodeDecodeError:
            text = file_bytes.decode("latin-1")
        return _require_text([text], "text file")

    @staticmethod
    def extract_text(file_bytes: bytes, filename: str) -> tuple:
        """
        Extract text from any supported document format

        Args:
            file_bytes: File content
            filename: Original filename (extension picks the extractor)

        Returns:
            Tuple of (extracted_text, file_type)

        Raises:
            ValueError: Unsupported format or extraction failure
        """
        extension = filename.lower().rsplit(".", 1)[-1] if "." in filename else ""

        extractors = {
            "pdf": (DocumentExtractor.extract_from_pdf, "PDF"),
            "docx": (DocumentExtractor.extract_from_docx, "Word Document"),
            "pptx": (DocumentExtractor.extract_from_pptx, "PowerPoint"),
            "txt": (DocumentExtractor.extract_from_txt, "Text File"),
        }

        if extension not in extractors:
            raise ValueError(
                f"Unsupported file format: .{extension}. "
                f"Supported formats: {', '.join(extractors)}"
            )

        extractor, file_type = extractors[extension]
        return extractor(file_bytes), file_type
