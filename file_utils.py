"""
Upload Validation
=================

Checks documents uploaded for document chat before any parsing happens:
- extension must be a supported document format
- size must be within MAX_DOCUMENT_SIZE_MB
- file must not be (nearly) empty

Author: EduGenie Team
"""

from pathlib import Path

from fastapi import HTTPException, UploadFile

from config import config

MIN_DOCUMENT_BYTES = 20


class FileValidator:
    """Validates uploaded files against size and type constraints"""

    @staticmethod
    def extension(filename: str) -> str:
        return Path(filename or "").suffix.lower()

    @staticmethod
    async def validate_document(file: UploadFile) -> bytes:
        """
        Validate a document upload and return its bytes

        Args:
            file: Uploaded document from FastAPI

        Returns:
            bytes: File content

        Raises:
            HTTPException: 400 for unsupported type, oversize or empty files
        """
        if FileValidator.extension(file.filename) not in config.DOCUMENT_FORMATS:
            supported = ", ".join(sorted(config.DOCUMENT_FORMATS))
            raise HTTPException(
                status_code=400,
                detail=f"Unsupported file format. Supported formats: {supported}"
            )

        content = await file.read()

        if len(content) > config.MAX_DOCUMENT_SIZE:
            max_size_mb = config.MAX_DOCUMENT_SIZE / (1024 * 1024)
            raise HTTPException(
                status_code=400,
                detail=f"File too large. Maximum size: {max_size_mb:.0f}MB"
            )

        if len(content) < MIN_DOCUMENT_BYTES:
            raise HTTPException(status_code=400, detail="File is too small or empty")

        return content

    @staticmethod
    def format_file_size(size_bytes: int) -> str:
        """Human-readable size, e.g. "1.5 MB" """
        if size_bytes < 1024:
            return f"{size_bytes} B"
        elif size_bytes < 1024 * 1024:
            return f"{size_bytes / 1024:.1f} KB"
        return f"{size_bytes / (1024 * 1024):.1f} MB"
