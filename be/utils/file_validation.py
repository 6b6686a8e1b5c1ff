"""
File Upload Validation Utilities

Checks for uploaded budget forms: extension, MIME type, size limit and
encoding.
"""

from fastapi import HTTPException, UploadFile

from utils.config import BUDGET_IMPORT_MAX_BYTES

ALLOWED_HTML_EXTENSIONS = ('.html', '.htm')

ALLOWED_HTML_TYPES = [
    'text/html',
    'application/xhtml+xml',
    'application/octet-stream',  # Some browsers send saved pages as this
]


def read_html_upload(
    file: UploadFile,
    max_size: int = BUDGET_IMPORT_MAX_BYTES,
    strict_mime: bool = False
) -> str:
    """
    Validate an uploaded HTML budget form and return its text.

    Raises:
        HTTPException: If validation fails
    """
    # Validate file extension
    if not file.filename or not file.filename.lower().endswith(ALLOWED_HTML_EXTENSIONS):
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Only HTML files (.html, .htm) are allowed."
        )

    if strict_mime and file.content_type not in ALLOWED_HTML_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid content type: {file.content_type}"
        )

    # Read one byte past the limit so oversized files are detected without reading them fully
    content = file.file.read(max_size + 1)

    if len(content) > max_size:
        max_mb = max_size / (1024 * 1024)
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {max_mb:.0f} MB."
        )

    if not content:
        raise HTTPException(
            status_code=400,
            detail="File is empty."
        )

    try:
        return content.decode('utf-8-sig')
    except UnicodeDecodeError:
        raise HTTPException(
            status_code=400,
            detail="File is not valid UTF-8 text."
        )
