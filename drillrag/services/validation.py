"""
Request validation for document processing.

All violations are collected and reported together in one ValidationError
so the caller sees every problem with the request at once.
"""

from __future__ import annotations

import re

from drillrag.core.exceptions import ValidationError

COLLECTION_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
PDF_MAGIC = b"%PDF-"


def validate_processing_request(key: str, collection: str, user_id: str) -> None:
    errors: list[str] = []

    if not key or not isinstance(key, str):
        errors.append("File key is required and must be a string")
    else:
        if not key.lower().endswith(".pdf"):
            errors.append("Only PDF files are supported")
        if ".." in key or "//" in key:
            errors.append("Invalid file path")

    if not collection or not isinstance(collection, str):
        errors.append("Collection name is required and must be a string")
    elif not COLLECTION_NAME_PATTERN.match(collection):
        errors.append("Collection name must contain only letters, digits, '_' or '-'")

    if not user_id or not isinstance(user_id, str):
        errors.append("User ID is required and must be a string")

    if errors:
        raise ValidationError(
            f"Validation failed: {'; '.join(errors)}",
            context={"key": key, "collection": collection, "violations": errors},
        )


def validate_pdf_bytes(data: bytes, key: str = "") -> None:
    """The buffer must be non-empty and start with the PDF header."""
    if not data:
        raise ValidationError("Downloaded file is empty", context={"key": key})
    if not data.startswith(PDF_MAGIC):
        raise ValidationError(
            "File is not a valid PDF (missing %PDF- header)",
            context={"key": key},
            suggestions=["Re-export the document as PDF and upload it again"],
        )
