from src.core.documents.models import DocumentSequence, DocumentType
from src.core.documents.number_generator import (
    CounterCreationConflict,
    DocumentNumberGenerator,
    format_document_number,
    get_document_number,
    parse_document_number,
    resolve_document_type,
    resolve_year,
)
from src.core.documents.service import DocumentNumberService

__all__ = [
    "CounterCreationConflict",
    "DocumentNumberGenerator",
    "DocumentNumberService",
    "DocumentSequence",
    "DocumentType",
    "format_document_number",
    "get_document_number",
    "parse_document_number",
    "resolve_document_type",
    "resolve_year",
]
