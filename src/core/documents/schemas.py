"""Schemas for document numbering."""

from datetime import datetime

from pydantic import Field

from src.core.documents.models import DocumentType
from src.shared.schemas.base import BaseSchema


class ParsedDocumentNumber(BaseSchema):
    """Components of a formatted document number."""

    prefix: str
    year: int
    number: int


class DocumentNumberRequest(BaseSchema):
    """Request to issue the next number for a document type."""

    document_type: DocumentType
    # Defaults to now; only the calendar year is used
    issued_at: datetime | None = None


class DocumentNumberResponse(BaseSchema):
    document_number: str
    document_type: DocumentType
    year: int
    number: int = Field(ge=1)


class DocumentSequenceResponse(BaseSchema):
    prefix: str
    year: int
    last_number: int
    updated_at: datetime | None = None
