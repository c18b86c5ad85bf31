"""API for issuing document numbers and inspecting sequences."""

from fastapi import APIRouter, Depends, Query, status

from src.core.documents.number_generator import parse_document_number
from src.core.documents.schemas import (
    DocumentNumberRequest,
    DocumentNumberResponse,
    DocumentSequenceResponse,
)
from src.core.documents.service import DocumentNumberService, get_document_number_service
from src.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/document-numbers", tags=["Document Numbers"])


@router.post(
    "",
    response_model=ApiResponse[DocumentNumberResponse],
    status_code=status.HTTP_201_CREATED,
)
async def issue_document_number(
    data: DocumentNumberRequest,
    service: DocumentNumberService = Depends(get_document_number_service),
):
    """Issue the next number for a document type. The number is consumed on success."""
    document_number = await service.issue_next(data.document_type, data.issued_at)
    parsed = parse_document_number(document_number)
    return ApiResponse(
        success=True,
        data=DocumentNumberResponse(
            document_number=document_number,
            document_type=data.document_type,
            year=parsed.year,
            number=parsed.number,
        ),
    )


@router.get("/sequences", response_model=ApiResponse[list[DocumentSequenceResponse]])
async def list_sequences(
    year: int | None = Query(None, ge=1, le=9999),
    service: DocumentNumberService = Depends(get_document_number_service),
):
    """List counters, optionally for one year."""
    sequences = await service.list_sequences(year)
    return ApiResponse(
        success=True,
        data=[DocumentSequenceResponse.model_validate(s) for s in sequences],
    )
