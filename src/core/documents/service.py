"""Standalone document number issuing, one transaction per call."""

import logging
from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.database.session import async_session
from src.core.documents.models import DocumentSequence, DocumentType
from src.core.documents.number_generator import (
    DocumentNumberGenerator,
    resolve_document_type,
    storage_errors,
)

logger = logging.getLogger(__name__)


class DocumentNumberService:
    """
    Issues document numbers in their own transaction.

    issue_next commits before returning, so a returned number is always
    durably consumed. If the caller later fails, the number stays used
    (no reuse, so no duplicates); if issue_next fails, nothing was consumed.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory or async_session

    async def issue_next(
        self,
        prefix: DocumentType | str,
        now: datetime | date | None = None,
    ) -> str:
        """Lock, increment and commit the counter for (prefix, year of now)."""
        # Validate before touching storage
        document_type = resolve_document_type(prefix)

        with storage_errors(f"committing {document_type} number"):
            async with self.session_factory() as session:
                async with session.begin():
                    number = await DocumentNumberGenerator(session).generate(document_type, now)

        logger.info("Issued document number %s", number)
        return number

    async def current_number(self, prefix: DocumentType | str, year: int) -> int:
        document_type = resolve_document_type(prefix)
        with storage_errors(f"reading {document_type}-{year}"):
            async with self.session_factory() as session:
                async with session.begin():
                    return await DocumentNumberGenerator(session).current_number(document_type, year)

    async def list_sequences(self, year: int | None = None) -> list[DocumentSequence]:
        with storage_errors("listing sequences"):
            async with self.session_factory() as session:
                async with session.begin():
                    return await DocumentNumberGenerator(session).list_sequences(year)


def get_document_number_service() -> DocumentNumberService:
    """Dependency for the API; tests override it with their own session factory."""
    return DocumentNumberService()
