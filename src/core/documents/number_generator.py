import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError, ProgrammingError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.config import settings
from src.core.documents.models import DocumentSequence, DocumentType
from src.core.documents.schemas import ParsedDocumentNumber
from src.core.exceptions import InvalidPrefixError, StorageUnavailableError, ValidationError

logger = logging.getLogger(__name__)

# Driver/pool failures that mean the counter store could not do its job.
STORAGE_ERRORS = (OperationalError, InterfaceError, PoolTimeoutError, OSError)

# asyncpg surfaces these as a plain DBAPIError: lock_timeout, deadlock,
# serialization failure, admin/crash shutdown, cannot connect now.
TRANSIENT_SQLSTATES = frozenset({"55P03", "40P01", "40001", "57P01", "57P02", "57P03"})

_DOCUMENT_NUMBER_RE = re.compile(r"^(?P<prefix>[A-Z][A-Z0-9]*)-(?P<year>\d{4})-(?P<number>\d+)$")


class CounterCreationConflict(Exception):
    """Another transaction created the same (prefix, year) row first."""

    def __init__(self, prefix: str, year: int):
        self.prefix = prefix
        self.year = year
        super().__init__(f"Sequence {prefix}-{year} was created concurrently")


def is_storage_failure(exc: BaseException) -> bool:
    """True for errors meaning the store was unreachable or the transaction could not complete."""
    if isinstance(exc, STORAGE_ERRORS):
        return True
    if not isinstance(exc, DBAPIError) or isinstance(exc, (IntegrityError, ProgrammingError)):
        return False
    if exc.connection_invalidated:
        return True
    sqlstate = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    return sqlstate in TRANSIENT_SQLSTATES


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    """Re-raise driver and pool failures as StorageUnavailableError."""
    try:
        yield
    except (DBAPIError, PoolTimeoutError, OSError) as exc:
        if not is_storage_failure(exc):
            raise
        logger.error("Document number storage failed while %s: %s", action, exc)
        raise StorageUnavailableError() from exc


def resolve_document_type(prefix: DocumentType | str | None) -> DocumentType:
    """Map a caller-supplied prefix onto the fixed set of document types."""
    if isinstance(prefix, DocumentType):
        return prefix
    if not isinstance(prefix, str) or not prefix.strip():
        raise InvalidPrefixError(prefix)
    try:
        return DocumentType(prefix)
    except ValueError:
        raise InvalidPrefixError(prefix, allowed=[t.value for t in DocumentType]) from None


def resolve_year(now: datetime | date | None = None) -> int:
    """Calendar year that scopes the counter. Defaults to the current UTC year."""
    if now is None:
        return datetime.now(timezone.utc).year
    if isinstance(now, date):
        return now.year
    raise ValidationError("Issue time must be a date or datetime", field="issued_at")


def format_document_number(
    prefix: DocumentType | str,
    year: int,
    number: int,
    width: int | None = None,
) -> str:
    """
    Format a document number: PREFIX-YYYY-NNNNN

    Numbers longer than the padding width are kept whole.

    Examples:
        INV-2025-00001
        CON-2025-00042
    """
    if width is None:
        width = settings.document_number_width
    if width < 1:
        raise ValidationError("Padding width must be positive", field="width")
    if not 1 <= year <= 9999:
        raise ValidationError(f"Year out of range: {year}", field="year")
    if number < 1:
        raise ValidationError(f"Document numbers start at 1, got {number}", field="number")
    return f"{prefix}-{year:04d}-{number:0{width}d}"


def parse_document_number(value: str) -> ParsedDocumentNumber:
    """Split a formatted document number back into prefix, year and number."""
    match = _DOCUMENT_NUMBER_RE.match(value.strip()) if isinstance(value, str) else None
    if match is None or int(match["number"]) < 1:
        raise ValidationError(f"Malformed document number: {value!r}", field="document_number")
    return ParsedDocumentNumber(
        prefix=match["prefix"],
        year=int(match["year"]),
        number=int(match["number"]),
    )


class DocumentNumberGenerator:
    """
    Generates sequential document numbers in format: PREFIX-YYYY-NNNNN

    Runs inside the caller's transaction: the counter increment becomes
    durable only when the caller commits, and disappears with a rollback.

    Examples:
        INV-2025-00001
        CON-2025-00042
        HR-2026-00007
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def generate(
        self,
        prefix: DocumentType | str,
        now: datetime | date | None = None,
    ) -> str:
        """
        Generate next document number for given prefix and the year of `now`.

        Uses SELECT FOR UPDATE to ensure uniqueness in concurrent scenarios.
        A brand-new key is inserted inside a savepoint; losing the insert race
        to another transaction falls back to locking the winner's row.
        """
        document_type = resolve_document_type(prefix)
        year = resolve_year(now)

        with storage_errors(f"issuing {document_type}-{year}"):
            await self._apply_lock_timeout()
            sequence = await self._lock_sequence(document_type, year)

            attempts = 0
            while sequence is None:
                attempts += 1
                try:
                    sequence = await self._create_sequence(document_type, year)
                except CounterCreationConflict as conflict:
                    if attempts >= settings.document_number_max_retries:
                        logger.error("Gave up creating sequence after %d conflicts: %s", attempts, conflict)
                        raise StorageUnavailableError(
                            f"Could not create sequence {document_type}-{year}, try again later"
                        ) from conflict
                    logger.info("%s; locking existing row (attempt %d)", conflict, attempts)
                    sequence = await self._lock_sequence(document_type, year)

            sequence.last_number += 1
            await self.session.flush()

        number = format_document_number(document_type, year, sequence.last_number)
        logger.debug("Issued document number %s", number)
        return number

    async def current_number(self, prefix: DocumentType | str, year: int) -> int:
        """Last number issued for the key, 0 when nothing was issued yet."""
        document_type = resolve_document_type(prefix)
        with storage_errors(f"reading {document_type}-{year}"):
            value = await self.session.scalar(
                select(DocumentSequence.last_number).where(
                    DocumentSequence.prefix == document_type.value,
                    DocumentSequence.year == year,
                )
            )
        return value or 0

    async def list_sequences(self, year: int | None = None) -> list[DocumentSequence]:
        stmt = select(DocumentSequence).order_by(DocumentSequence.year, DocumentSequence.prefix)
        if year is not None:
            stmt = stmt.where(DocumentSequence.year == year)
        with storage_errors("listing sequences"):
            result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def ensure_sequences(
        self,
        year: int,
        prefixes: list[DocumentType] | None = None,
    ) -> list[DocumentType]:
        """Create zeroed counters for the year ahead of time. Returns the types created."""
        created: list[DocumentType] = []
        with storage_errors(f"preparing sequences for {year}"):
            for document_type in prefixes or list(DocumentType):
                if await self._lock_sequence(document_type, year) is not None:
                    continue
                try:
                    await self._create_sequence(document_type, year)
                except CounterCreationConflict:
                    # Someone issued the first number meanwhile
                    continue
                created.append(document_type)
        return created

    async def _lock_sequence(self, document_type: DocumentType, year: int) -> DocumentSequence | None:
        stmt = (
            select(DocumentSequence)
            .where(DocumentSequence.prefix == document_type.value, DocumentSequence.year == year)
            .with_for_update()
            # Row may already sit in the identity map with a stale value
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _create_sequence(self, document_type: DocumentType, year: int) -> DocumentSequence:
        try:
            async with self.session.begin_nested():
                self.session.add(DocumentSequence(prefix=document_type.value, year=year, last_number=0))
                await self.session.flush()
        except IntegrityError as exc:
            raise CounterCreationConflict(document_type.value, year) from exc

        logger.info("Created document sequence %s-%s", document_type, year)

        # Re-fetch with lock
        sequence = await self._lock_sequence(document_type, year)
        if sequence is None:
            raise CounterCreationConflict(document_type.value, year)
        return sequence

    async def _apply_lock_timeout(self) -> None:
        timeout_ms = settings.document_number_lock_timeout_ms
        if timeout_ms <= 0:
            return
        connection = await self.session.connection()
        if connection.dialect.name == "postgresql":
            # SET does not take bind parameters; value is an int from settings
            await self.session.execute(text(f"SET LOCAL lock_timeout = {int(timeout_ms)}"))


async def get_document_number(
    session: AsyncSession,
    prefix: DocumentType | str,
    now: datetime | date | None = None,
) -> str:
    """Convenience function to generate a document number in the caller's transaction."""
    generator = DocumentNumberGenerator(session)
    return await generator.generate(prefix, now)
