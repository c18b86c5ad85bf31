from enum import StrEnum

from sqlalchemy import CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import BigIntPK, TimestampedModel


class DocumentType(StrEnum):
    """Document kinds that get their own yearly number sequence."""

    INVOICE = "INV"
    CONTRACT = "CON"
    HR = "HR"


class DocumentSequence(TimestampedModel):
    """Stores document number sequences per prefix and year.

    last_number is the count of numbers issued so far for the key; it only
    ever moves forward by one, inside the issuing transaction.
    """

    __tablename__ = "document_sequences"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    __table_args__ = (
        UniqueConstraint("prefix", "year", name="uq_document_sequence_prefix_year"),
        CheckConstraint("last_number >= 0", name="ck_document_sequence_last_number_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<DocumentSequence {self.prefix}-{self.year} last={self.last_number}>"
