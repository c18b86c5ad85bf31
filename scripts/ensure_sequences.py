#!/usr/bin/env python3
"""
Create zeroed document number counters for a year before it starts.

Numbering works without this (counters are created on first use), but
pre-creating them keeps the first issue of the year off the insert path.

Usage:
    python scripts/ensure_sequences.py              # next calendar year
    python scripts/ensure_sequences.py --year 2027
    python scripts/ensure_sequences.py --year 2027 --type INV --type CON
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.core.database.session import async_session, engine
from src.core.documents.models import DocumentType
from src.core.documents.number_generator import DocumentNumberGenerator, resolve_document_type

logger = logging.getLogger("ensure_sequences")


async def ensure(year: int, prefixes: list[DocumentType] | None) -> list[DocumentType]:
    async with async_session() as session:
        async with session.begin():
            return await DocumentNumberGenerator(session).ensure_sequences(year, prefixes)


async def main() -> int:
    parser = argparse.ArgumentParser(description="Pre-create document number counters for a year")
    parser.add_argument(
        "--year",
        type=int,
        default=datetime.now(timezone.utc).year + 1,
        help="Year to prepare (default: next year)",
    )
    parser.add_argument(
        "--type",
        dest="types",
        action="append",
        choices=[t.value for t in DocumentType],
        help="Document type prefix; repeat for several (default: all)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    prefixes = [resolve_document_type(t) for t in args.types] if args.types else None
    try:
        created = await ensure(args.year, prefixes)
    finally:
        await engine.dispose()

    if created:
        logger.info("Created counters for %s: %s", args.year, ", ".join(created))
    else:
        logger.info("All counters for %s already exist", args.year)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
