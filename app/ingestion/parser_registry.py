"""
Line-item parser registry.

Broker-specific parsers turn raw document text into an invoice header and
its line items. They are registered as (predicate, parser) pairs and the
first predicate that accepts a document selects the parser; higher
priority entries are tried first, ties keep registration order.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from app.domain.errors import InvoiceValidationError
from app.domain.models import Invoice, LineItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParsedDocument:
    invoice: Invoice
    items: tuple[LineItem, ...]


DocumentPredicate = Callable[[str, str], bool]
DocumentParser = Callable[[str, str, str], ParsedDocument]


@dataclass(frozen=True)
class ParserEntry:
    name: str
    predicate: DocumentPredicate
    parser: DocumentParser
    priority: int = 0


class LineItemParserRegistry:
    def __init__(self) -> None:
        self._entries: list[ParserEntry] = []

    def register(
        self,
        name: str,
        predicate: DocumentPredicate,
        parser: DocumentParser,
        priority: int = 0,
    ) -> None:
        if any(entry.name == name for entry in self._entries):
            raise ValueError(f"Parser '{name}' is already registered")
        self._entries.append(ParserEntry(name, predicate, parser, priority))
        # sort is stable, so equal priorities keep registration order
        self._entries.sort(key=lambda entry: -entry.priority)
        logger.info("Registered line-item parser '%s' (priority %d)", name, priority)

    @property
    def names(self) -> list[str]:
        return [entry.name for entry in self._entries]

    def resolve(self, text: str, filename: str = "") -> Optional[ParserEntry]:
        for entry in self._entries:
            if entry.predicate(text, filename):
                return entry
        return None

    def parse(self, text: str, user_id: str, filename: str = "") -> ParsedDocument:
        """
        Parse a document with the first matching parser

        Raises:
            InvoiceValidationError: If no registered parser accepts the document
        """
        entry = self.resolve(text, filename)
        if entry is None:
            raise InvoiceValidationError(
                f"No parser accepts document '{filename or '<text>'}'", filename=filename
            )
        logger.info("Parsing '%s' with '%s'", filename or "<text>", entry.name)
        return entry.parser(text, filename, user_id)
