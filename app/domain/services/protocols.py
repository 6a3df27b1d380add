"""
Persistence capability interfaces - ASYNC

The core only needs find/save/exists style calls. Related collections are
always fetched through a named call, never through implicit loading.
"""

from datetime import date
from typing import AsyncContextManager, Optional, Protocol

from app.domain.models import (
    EntryLot,
    ExitRecord,
    Invoice,
    InvoiceProcessingStatus,
    LineItem,
    Operation,
    OperationGroup,
    OperationGroupItem,
    OperationRole,
    Position,
    Side,
    SourceMapping,
)


class InvoiceRepository(Protocol):
    """Protocol for invoice and line item data access - ASYNC"""

    async def create(self, invoice: Invoice, items: list[LineItem]) -> Invoice:
        ...

    async def get(self, invoice_id: int) -> Optional[Invoice]:
        ...

    async def list_items(self, invoice_id: int) -> list[LineItem]:
        """Get the line items of an invoice ordered by sequence number"""
        ...

    async def update_status(
        self,
        invoice_id: int,
        status: InvoiceProcessingStatus,
        count_attempt: bool = False,
    ) -> None:
        ...


class OperationRepository(Protocol):
    """Protocol for operation data access - ASYNC"""

    async def create(self, operation: Operation) -> Operation:
        ...

    async def update(self, operation: Operation) -> Operation:
        ...

    async def get(self, operation_id: int) -> Optional[Operation]:
        ...

    async def list_by_ids(self, operation_ids: list[int]) -> list[Operation]:
        ...

    async def find_similar(
        self,
        user_id: str,
        asset_code: str,
        side: Side,
        quantity: int,
        trade_date: date,
    ) -> list[Operation]:
        """Non-hidden operations with the same business key"""
        ...

    async def list_for_user(self, user_id: str, include_hidden: bool = False) -> list[Operation]:
        ...


class PositionRepository(Protocol):
    """Protocol for position data access - ASYNC"""

    async def create(self, position: Position) -> Position:
        ...

    async def update(self, position: Position) -> Position:
        ...

    async def get(self, position_id: int) -> Optional[Position]:
        ...

    async def find_open(self, user_id: str, asset_code: str) -> Optional[Position]:
        """The non-closed position of a user in an instrument, if any"""
        ...

    async def list_for_user(self, user_id: str) -> list[Position]:
        ...


class EntryLotRepository(Protocol):
    """Protocol for entry lot data access - ASYNC"""

    async def create(self, lot: EntryLot) -> EntryLot:
        ...

    async def update(self, lot: EntryLot) -> EntryLot:
        ...

    async def list_for_position(self, position_id: int) -> list[EntryLot]:
        ...


class ExitRecordRepository(Protocol):
    """Protocol for exit record data access - ASYNC"""

    async def create(self, record: ExitRecord) -> ExitRecord:
        ...

    async def list_for_lots(self, lot_ids: list[int]) -> list[ExitRecord]:
        ...


class OperationGroupRepository(Protocol):
    """Protocol for operation group data access - ASYNC"""

    async def create(self, group: OperationGroup) -> OperationGroup:
        ...

    async def update(self, group: OperationGroup) -> OperationGroup:
        ...

    async def get(self, group_id: int) -> Optional[OperationGroup]:
        ...

    async def add_item(
        self, group_id: int, operation_id: int, role: OperationRole
    ) -> OperationGroupItem:
        """Append an operation to the group with the next sequence number"""
        ...

    async def list_items(self, group_id: int) -> list[OperationGroupItem]:
        ...


class SourceMappingRepository(Protocol):
    """Protocol for source mapping data access - ASYNC"""

    async def create(self, mapping: SourceMapping) -> SourceMapping:
        ...

    async def exists_for_line_item(self, line_item_id: int) -> bool:
        ...

    async def next_sequence(self, invoice_id: int) -> int:
        ...

    async def list_for_invoice(self, invoice_id: int) -> list[SourceMapping]:
        ...


class UnitOfWork(Protocol):
    """Repositories sharing one transaction"""

    invoices: InvoiceRepository
    operations: OperationRepository
    positions: PositionRepository
    entry_lots: EntryLotRepository
    exit_records: ExitRecordRepository
    groups: OperationGroupRepository
    source_mappings: SourceMappingRepository

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...

    def savepoint(self) -> AsyncContextManager:
        """Nested all-or-nothing scope; undone if the block raises"""
        ...
