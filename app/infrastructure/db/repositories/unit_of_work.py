"""
SQLAlchemy Unit of Work
All repositories of one batch share a single AsyncSession (one transaction)
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from app.infrastructure.db.repositories.invoice_repository import InvoiceRepository
from app.infrastructure.db.repositories.operation_repository import (
    OperationGroupRepository,
    OperationRepository,
)
from app.infrastructure.db.repositories.position_repository import (
    EntryLotRepository,
    ExitRecordRepository,
    PositionRepository,
)
from app.infrastructure.db.repositories.source_mapping_repository import SourceMappingRepository


class SqlAlchemyUnitOfWork:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.invoices = InvoiceRepository(session)
        self.operations = OperationRepository(session)
        self.positions = PositionRepository(session)
        self.entry_lots = EntryLotRepository(session)
        self.exit_records = ExitRecordRepository(session)
        self.groups = OperationGroupRepository(session)
        self.source_mappings = SourceMappingRepository(session)

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        """SAVEPOINT scope; rolled back to on exception, released otherwise"""
        async with self.session.begin_nested():
            yield
