"""
Source Mapping Repository
Audit links from line items to the operations they produced - insert only
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import func, select
from typing import List

from app.infrastructure.db.models import SourceMappingModel
from app.domain.models import MappingType, SourceMapping


class SourceMappingRepository:
    """Repository for SourceMapping"""

    def __init__(self, session: AsyncSession):
        """Initialize with database session"""
        self.session = session

    async def create(self, mapping: SourceMapping) -> SourceMapping:
        model = SourceMappingModel(
            operation_id=mapping.operation_id,
            invoice_id=mapping.invoice_id,
            line_item_id=mapping.line_item_id,
            mapping_type=mapping.mapping_type,
            processing_sequence=mapping.processing_sequence,
            notes=mapping.notes,
        )
        if mapping.created_at is not None:
            model.created_at = mapping.created_at

        self.session.add(model)
        await self.session.flush()

        return self._to_domain(model)

    async def exists_for_line_item(self, line_item_id: int) -> bool:
        result = await self.session.execute(
            select(func.count(SourceMappingModel.id))
            .where(SourceMappingModel.line_item_id == line_item_id)
        )
        return result.scalar_one() > 0

    async def next_sequence(self, invoice_id: int) -> int:
        """Next processing sequence for an invoice (1-based, strictly increasing)"""
        result = await self.session.execute(
            select(func.coalesce(func.max(SourceMappingModel.processing_sequence), 0))
            .where(SourceMappingModel.invoice_id == invoice_id)
        )
        return result.scalar_one() + 1

    async def list_for_invoice(self, invoice_id: int) -> List[SourceMapping]:
        result = await self.session.execute(
            select(SourceMappingModel)
            .where(SourceMappingModel.invoice_id == invoice_id)
            .order_by(SourceMappingModel.processing_sequence)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    @staticmethod
    def _to_domain(model: SourceMappingModel) -> SourceMapping:
        return SourceMapping(
            id=model.id,
            operation_id=model.operation_id,
            invoice_id=model.invoice_id,
            line_item_id=model.line_item_id,
            mapping_type=MappingType(model.mapping_type.value),
            processing_sequence=model.processing_sequence,
            notes=model.notes,
            created_at=model.created_at,
        )
