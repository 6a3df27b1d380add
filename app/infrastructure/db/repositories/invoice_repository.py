"""
Invoice Repository
Invoices and their line items
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional, List

from app.infrastructure.db.models import InvoiceModel, LineItemModel
from app.domain.models import Invoice, InvoiceProcessingStatus, LineItem
from app.utils.time import now_local_naive


class InvoiceRepository:
    """Repository for Invoice and LineItem"""

    def __init__(self, session: AsyncSession):
        """Initialize with database session"""
        self.session = session

    async def create(self, invoice: Invoice, items: List[LineItem]) -> Invoice:
        """
        Store an invoice with its already-extracted line items

        Args:
            invoice: Invoice header
            items: Line items (sequence numbers unique per invoice)

        Returns:
            Invoice with its ID
        """
        now = now_local_naive()
        model = InvoiceModel(
            invoice_number=invoice.invoice_number,
            trading_date=invoice.trading_date,
            settlement_date=invoice.settlement_date,
            brokerage=invoice.brokerage,
            user_id=invoice.user_id,
            processing_status=invoice.processing_status,
            processing_attempts=invoice.processing_attempts,
            created_at=invoice.created_at or now,
            updated_at=invoice.updated_at or now,
        )
        self.session.add(model)
        await self.session.flush()

        for item in items:
            self.session.add(LineItemModel(
                invoice_id=model.id,
                sequence_number=item.sequence_number,
                asset_code=item.asset_code,
                operation_type=item.operation_type,
                market_type=item.market_type,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_value=item.total_value,
                trade_date=item.trade_date,
                is_day_trade=item.is_day_trade,
                observations=item.observations,
            ))
        await self.session.flush()

        return self._to_domain(model)

    async def get(self, invoice_id: int) -> Optional[Invoice]:
        model = await self.session.get(InvoiceModel, invoice_id)
        return self._to_domain(model) if model else None

    async def list_items(self, invoice_id: int) -> List[LineItem]:
        """
        Get the line items of an invoice

        Returns:
            Line items ordered by sequence number
        """
        result = await self.session.execute(
            select(LineItemModel)
            .where(LineItemModel.invoice_id == invoice_id)
            .order_by(LineItemModel.sequence_number)
        )
        return [self._item_to_domain(m) for m in result.scalars().all()]

    async def update_status(
        self,
        invoice_id: int,
        status: InvoiceProcessingStatus,
        count_attempt: bool = False,
    ) -> None:
        model = await self.session.get(InvoiceModel, invoice_id)
        if model is None:
            return
        model.processing_status = status
        if count_attempt:
            model.processing_attempts = (model.processing_attempts or 0) + 1
        model.updated_at = now_local_naive()
        await self.session.flush()

    @staticmethod
    def _to_domain(model: InvoiceModel) -> Invoice:
        """Convert database model to domain entity"""
        return Invoice(
            id=model.id,
            invoice_number=model.invoice_number,
            trading_date=model.trading_date,
            settlement_date=model.settlement_date,
            brokerage=model.brokerage,
            user_id=model.user_id,
            processing_status=InvoiceProcessingStatus(model.processing_status.value),
            processing_attempts=model.processing_attempts,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _item_to_domain(model: LineItemModel) -> LineItem:
        return LineItem(
            id=model.id,
            invoice_id=model.invoice_id,
            sequence_number=model.sequence_number,
            asset_code=model.asset_code,
            operation_type=model.operation_type,
            market_type=model.market_type,
            quantity=model.quantity,
            unit_price=model.unit_price,
            total_value=model.total_value,
            trade_date=model.trade_date,
            is_day_trade=model.is_day_trade,
            observations=model.observations,
        )
