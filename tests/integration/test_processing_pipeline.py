"""
End-to-end invoice processing against SQLite

✅ Three invoices open, partially close and close one XYZ11 position
✅ Terminal operation carries the full result; partials are hidden
✅ A fatal integration error leaves no rows behind
"""

import pytest
from datetime import date, timedelta
from decimal import Decimal

from app.domain.models import (
    Invoice,
    InvoiceProcessingStatus,
    LineItem,
    OperationStatus,
    PositionStatus,
)
from app.domain.services.exit_consolidation_engine import ExitConsolidationEngine
from app.domain.services.integration_processor import IntegrationProcessor
from app.domain.services.processing_orchestrator import ProcessingOrchestrator
from app.domain.services.session_store import InMemorySessionStore, SessionStatus
from app.infrastructure.db.repositories.unit_of_work import SqlAlchemyUnitOfWork

BASE = date.today() - timedelta(days=30)


class ExplodingEngine(ExitConsolidationEngine):
    async def process_exit(self, position, fill):
        raise RuntimeError("disk on fire")


async def _invoice(uow, number, trading_date, side, quantity, price):
    invoice = await uow.invoices.create(
        Invoice(
            invoice_number=number,
            trading_date=trading_date,
            brokerage="Clear",
            user_id="user-1",
        ),
        [LineItem(1, "XYZ11", side, quantity, Decimal(price), Decimal(price) * quantity)],
    )
    await uow.commit()
    return invoice.id


async def _xyz11(uow):
    return [
        await _invoice(uow, "NF-1", BASE, "C", 300, "1.03"),
        await _invoice(uow, "NF-2", BASE + timedelta(days=2), "V", 75, "1.73"),
        await _invoice(uow, "NF-3", BASE + timedelta(days=4), "V", 225, "0.46"),
    ]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_xyz11_round_trip(db_session):
    uow = SqlAlchemyUnitOfWork(db_session)
    store = InMemorySessionStore(ttl_seconds=3600)
    invoice_ids = await _xyz11(uow)

    result = await ProcessingOrchestrator(uow, session_store=store).process_batch(invoice_ids, "user-1")

    assert result.success, result.message
    assert result.created_operations == 3
    assert (await store.get(result.session_id)).status == SessionStatus.SUCCESS

    [position] = await uow.positions.list_for_user("user-1")
    assert position.status == PositionStatus.CLOSED
    assert position.remaining_quantity == 0
    assert position.close_date == BASE + timedelta(days=4)

    visible = await uow.operations.list_for_user("user-1")
    closed = [op for op in visible if op.status != OperationStatus.ACTIVE]
    assert len(closed) == 1
    terminal = closed[0]
    assert terminal.status == OperationStatus.LOSER
    assert terminal.quantity == 300
    assert terminal.profit_loss == Decimal("-75.75")
    assert round(terminal.profit_loss_percentage, 2) == Decimal("-24.51")

    everything = await uow.operations.list_for_user("user-1", include_hidden=True)
    hidden = [op for op in everything if op.status == OperationStatus.HIDDEN]
    assert len(hidden) == 1
    assert hidden[0].profit_loss == Decimal("52.50")

    for invoice_id in invoice_ids:
        invoice = await uow.invoices.get(invoice_id)
        assert invoice.processing_status == InvoiceProcessingStatus.SUCCESS
        assert len(await uow.source_mappings.list_for_invoice(invoice_id)) == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_fatal_error_rolls_back_the_batch(db_session):
    uow = SqlAlchemyUnitOfWork(db_session)
    invoice_ids = await _xyz11(uow)
    engine = ExplodingEngine(uow.positions, uow.entry_lots, uow.exit_records, uow.operations, uow.groups)
    orchestrator = ProcessingOrchestrator(
        uow,
        session_store=InMemorySessionStore(ttl_seconds=3600),
        integration_processor=IntegrationProcessor(uow, lot_engine=engine),
    )

    result = await orchestrator.process_batch(invoice_ids, "user-1")

    assert not result.success
    assert result.message == "Integration aborted: Unexpected error: disk on fire"
    assert await uow.positions.list_for_user("user-1") == []
    assert await uow.operations.list_for_user("user-1", include_hidden=True) == []
    for invoice_id in invoice_ids:
        assert await uow.source_mappings.list_for_invoice(invoice_id) == []
        invoice = await uow.invoices.get(invoice_id)
        assert invoice.processing_status == InvoiceProcessingStatus.ERROR
