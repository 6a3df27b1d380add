"""
Operation Repositories
Trade operations and operation groups
"""

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import and_, func, or_, select
from datetime import date
from typing import Optional, List

from app.infrastructure.db.models import (
    OperationGroupItemModel,
    OperationGroupModel,
    OperationModel,
)
from app.domain.models import (
    GroupStatus,
    Operation,
    OperationGroup,
    OperationGroupItem,
    OperationRole,
    OperationStatus,
    Side,
    TradeType,
)


class OperationRepository:
    """Repository for Operation"""

    def __init__(self, session: AsyncSession):
        """Initialize with database session"""
        self.session = session

    async def create(self, operation: Operation) -> Operation:
        model = OperationModel(
            user_id=operation.user_id,
            asset_code=operation.asset_code,
            side=operation.side,
            trade_type=operation.trade_type,
            status=operation.status,
            entry_date=operation.entry_date,
            quantity=operation.quantity,
            entry_unit_price=operation.entry_unit_price,
            entry_total_value=operation.entry_total_value,
            exit_date=operation.exit_date,
            exit_unit_price=operation.exit_unit_price,
            exit_total_value=operation.exit_total_value,
            profit_loss=operation.profit_loss,
            profit_loss_percentage=operation.profit_loss_percentage,
        )
        if operation.created_at is not None:
            model.created_at = operation.created_at

        self.session.add(model)
        await self.session.flush()

        return self._to_domain(model)

    async def update(self, operation: Operation) -> Operation:
        """
        Persist a changed operation snapshot

        Raises:
            ValueError: If the operation does not exist
        """
        model = await self.session.get(OperationModel, operation.id)
        if model is None:
            raise ValueError(f"Operation {operation.id} not found")

        model.status = operation.status
        model.trade_type = operation.trade_type
        model.quantity = operation.quantity
        model.exit_date = operation.exit_date
        model.exit_unit_price = operation.exit_unit_price
        model.exit_total_value = operation.exit_total_value
        model.profit_loss = operation.profit_loss
        model.profit_loss_percentage = operation.profit_loss_percentage
        await self.session.flush()

        return self._to_domain(model)

    async def get(self, operation_id: int) -> Optional[Operation]:
        model = await self.session.get(OperationModel, operation_id)
        return self._to_domain(model) if model else None

    async def list_by_ids(self, operation_ids: List[int]) -> List[Operation]:
        if not operation_ids:
            return []
        result = await self.session.execute(
            select(OperationModel)
            .where(OperationModel.id.in_(operation_ids))
            .order_by(OperationModel.id)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    async def find_similar(
        self,
        user_id: str,
        asset_code: str,
        side: Side,
        quantity: int,
        trade_date: date,
    ) -> List[Operation]:
        """
        Non-hidden operations with the same business key

        An operation's date is its exit date for exits, its entry date otherwise.
        """
        result = await self.session.execute(
            select(OperationModel).where(
                OperationModel.user_id == user_id,
                OperationModel.asset_code == asset_code,
                OperationModel.side == side,
                OperationModel.quantity == quantity,
                OperationModel.status != OperationStatus.HIDDEN,
                or_(
                    OperationModel.exit_date == trade_date,
                    and_(
                        OperationModel.exit_date.is_(None),
                        OperationModel.entry_date == trade_date,
                    ),
                ),
            )
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    async def list_for_user(self, user_id: str, include_hidden: bool = False) -> List[Operation]:
        query = select(OperationModel).where(OperationModel.user_id == user_id)
        if not include_hidden:
            query = query.where(OperationModel.status != OperationStatus.HIDDEN)
        result = await self.session.execute(
            query.order_by(OperationModel.entry_date, OperationModel.id)
        )
        return [self._to_domain(m) for m in result.scalars().all()]

    @staticmethod
    def _to_domain(model: OperationModel) -> Operation:
        """Convert database model to domain entity"""
        return Operation(
            id=model.id,
            user_id=model.user_id,
            asset_code=model.asset_code,
            side=Side(model.side.value),
            trade_type=TradeType(model.trade_type.value),
            status=OperationStatus(model.status.value),
            entry_date=model.entry_date,
            quantity=model.quantity,
            entry_unit_price=model.entry_unit_price,
            entry_total_value=model.entry_total_value,
            exit_date=model.exit_date,
            exit_unit_price=model.exit_unit_price,
            exit_total_value=model.exit_total_value,
            profit_loss=model.profit_loss,
            profit_loss_percentage=model.profit_loss_percentage,
            created_at=model.created_at,
        )


class OperationGroupRepository:
    """Repository for OperationGroup and its ordered items"""

    def __init__(self, session: AsyncSession):
        """Initialize with database session"""
        self.session = session

    async def create(self, group: OperationGroup) -> OperationGroup:
        model = OperationGroupModel(
            user_id=group.user_id,
            asset_code=group.asset_code,
            status=group.status,
            total_quantity=group.total_quantity,
            closed_quantity=group.closed_quantity,
            remaining_quantity=group.remaining_quantity,
            total_profit=group.total_profit,
            average_exit_price=group.average_exit_price,
        )
        if group.created_at is not None:
            model.created_at = group.created_at

        self.session.add(model)
        await self.session.flush()

        return self._to_domain(model)

    async def update(self, group: OperationGroup) -> OperationGroup:
        model = await self.session.get(OperationGroupModel, group.id)
        if model is None:
            raise ValueError(f"Operation group {group.id} not found")

        model.status = group.status
        model.total_quantity = group.total_quantity
        model.closed_quantity = group.closed_quantity
        model.remaining_quantity = group.remaining_quantity
        model.total_profit = group.total_profit
        model.average_exit_price = group.average_exit_price
        await self.session.flush()

        return self._to_domain(model)

    async def get(self, group_id: int) -> Optional[OperationGroup]:
        model = await self.session.get(OperationGroupModel, group_id)
        return self._to_domain(model) if model else None

    async def add_item(
        self, group_id: int, operation_id: int, role: OperationRole
    ) -> OperationGroupItem:
        """
        Append an operation to a group

        Returns:
            The membership with the next sequence number of the group
        """
        result = await self.session.execute(
            select(func.coalesce(func.max(OperationGroupItemModel.sequence_number), 0))
            .where(OperationGroupItemModel.group_id == group_id)
        )
        model = OperationGroupItemModel(
            group_id=group_id,
            operation_id=operation_id,
            role=role,
            sequence_number=result.scalar_one() + 1,
        )
        self.session.add(model)
        await self.session.flush()

        return self._item_to_domain(model)

    async def list_items(self, group_id: int) -> List[OperationGroupItem]:
        result = await self.session.execute(
            select(OperationGroupItemModel)
            .where(OperationGroupItemModel.group_id == group_id)
            .order_by(OperationGroupItemModel.sequence_number)
        )
        return [self._item_to_domain(m) for m in result.scalars().all()]

    @staticmethod
    def _to_domain(model: OperationGroupModel) -> OperationGroup:
        return OperationGroup(
            id=model.id,
            user_id=model.user_id,
            asset_code=model.asset_code,
            status=GroupStatus(model.status.value),
            total_quantity=model.total_quantity,
            closed_quantity=model.closed_quantity,
            remaining_quantity=model.remaining_quantity,
            total_profit=model.total_profit,
            average_exit_price=model.average_exit_price,
            created_at=model.created_at,
        )

    @staticmethod
    def _item_to_domain(model: OperationGroupItemModel) -> OperationGroupItem:
        return OperationGroupItem(
            id=model.id,
            group_id=model.group_id,
            operation_id=model.operation_id,
            role=OperationRole(model.role.value),
            sequence_number=model.sequence_number,
        )
