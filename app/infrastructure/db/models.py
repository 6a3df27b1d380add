"""
Database Models (SQLAlchemy ORM)
Trade ledger tables

exit_record and source_mapping are write-once audit tables.
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, Date, DateTime,
    Boolean, ForeignKey, Text, Enum as SQLEnum, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship

from app.domain.models import (
    ExitStrategy,
    GroupStatus,
    InvoiceProcessingStatus,
    MappingType,
    OperationRole,
    OperationStatus,
    PositionStatus,
    Side,
    TradeType,
)
from app.infrastructure.db.database import Base
from app.utils.time import now_local_naive

MONEY = Numeric(18, 6)
PERCENT = Numeric(12, 4)


class InvoiceModel(Base):
    """Brokerage trade confirmation header"""
    __tablename__ = "invoice"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_number = Column(String(50), nullable=False)
    trading_date = Column(Date, nullable=False, index=True)
    settlement_date = Column(Date, nullable=True)
    brokerage = Column(String(100), nullable=False)
    user_id = Column(String(64), nullable=False, index=True)

    processing_status = Column(
        SQLEnum(InvoiceProcessingStatus),
        nullable=False,
        default=InvoiceProcessingStatus.PENDING,
    )
    processing_attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=now_local_naive)
    updated_at = Column(DateTime, nullable=False, default=now_local_naive)

    items = relationship("LineItemModel", back_populates="invoice")

    __table_args__ = (
        UniqueConstraint("user_id", "brokerage", "invoice_number", name="uq_invoice_user_number"),
    )


class LineItemModel(Base):
    """One extracted trade line of an invoice"""
    __tablename__ = "invoice_item"

    id = Column(Integer, primary_key=True, autoincrement=True)
    invoice_id = Column(Integer, ForeignKey("invoice.id"), nullable=False, index=True)
    sequence_number = Column(Integer, nullable=False)

    asset_code = Column(String(50), nullable=True)
    operation_type = Column(String(20), nullable=True)
    market_type = Column(String(50), nullable=True)
    quantity = Column(Integer, nullable=True)
    unit_price = Column(MONEY, nullable=True)
    total_value = Column(MONEY, nullable=True)
    trade_date = Column(Date, nullable=True)
    is_day_trade = Column(Boolean, nullable=False, default=False)
    observations = Column(Text, nullable=True)

    invoice = relationship("InvoiceModel", back_populates="items")

    __table_args__ = (
        UniqueConstraint("invoice_id", "sequence_number", name="uq_invoice_item_sequence"),
    )


class OperationModel(Base):
    """User-visible trade record"""
    __tablename__ = "trade_operation"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    asset_code = Column(String(50), nullable=False)
    side = Column(SQLEnum(Side), nullable=False)
    trade_type = Column(SQLEnum(TradeType), nullable=False)
    status = Column(SQLEnum(OperationStatus), nullable=False)

    entry_date = Column(Date, nullable=False)
    quantity = Column(Integer, nullable=False)
    entry_unit_price = Column(MONEY, nullable=False)
    entry_total_value = Column(MONEY, nullable=False)

    exit_date = Column(Date, nullable=True)
    exit_unit_price = Column(MONEY, nullable=True)
    exit_total_value = Column(MONEY, nullable=True)

    profit_loss = Column(MONEY, nullable=False, default=0)
    profit_loss_percentage = Column(PERCENT, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=now_local_naive)

    __table_args__ = (
        Index("idx_operation_user_asset", "user_id", "asset_code"),
        Index("idx_operation_status", "status"),
    )


class OperationGroupModel(Base):
    """All operations of one round trip"""
    __tablename__ = "operation_group"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    asset_code = Column(String(50), nullable=False)
    status = Column(SQLEnum(GroupStatus), nullable=False)

    total_quantity = Column(Integer, nullable=False)
    closed_quantity = Column(Integer, nullable=False, default=0)
    remaining_quantity = Column(Integer, nullable=False)
    total_profit = Column(MONEY, nullable=False, default=0)
    average_exit_price = Column(MONEY, nullable=True)

    created_at = Column(DateTime, nullable=False, default=now_local_naive)

    items = relationship("OperationGroupItemModel", back_populates="group")


class OperationGroupItemModel(Base):
    """Ordered group membership"""
    __tablename__ = "operation_group_item"

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_id = Column(Integer, ForeignKey("operation_group.id"), nullable=False, index=True)
    operation_id = Column(Integer, ForeignKey("trade_operation.id"), nullable=False)
    role = Column(SQLEnum(OperationRole), nullable=False)
    sequence_number = Column(Integer, nullable=False)

    group = relationship("OperationGroupModel", back_populates="items")

    __table_args__ = (
        UniqueConstraint("group_id", "sequence_number", name="uq_group_item_sequence"),
    )


class PositionModel(Base):
    """Lot-accounted position per (user, asset)"""
    __tablename__ = "position"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    asset_code = Column(String(50), nullable=False)
    direction = Column(SQLEnum(Side), nullable=False)
    status = Column(SQLEnum(PositionStatus), nullable=False)

    open_date = Column(Date, nullable=False)
    close_date = Column(Date, nullable=True)
    total_quantity = Column(Integer, nullable=False)
    remaining_quantity = Column(Integer, nullable=False)
    average_price = Column(MONEY, nullable=False)

    total_realized_profit = Column(MONEY, nullable=False, default=0)
    total_realized_profit_percentage = Column(PERCENT, nullable=False, default=0)

    group_id = Column(Integer, ForeignKey("operation_group.id"), nullable=True)

    __table_args__ = (
        Index("idx_position_user_asset_status", "user_id", "asset_code", "status"),
    )


class EntryLotModel(Base):
    """Entry batch of a position"""
    __tablename__ = "entry_lot"

    id = Column(Integer, primary_key=True, autoincrement=True)
    position_id = Column(Integer, ForeignKey("position.id"), nullable=False, index=True)
    operation_id = Column(Integer, ForeignKey("trade_operation.id"), nullable=True)
    entry_date = Column(Date, nullable=False)
    quantity = Column(Integer, nullable=False)
    remaining_quantity = Column(Integer, nullable=False)
    unit_price = Column(MONEY, nullable=False)
    sequence_number = Column(Integer, nullable=False)
    is_fully_consumed = Column(Boolean, nullable=False, default=False)


class ExitRecordModel(Base):
    """Lot consumption event - write-once"""
    __tablename__ = "exit_record"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entry_lot_id = Column(Integer, ForeignKey("entry_lot.id"), nullable=False, index=True)
    exit_operation_id = Column(Integer, ForeignKey("trade_operation.id"), nullable=False)
    exit_date = Column(Date, nullable=False)
    quantity = Column(Integer, nullable=False)
    entry_unit_price = Column(MONEY, nullable=False)
    exit_unit_price = Column(MONEY, nullable=False)
    profit_loss = Column(MONEY, nullable=False)
    profit_loss_percentage = Column(PERCENT, nullable=False)
    trade_type = Column(SQLEnum(TradeType), nullable=False)
    applied_strategy = Column(SQLEnum(ExitStrategy), nullable=False, default=ExitStrategy.FIFO)


class SourceMappingModel(Base):
    """Line item -> operation audit link - write-once"""
    __tablename__ = "source_mapping"

    id = Column(Integer, primary_key=True, autoincrement=True)
    operation_id = Column(Integer, ForeignKey("trade_operation.id"), nullable=False, index=True)
    invoice_id = Column(Integer, ForeignKey("invoice.id"), nullable=False)
    line_item_id = Column(Integer, ForeignKey("invoice_item.id"), nullable=False, unique=True)
    mapping_type = Column(SQLEnum(MappingType), nullable=False)
    processing_sequence = Column(Integer, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=now_local_naive)

    __table_args__ = (
        UniqueConstraint("invoice_id", "processing_sequence", name="uq_mapping_invoice_sequence"),
    )
