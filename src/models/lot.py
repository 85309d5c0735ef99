"""
Lot models for traceable inventory.

This module contains:
- Lot: A physical receipt of one material, consumed oldest-first
- LotEvent: Append-only ledger entry; the ledger is the source of truth
- BatchLotUsage: Which lot went into which batch, and how much
- LotRecall / LotRecallBatch: Recall record and the batches it reached
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from src.services.exceptions import LedgerImmutableError


class Lot(BaseModel):
    """
    Lot model for FIFO inventory tracking.

    current_balance is a cached projection of the ledger. Services mutate it
    only while appending a LotEvent, and reconcile it from the ledger when
    the two disagree.

    Attributes:
        material_id: Foreign key to Material
        lot_number: Supplier's lot number
        internal_lot_code: Generated code (LOT-<base36 timestamp>)
        supplier_name: Supplier display name
        received_date: Date received (FIFO ordering key)
        expiry_date: Optional expiry date
        quantity_received: Quantity on receipt, in the material's unit
        current_balance: Cached ledger balance
        unit_cost: Optional cost per unit
        status: LotStatus value
        recall_reason / recall_notes / recall_initiated_at / recall_initiated_by:
            Recall details when status is 'recalled'
    """

    __tablename__ = "lots"

    material_id = Column(
        Integer,
        ForeignKey("materials.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    lot_number = Column(String(100), nullable=True)
    internal_lot_code = Column(String(50), nullable=False, unique=True)
    supplier_name = Column(String(200), nullable=True)

    received_date = Column(Date, nullable=False, index=True)
    expiry_date = Column(Date, nullable=True)

    quantity_received = Column(Float, nullable=False)
    current_balance = Column(Float, nullable=False)
    unit_cost = Column(Numeric(10, 4), nullable=True)

    status = Column(String(20), nullable=False, default="available", index=True)
    notes = Column(Text, nullable=True)

    recall_reason = Column(Text, nullable=True)
    recall_notes = Column(Text, nullable=True)
    recall_initiated_at = Column(DateTime, nullable=True)
    recall_initiated_by = Column(String(100), nullable=True)

    material = relationship("Material", back_populates="lots")
    events = relationship(
        "LotEvent",
        back_populates="lot",
        order_by="LotEvent.id",
        lazy="select",
    )
    usages = relationship("BatchLotUsage", back_populates="lot", lazy="select")

    __table_args__ = (
        CheckConstraint("quantity_received > 0", name="ck_lot_qty_received_positive"),
        CheckConstraint("current_balance >= 0", name="ck_lot_balance_non_negative"),
        CheckConstraint(
            "status IN ('available', 'quarantine', 'depleted', 'recalled')",
            name="ck_lot_status",
        ),
        Index("idx_lot_material_received", "material_id", "received_date"),
    )

    def __repr__(self) -> str:
        """String representation of lot."""
        return (
            f"Lot(id={self.id}, material_id={self.material_id}, "
            f"balance={self.current_balance}, received={self.received_date})"
        )


class LotEvent(BaseModel):
    """
    Append-only ledger entry for a lot.

    Never updated or deleted; corrections are new events. The ORM refuses
    updates and deletes (see the mapper listeners below).

    Attributes:
        lot_id: Foreign key to Lot
        event_type: LotEventType value
        quantity: Signed quantity change
        balance_after: Lot balance after this event
        batch_id: Batch the event relates to (consume events)
        reason: Human-readable reason
        created_by: Who recorded it
    """

    __tablename__ = "lot_events"

    lot_id = Column(
        Integer,
        ForeignKey("lots.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    event_type = Column(String(20), nullable=False)
    quantity = Column(Float, nullable=False)
    balance_after = Column(Float, nullable=False)
    batch_id = Column(
        Integer,
        ForeignKey("batches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    reason = Column(Text, nullable=True)
    created_by = Column(String(100), nullable=True)

    lot = relationship("Lot", back_populates="events")

    __table_args__ = (
        CheckConstraint(
            "event_type IN ('receive', 'consume', 'adjust', 'scrap', 'return', "
            "'quarantine', 'release')",
            name="ck_lot_event_type",
        ),
    )

    def __repr__(self) -> str:
        """String representation of lot event."""
        return (
            f"LotEvent(id={self.id}, lot_id={self.lot_id}, type='{self.event_type}', "
            f"qty={self.quantity}, balance_after={self.balance_after})"
        )


@event.listens_for(LotEvent, "before_update")
def _refuse_lot_event_update(mapper, connection, target):
    raise LedgerImmutableError(target.id, "update")


@event.listens_for(LotEvent, "before_delete")
def _refuse_lot_event_delete(mapper, connection, target):
    raise LedgerImmutableError(target.id, "delete")


class BatchLotUsage(BaseModel):
    """
    Traceability link between a batch and the lots it consumed.

    One row per (batch, lot) touched by an allocation.
    """

    __tablename__ = "batch_lot_usage"

    batch_id = Column(
        Integer,
        ForeignKey("batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    lot_id = Column(
        Integer,
        ForeignKey("lots.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    material_id = Column(
        Integer,
        ForeignKey("materials.id", ondelete="RESTRICT"),
        nullable=False,
    )
    quantity_used = Column(Float, nullable=False)
    unit = Column(String(10), nullable=False, default="g")

    lot = relationship("Lot", back_populates="usages")
    batch = relationship("Batch", back_populates="lot_usages")

    __table_args__ = (
        CheckConstraint("quantity_used > 0", name="ck_lot_usage_qty_positive"),
    )


class LotRecall(BaseModel):
    """Recall raised against a lot."""

    __tablename__ = "lot_recalls"

    lot_id = Column(
        Integer,
        ForeignKey("lots.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    reason = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    initiated_by = Column(String(100), nullable=True)

    affected_batches = relationship(
        "LotRecallBatch",
        back_populates="recall",
        cascade="all, delete-orphan",
    )


class LotRecallBatch(BaseModel):
    """A batch reached by a lot recall."""

    __tablename__ = "lot_recall_batches"

    lot_recall_id = Column(
        Integer,
        ForeignKey("lot_recalls.id", ondelete="CASCADE"),
        nullable=False,
    )
    batch_id = Column(
        Integer,
        ForeignKey("batches.id", ondelete="CASCADE"),
        nullable=False,
    )

    recall = relationship("LotRecall", back_populates="affected_batches")

    __table_args__ = (
        UniqueConstraint("lot_recall_id", "batch_id", name="uq_lot_recall_batch"),
    )
