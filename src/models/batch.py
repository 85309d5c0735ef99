"""
Batch models for production tracking.

This module contains:
- Batch: One production run of a recipe
- BatchIngredientActual: Current target/actual measurement per material
- BatchCureAudit: Append-only record of every cure measurement
- BatchDayCounter: Per-day sequence used for batch numbers
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class Batch(BaseModel):
    """
    Production batch.

    Attributes:
        batch_number: Human-facing identifier (BYYYYMMDD-NNN)
        recipe_id: Foreign key to Recipe
        product_name: Optional finished product name
        input_mass: Mass of the primary input (e.g., beef)
        input_unit: Unit of input_mass ('kg' or 'g')
        scaling_factor: Stored factor; a positive value overrides the computed one
        status: BatchStatus value
        release_status: ReleaseStatus value, or None before a decision
        completed_at: When the batch was completed or released
        best_before_date: Printed best-before date
        recall_reason / recall_notes / recalled_at: Recall details
    """

    __tablename__ = "batches"

    batch_number = Column(String(30), nullable=False, unique=True, index=True)
    recipe_id = Column(
        Integer,
        ForeignKey("recipes.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    product_name = Column(String(200), nullable=True)

    input_mass = Column(Float, nullable=False)
    input_unit = Column(String(10), nullable=False, default="kg")
    scaling_factor = Column(Float, nullable=True)

    status = Column(String(20), nullable=False, default="in_progress", index=True)
    release_status = Column(String(20), nullable=True)
    completed_at = Column(DateTime, nullable=True)
    best_before_date = Column(Date, nullable=True)

    recall_reason = Column(Text, nullable=True)
    recall_notes = Column(Text, nullable=True)
    recalled_at = Column(DateTime, nullable=True)

    created_by = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)

    recipe = relationship("Recipe", lazy="joined")
    ingredient_actuals = relationship(
        "BatchIngredientActual",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchIngredientActual.ingredient_name",
    )
    lot_usages = relationship("BatchLotUsage", back_populates="batch")
    qa_checks = relationship(
        "BatchQACheck",
        back_populates="batch",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint("input_mass > 0", name="ck_batch_input_mass_positive"),
        CheckConstraint(
            "status IN ('in_progress', 'completed', 'cancelled', 'released')",
            name="ck_batch_status",
        ),
        CheckConstraint(
            "release_status IS NULL OR release_status IN ('approved', 'recalled', 'hold')",
            name="ck_batch_release_status",
        ),
    )

    def __repr__(self) -> str:
        """String representation of batch."""
        return f"Batch(id={self.id}, number='{self.batch_number}', status='{self.status}')"


class BatchIngredientActual(BaseModel):
    """
    Current target and measurement for one material in one batch.

    Each measurement overwrites the previous one; cure history lives in
    BatchCureAudit.

    Attributes:
        target_amount: Computed target in `unit`
        actual_amount: Last measured amount in `unit` (None until measured)
        unit: Unit of target_amount/actual_amount
        tolerance_percentage: Tolerance applied to the last evaluation
        in_tolerance: Result of the last evaluation (None until measured)
        is_cure: Whether this is a curing agent line
        cure_required_grams: Required dose for the target ppm
        cure_ppm: Achieved ppm from the last measurement
        cure_status: CureStatus value
        cure_unit: Recipe unit of the cure line
    """

    __tablename__ = "batch_ingredient_actuals"

    batch_id = Column(
        Integer,
        ForeignKey("batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    material_id = Column(
        Integer,
        ForeignKey("materials.id", ondelete="RESTRICT"),
        nullable=False,
    )
    ingredient_name = Column(String(200), nullable=False)

    target_amount = Column(Float, nullable=False, default=0.0)
    actual_amount = Column(Float, nullable=True)
    unit = Column(String(10), nullable=False, default="g")
    tolerance_percentage = Column(Float, nullable=True)
    in_tolerance = Column(Boolean, nullable=True)
    measured_at = Column(DateTime, nullable=True)
    recorded_by = Column(String(100), nullable=True)

    is_cure = Column(Boolean, nullable=False, default=False)
    cure_required_grams = Column(Float, nullable=True)
    cure_ppm = Column(Float, nullable=True)
    cure_status = Column(String(10), nullable=True)
    cure_unit = Column(String(10), nullable=True)

    batch = relationship("Batch", back_populates="ingredient_actuals")

    __table_args__ = (
        UniqueConstraint("batch_id", "material_id", name="uq_batch_ingredient_material"),
        Index("idx_batch_ingredient_batch", "batch_id"),
    )


class BatchCureAudit(BaseModel):
    """Append-only trail of cure measurements for a batch."""

    __tablename__ = "batch_cure_audit"

    batch_id = Column(
        Integer,
        ForeignKey("batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    material_id = Column(Integer, ForeignKey("materials.id"), nullable=False)
    cure_type = Column(String(20), nullable=True)
    actual_grams = Column(Float, nullable=False)
    required_grams = Column(Float, nullable=True)
    base_mass_grams = Column(Float, nullable=False)
    cure_ppm = Column(Float, nullable=True)
    cure_status = Column(String(10), nullable=True)
    recorded_by = Column(String(100), nullable=True)


class BatchDayCounter(BaseModel):
    """Last batch sequence number issued for a calendar day."""

    __tablename__ = "batch_day_counters"

    day = Column(Date, nullable=False, unique=True)
    counter = Column(Integer, nullable=False, default=0)
