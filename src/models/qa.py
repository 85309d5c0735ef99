"""
QA models.

This module contains:
- QACheckpoint: Reusable checkpoint definition within a stage
- BatchQACheck: Latest result of one checkpoint for one batch
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class QACheckpoint(BaseModel):
    """
    Checkpoint definition.

    Attributes:
        code: Stable identifier (special checkpoints such as 'core_temp' key
            their metadata interpretation off this)
        name: Display name
        stage: QAStage value
        required: Whether the stage needs this checkpoint passed
        active: Inactive checkpoints are ignored entirely
        display_order: Order within the stage
    """

    __tablename__ = "qa_checkpoints"

    code = Column(String(50), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    stage = Column(String(20), nullable=False, index=True)
    required = Column(Boolean, nullable=False, default=True)
    active = Column(Boolean, nullable=False, default=True)
    display_order = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint(
            "stage IN ('preparation', 'mixing', 'marination', 'drying', 'packaging', 'final')",
            name="ck_qa_checkpoint_stage",
        ),
    )


class BatchQACheck(BaseModel):
    """
    One checkpoint result for one batch.

    check_metadata holds stage-specific readings (stored in the 'metadata'
    column); see services.qa_service for how it is interpreted per code.
    """

    __tablename__ = "batch_qa_checks"

    batch_id = Column(
        Integer,
        ForeignKey("batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    checkpoint_id = Column(
        Integer,
        ForeignKey("qa_checkpoints.id", ondelete="RESTRICT"),
        nullable=False,
    )
    status = Column(String(20), nullable=False, default="pending")
    checked_by = Column(String(100), nullable=True)
    checked_at = Column(DateTime, nullable=True)

    temperature_c = Column(Float, nullable=True)
    humidity_percent = Column(Float, nullable=True)
    ph_level = Column(Float, nullable=True)
    water_activity = Column(Float, nullable=True)

    notes = Column(Text, nullable=True)
    corrective_action = Column(Text, nullable=True)
    recheck_required = Column(Boolean, nullable=False, default=False)
    check_metadata = Column("metadata", JSON, nullable=True)

    batch = relationship("Batch", back_populates="qa_checks")
    checkpoint = relationship("QACheckpoint", lazy="joined")

    __table_args__ = (
        UniqueConstraint("batch_id", "checkpoint_id", name="uq_batch_qa_check"),
        CheckConstraint(
            "status IN ('pending', 'passed', 'failed', 'skipped', 'conditional')",
            name="ck_batch_qa_check_status",
        ),
    )
