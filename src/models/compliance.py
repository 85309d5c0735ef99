"""
Compliance models.

This module contains:
- ComplianceTask: A recurring obligation (swabs, micro tests, calibration)
- ComplianceLog: Append-only completion record for a task
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class ComplianceTask(BaseModel):
    """
    Recurring compliance obligation.

    Attributes:
        code: Stable identifier
        name: Display name
        category: Grouping (e.g., "micro", "hygiene")
        frequency_type: ComplianceFrequency value
        frequency_value: Interval count (weeks, fortnights, months or batches)
        proof_required: Whether a completion needs attached proof
        active: Inactive tasks are not scheduled
    """

    __tablename__ = "compliance_tasks"

    code = Column(String(50), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    category = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    frequency_type = Column(String(20), nullable=False)
    frequency_value = Column(Integer, nullable=False, default=1)
    proof_required = Column(Boolean, nullable=False, default=False)
    active = Column(Boolean, nullable=False, default=True)

    logs = relationship(
        "ComplianceLog",
        back_populates="task",
        order_by="ComplianceLog.completed_at",
        lazy="select",
    )

    __table_args__ = (
        CheckConstraint(
            "frequency_type IN ('weekly', 'fortnightly', 'monthly', 'batch_interval', 'custom')",
            name="ck_compliance_task_frequency_type",
        ),
        CheckConstraint("frequency_value >= 0", name="ck_compliance_task_frequency_value"),
    )


class ComplianceLog(BaseModel):
    """
    Completion record for a compliance task.

    Attributes:
        compliance_task_id: Foreign key to ComplianceTask
        completed_at: When the task was done
        completed_by: Who did it
        result: Outcome text (e.g., "pass", "not detected")
        batches_covered: Number of batches the completion covers
        log_metadata: Batch window and other task-specific details
            (stored in the 'metadata' column)
    """

    __tablename__ = "compliance_logs"

    compliance_task_id = Column(
        Integer,
        ForeignKey("compliance_tasks.id", ondelete="CASCADE"),
        nullable=False,
    )
    completed_at = Column(DateTime, nullable=False)
    completed_by = Column(String(100), nullable=True)
    result = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    batches_covered = Column(Integer, nullable=True)
    log_metadata = Column("metadata", JSON, nullable=True)

    task = relationship("ComplianceTask", back_populates="logs")

    __table_args__ = (
        Index("idx_compliance_log_task_completed", "compliance_task_id", "completed_at"),
    )
