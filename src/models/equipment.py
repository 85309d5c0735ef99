"""
Equipment models for calibrated measuring devices.

This module contains:
- Equipment: A labelled device (thermometer, scale, aw meter)
- EquipmentCalibration: One calibration check and when the next is due
"""

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from .base import BaseModel


class Equipment(BaseModel):
    """
    Measuring device that needs periodic calibration.

    Attributes:
        label_code: Code printed on the device label (unique)
        name: Display name
        equipment_type: Kind of device, lower-case (stored in the 'type' column)
        model: Manufacturer model
        serial_number: Manufacturer serial number
        location: Where the device lives
        status: 'active', 'out_of_service' or 'retired'
        calibration_interval_days: Days between calibrations
        equipment_metadata: Free-form details (stored in the 'metadata' column)

    Relationships:
        calibrations: One-to-Many with EquipmentCalibration (oldest first)
    """

    __tablename__ = "equipment"

    label_code = Column(String(32), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    equipment_type = Column("type", String(50), nullable=False, default="thermometer")
    model = Column(String(100), nullable=True)
    serial_number = Column(String(100), nullable=True)
    location = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default="active")
    calibration_interval_days = Column(Integer, nullable=False, default=30)
    equipment_metadata = Column("metadata", JSON, nullable=True)

    calibrations = relationship(
        "EquipmentCalibration",
        back_populates="equipment",
        order_by="EquipmentCalibration.performed_at",
        cascade="all, delete-orphan",
        lazy="select",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'out_of_service', 'retired')",
            name="ck_equipment_status",
        ),
        CheckConstraint(
            "calibration_interval_days > 0",
            name="ck_equipment_calibration_interval",
        ),
    )

    def __repr__(self) -> str:
        return f"Equipment(id={self.id}, label_code='{self.label_code}', name='{self.name}')"


class EquipmentCalibration(BaseModel):
    """
    Calibration check of a device against reference points.

    Attributes:
        equipment_id: Foreign key to Equipment
        performed_at: When the check was done
        performed_by: Who did it
        method: Procedure used
        reference_ice_c / reference_boiling_c: Expected readings
        observed_ice_c / observed_boiling_c: Actual readings
        adjustment: Offset applied or noted
        result: Outcome text (e.g., "pass", "adjusted")
        next_due_at: When the next calibration is due
        calibration_metadata: Free-form details (stored in the 'metadata' column)
    """

    __tablename__ = "equipment_calibrations"

    equipment_id = Column(
        Integer,
        ForeignKey("equipment.id", ondelete="CASCADE"),
        nullable=False,
    )
    performed_at = Column(DateTime, nullable=False)
    performed_by = Column(String(100), nullable=True)
    method = Column(String(200), nullable=False)
    reference_ice_c = Column(Float, nullable=False, default=0.0)
    reference_boiling_c = Column(Float, nullable=False, default=100.0)
    observed_ice_c = Column(Float, nullable=True)
    observed_boiling_c = Column(Float, nullable=True)
    adjustment = Column(String(200), nullable=True)
    result = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    next_due_at = Column(DateTime, nullable=True)
    calibration_metadata = Column("metadata", JSON, nullable=True)

    equipment = relationship("Equipment", back_populates="calibrations")

    __table_args__ = (
        Index("idx_equipment_calibration_performed", "equipment_id", "performed_at"),
    )
