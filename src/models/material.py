"""
Material model for raw material definitions.

A Material is anything that is received into stock as lots and consumed by
batches (beef, spices, curing agents, packaging).
"""

from sqlalchemy import Boolean, CheckConstraint, Column, Float, Index, String, Text
from sqlalchemy.orm import relationship

from ..utils.constants import ALL_UNITS
from .base import BaseModel


class Material(BaseModel):
    """
    Material model representing a stocked raw material.

    Attributes:
        name: Display name (e.g., "Beef Silverside")
        material_code: Optional short code used on labels
        category: Grouping (e.g., "beef", "spice", "cure", "packaging")
        unit: Canonical unit lots are counted in ('g', 'kg', 'ml', 'L', 'units')
        active: Whether the material can be used in new recipes
        reorder_point: Stock level (in unit) below which it is low on stock
        notes: Free-form notes

    Relationships:
        lots: One-to-Many with Lot
    """

    __tablename__ = "materials"

    name = Column(String(200), nullable=False)
    material_code = Column(String(50), nullable=True, unique=True)
    category = Column(String(100), nullable=True, index=True)
    unit = Column(String(10), nullable=False, default="g")
    active = Column(Boolean, nullable=False, default=True)
    reorder_point = Column(Float, nullable=True)
    notes = Column(Text, nullable=True)

    lots = relationship(
        "Lot",
        back_populates="material",
        lazy="select",
        order_by="Lot.received_date",
    )

    __table_args__ = (
        Index("idx_material_name", "name"),
        CheckConstraint(
            "unit IN ({})".format(", ".join(f"'{unit}'" for unit in ALL_UNITS)),
            name="ck_material_unit",
        ),
    )

    def __repr__(self) -> str:
        """String representation of material."""
        return f"Material(id={self.id}, name='{self.name}', unit='{self.unit}')"
