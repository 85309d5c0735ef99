"""
Recipe models for cured products.

This module contains:
- Recipe: Recipe header with its base reference mass
- RecipeIngredient: Ordered ingredient lines linking a recipe to materials
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
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


class Recipe(BaseModel):
    """
    Recipe model.

    Ingredient quantities are written for base_reference_mass grams of the
    primary input (e.g., 1000 g of beef); batches scale them by
    input mass / base_reference_mass.

    Attributes:
        name: Recipe name
        recipe_code: Optional short code
        base_reference_mass: Reference mass in grams
        description: Optional description
        active: Whether the recipe can be used for new batches
    """

    __tablename__ = "recipes"

    name = Column(String(200), nullable=False, index=True)
    recipe_code = Column(String(50), nullable=True, unique=True)
    base_reference_mass = Column(Float, nullable=False, default=0.0)
    description = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    ingredients = relationship(
        "RecipeIngredient",
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="RecipeIngredient.sort_order, RecipeIngredient.id",
        lazy="select",
    )

    __table_args__ = (
        CheckConstraint("base_reference_mass >= 0", name="ck_recipe_base_mass_non_negative"),
    )


class RecipeIngredient(BaseModel):
    """
    One ingredient line of a recipe.

    Attributes:
        recipe_id: Foreign key to Recipe
        material_id: Foreign key to Material
        quantity: Quantity at the recipe's base reference mass
        unit: Unit the quantity is written in
        tolerance_percentage: Allowed deviation; None means the default (5)
        is_cure: Whether the line is a curing agent (dosed by ppm, not scaled)
        cure_type: Curing agent id ('denkurit', 'prague1')
        notes: Free-form notes; legacy rows carry the cure type here as JSON
        is_critical: Whether the line is a critical control
        sort_order: Display order within the recipe
    """

    __tablename__ = "recipe_ingredients"

    recipe_id = Column(
        Integer,
        ForeignKey("recipes.id", ondelete="CASCADE"),
        nullable=False,
    )
    material_id = Column(
        Integer,
        ForeignKey("materials.id", ondelete="RESTRICT"),
        nullable=False,
    )

    quantity = Column(Float, nullable=False)
    unit = Column(String(10), nullable=False, default="g")
    tolerance_percentage = Column(Float, nullable=True)
    is_cure = Column(Boolean, nullable=False, default=False)
    cure_type = Column(String(20), nullable=True)
    notes = Column(Text, nullable=True)
    is_critical = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False, default=0)

    recipe = relationship("Recipe", back_populates="ingredients")
    material = relationship("Material", lazy="joined")

    __table_args__ = (
        UniqueConstraint("recipe_id", "material_id", name="uq_recipe_ingredient_material"),
        Index("idx_recipe_ingredient_recipe", "recipe_id"),
        CheckConstraint("quantity >= 0", name="ck_recipe_ingredient_qty_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation of recipe ingredient."""
        return (
            f"RecipeIngredient(id={self.id}, recipe_id={self.recipe_id}, "
            f"material_id={self.material_id}, qty={self.quantity} {self.unit})"
        )
