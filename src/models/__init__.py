"""
Database models package.

This package contains all SQLAlchemy ORM models for the application.
"""

from .base import Base, BaseModel
from .enums import (
    BatchStatus,
    ComplianceFrequency,
    ComplianceStatus,
    CureStatus,
    LotEventType,
    LotStatus,
    QACheckStatus,
    QAStage,
    ReleaseStatus,
)
from .material import Material
from .lot import Lot, LotEvent, BatchLotUsage, LotRecall, LotRecallBatch
from .recipe import Recipe, RecipeIngredient
from .batch import Batch, BatchIngredientActual, BatchCureAudit, BatchDayCounter
from .qa import QACheckpoint, BatchQACheck
from .compliance import ComplianceTask, ComplianceLog
from .equipment import Equipment, EquipmentCalibration
from .project_setting import ProjectSetting

__all__ = [
    "Base",
    "BaseModel",
    # Enums
    "BatchStatus",
    "ComplianceFrequency",
    "ComplianceStatus",
    "CureStatus",
    "LotEventType",
    "LotStatus",
    "QACheckStatus",
    "QAStage",
    "ReleaseStatus",
    # Inventory
    "Material",
    "Lot",
    "LotEvent",
    "BatchLotUsage",
    "LotRecall",
    "LotRecallBatch",
    # Recipes and batches
    "Recipe",
    "RecipeIngredient",
    "Batch",
    "BatchIngredientActual",
    "BatchCureAudit",
    "BatchDayCounter",
    # QA
    "QACheckpoint",
    "BatchQACheck",
    # Compliance
    "ComplianceTask",
    "ComplianceLog",
    # Equipment
    "Equipment",
    "EquipmentCalibration",
    # Configuration
    "ProjectSetting",
]
