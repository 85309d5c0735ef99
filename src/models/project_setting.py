"""
ProjectSetting model for runtime key-value configuration.

Holds values operators tune without a release, such as the cure ppm
thresholds. Values are stored as text and parsed by the reader.
"""

from sqlalchemy import Column, String, Text

from .base import BaseModel


class ProjectSetting(BaseModel):
    """Single key-value setting."""

    __tablename__ = "project_settings"

    key = Column(String(100), nullable=False, unique=True, index=True)
    value = Column(Text, nullable=True)

    def __repr__(self) -> str:
        """String representation of setting."""
        return f"ProjectSetting(key='{self.key}', value='{self.value}')"
