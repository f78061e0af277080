"""Mastery Models - durable boundary levels per (user, fact)."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class MasteryRecordRow(Base):
    """Boundary level of one user for one fact."""

    __tablename__ = "mastery_records"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    fact_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    boundary_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("boundary_level BETWEEN 1 AND 5", name="ck_mastery_level_range"),
    )

    def __repr__(self) -> str:
        return f"<MasteryRecordRow {self.user_id}/{self.fact_id} L{self.boundary_level}>"
