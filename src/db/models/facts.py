"""
Fact Models.

The `facts` table backs SqlFactStore. Tags are stored as a space-separated
string so the table works unchanged on SQLite and PostgreSQL.
"""

from __future__ import annotations

from sqlalchemy import Float, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.core.models import Fact

from .base import Base


class FactRow(Base):
    """One arithmetic fact keyed by its canonical id (e.g. mult-7-4)."""

    __tablename__ = "facts"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    operation: Mapped[str] = mapped_column(String(8), nullable=False)
    operand1: Mapped[int] = mapped_column(Integer, nullable=False)
    operand2: Mapped[int] = mapped_column(Integer, nullable=False)
    result: Mapped[int] = mapped_column(Integer, nullable=False)
    tags: Mapped[str] = mapped_column(Text, default="")
    difficulty: Mapped[float] = mapped_column(Float, default=0.5)

    __table_args__ = (
        Index("ix_facts_operation_difficulty", "operation", "difficulty"),
    )

    def to_fact(self) -> Fact:
        return Fact(
            id=self.id,
            operation=self.operation,
            operand1=self.operand1,
            operand2=self.operand2,
            result=self.result,
            tags=tuple(self.tags.split()) if self.tags else (),
            difficulty=self.difficulty,
        )

    @classmethod
    def from_fact(cls, fact: Fact) -> FactRow:
        return cls(
            id=fact.id,
            operation=fact.operation,
            operand1=fact.operand1,
            operand2=fact.operand2,
            result=fact.result,
            tags=" ".join(fact.tags),
            difficulty=fact.difficulty,
        )

    def __repr__(self) -> str:
        return f"<FactRow {self.id} = {self.result}>"
