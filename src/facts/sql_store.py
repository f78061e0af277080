"""SQLAlchemy-backed FactStore over the `facts` table."""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from src.core.models import Fact, FactQuery
from src.db.database import session_scope
from src.db.models.facts import FactRow


class SqlFactStore:
    """FactStore reading from a relational database."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def get_by_id(self, fact_id: str) -> Fact | None:
        with session_scope(self.session_factory) as session:
            row = session.get(FactRow, fact_id)
            return row.to_fact() if row else None

    def get_many(self, fact_ids: Iterable[str]) -> dict[str, Fact]:
        """Fetch several facts in one query; unknown ids are absent."""
        ids = list(dict.fromkeys(fact_ids))
        if not ids:
            return {}
        stmt = select(FactRow).where(FactRow.id.in_(ids))
        with session_scope(self.session_factory) as session:
            return {row.id: row.to_fact() for row in session.scalars(stmt)}

    def query(self, query: FactQuery) -> list[Fact]:
        """
        Filter facts, easiest first.

        Operation and difficulty band are pushed to SQL; tag filtering runs
        on the fetched rows because tags are stored as text.
        """
        stmt = select(FactRow)
        if query.operation:
            stmt = stmt.where(FactRow.operation == query.operation)
        if query.min_difficulty is not None:
            stmt = stmt.where(FactRow.difficulty >= query.min_difficulty)
        if query.max_difficulty is not None:
            stmt = stmt.where(FactRow.difficulty <= query.max_difficulty)
        stmt = stmt.order_by(FactRow.difficulty, FactRow.id)

        with session_scope(self.session_factory) as session:
            facts = [row.to_fact() for row in session.scalars(stmt)]

        if query.tags:
            facts = [fact for fact in facts if query.matches(fact)]
        return facts[query.offset : query.offset + query.limit]

    def count(self) -> int:
        with session_scope(self.session_factory) as session:
            return session.scalar(select(func.count()).select_from(FactRow)) or 0

    def upsert_many(self, facts: Iterable[Fact]) -> int:
        """
        Insert or replace facts.

        Returns:
            Number of facts written
        """
        written = 0
        with session_scope(self.session_factory) as session:
            for fact in facts:
                session.merge(FactRow.from_fact(fact))
                written += 1
        logger.info("Upserted {} facts", written)
        return written
