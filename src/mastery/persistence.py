"""
Mastery persistence hooks.

Optional durable storage for boundary levels. The engine seeds the
MasteryController from load_levels() when a user starts and hands changed
records to save_records() from a low-priority background task. Without a
hook every fact starts fresh at level 1.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from src.core.models import MasteryRecord
from src.db.database import session_scope
from src.db.models.mastery import MasteryRecordRow


@runtime_checkable
class MasteryPersistence(Protocol):
    def load_levels(self, user_id: str) -> dict[str, int]: ...

    def save_records(self, records: Sequence[MasteryRecord]) -> int: ...


class InMemoryMasteryPersistence:
    """Dictionary-backed hook, used by tests and the CLI simulator."""

    def __init__(self, levels: dict[str, dict[str, int]] | None = None):
        self._levels = levels if levels is not None else {}

    def load_levels(self, user_id: str) -> dict[str, int]:
        return dict(self._levels.get(user_id, {}))

    def save_records(self, records: Sequence[MasteryRecord]) -> int:
        for record in records:
            self._levels.setdefault(record.user_id, {})[record.fact_id] = record.boundary_level
        return len(records)


class SqlMasteryPersistence:
    """Hook over the `mastery_records` table."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    def load_levels(self, user_id: str) -> dict[str, int]:
        stmt = select(MasteryRecordRow).where(MasteryRecordRow.user_id == user_id)
        with session_scope(self.session_factory) as session:
            return {row.fact_id: row.boundary_level for row in session.scalars(stmt)}

    def save_records(self, records: Sequence[MasteryRecord]) -> int:
        """
        Upsert records by (user_id, fact_id).

        Returns:
            Number of records written
        """
        if not records:
            return 0
        with session_scope(self.session_factory) as session:
            for record in records:
                session.merge(
                    MasteryRecordRow(
                        user_id=record.user_id,
                        fact_id=record.fact_id,
                        boundary_level=record.boundary_level,
                        last_updated=record.last_updated,
                    )
                )
        logger.debug("Saved {} mastery records", len(records))
        return len(records)
