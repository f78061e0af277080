# SQLAlchemy models
from .base import Base
from .facts import FactRow
from .mastery import MasteryRecordRow

__all__ = [
    "Base",
    "FactRow",
    "MasteryRecordRow",
]
