"""API routers for stitchstream."""

from src.api.routers import learner_router

__all__ = [
    "learner_router",
]
