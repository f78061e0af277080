"""
Learner API Router.

Endpoints over the LearningEngine:
- Session start (blocking first-unit load)
- Live unit and current question reads (never trigger loading)
- Answer submission (mastery update + question cursor)
- Session completion (track rotation)
- Pipeline status and mastery levels
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from src.core.models import Question, ReadyUnit
from src.delivery.engine import LearningEngine
from src.mastery.controller import describe_level

router = APIRouter()


def get_learning_engine(request: Request) -> LearningEngine:
    """FastAPI dependency returning the engine built at startup."""
    return request.app.state.engine


# ========================================
# Request/Response Models
# ========================================


class QuestionResponse(BaseModel):
    """A question ready to render."""

    id: str
    text: str
    correct_answer: str
    distractor: str
    fact_id: str
    boundary_level: int
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_question(cls, question: Question) -> QuestionResponse:
        return cls(
            id=question.id,
            text=question.text,
            correct_answer=question.correct_answer,
            distractor=question.distractor,
            fact_id=question.fact_id,
            boundary_level=question.boundary_level,
            metadata=dict(question.metadata),
        )


class LiveUnitResponse(BaseModel):
    """The unit the learner is working through."""

    unit_id: str
    track_id: int
    concept_type: str
    concept_code: str
    status: str
    emergency_load: bool = Field(False, description="True while the unit is still loading")
    questions: list[QuestionResponse]

    @classmethod
    def from_unit(cls, unit: ReadyUnit) -> LiveUnitResponse:
        return cls(
            unit_id=unit.id,
            track_id=unit.track_id,
            concept_type=unit.descriptor.concept_type,
            concept_code=unit.descriptor.concept_code,
            status=unit.status.value,
            emergency_load=not unit.is_loaded,
            questions=[QuestionResponse.from_question(q) for q in unit.questions],
        )


class AnswerRequest(BaseModel):
    """An answer to one LIVE question."""

    question_id: str = Field(..., description="Question being answered")
    correct: bool = Field(..., description="Whether the learner picked the correct answer")
    latency_ms: float = Field(..., ge=0, description="Response time in milliseconds")


class AnswerResponse(BaseModel):
    """Mastery change and what comes next."""

    question_id: str
    fact_id: str
    previous_level: int
    new_level: int
    level_name: str
    answered: int
    total: int
    unit_complete: bool
    next_question: QuestionResponse | None


class SessionCompleteRequest(BaseModel):
    trigger: str = Field("session_completed", description="What ended the session")


class RepositionResponse(BaseModel):
    """Where the finished concept moved in its track's queue."""

    concept: str
    correct: int
    total: int
    perfect: bool
    skip_number: int
    previous_position: int
    new_position: int


class RotationResponse(BaseModel):
    """Result of a rotation request."""

    active_track: int
    rotation_count: int
    emergency_load: bool
    promotion_deferred: bool
    reposition: RepositionResponse | None
    live_unit: LiveUnitResponse | None


class StatusResponse(BaseModel):
    """Slots of every track plus scheduler counters."""

    user_id: str
    active_track: int
    rotation_count: int
    cursor: int
    answered: int
    correct: int
    deferred_tracks: list[int]
    slots: dict[int, dict[str, dict[str, Any] | None]]
    upcoming: dict[int, list[str]]
    scheduler: dict[str, Any]


class MasteryResponse(BaseModel):
    user_id: str
    levels: dict[str, int]
    histogram: dict[int, int]


# ========================================
# Endpoints
# ========================================


@router.post("/{user_id}/initialize", response_model=LiveUnitResponse)
async def initialize_learner(
    user_id: str, engine: LearningEngine = Depends(get_learning_engine)
) -> LiveUnitResponse:
    """Start a session; returns once the first LIVE unit is loaded."""
    unit = await engine.initialize_for_user(user_id)
    return LiveUnitResponse.from_unit(unit)


@router.get("/{user_id}/live-unit", response_model=LiveUnitResponse)
def get_live_unit(
    user_id: str, engine: LearningEngine = Depends(get_learning_engine)
) -> LiveUnitResponse:
    return LiveUnitResponse.from_unit(engine.get_live_unit(user_id))


@router.get("/{user_id}/question", response_model=QuestionResponse | None)
def get_current_question(
    user_id: str, engine: LearningEngine = Depends(get_learning_engine)
) -> QuestionResponse | None:
    """Next unanswered question, or null when the unit is done or loading."""
    question = engine.current_question(user_id)
    return QuestionResponse.from_question(question) if question else None


@router.post("/{user_id}/answers", response_model=AnswerResponse)
def submit_answer(
    user_id: str,
    request: AnswerRequest,
    engine: LearningEngine = Depends(get_learning_engine),
) -> AnswerResponse:
    outcome = engine.on_answered(user_id, request.question_id, request.correct, request.latency_ms)
    return AnswerResponse(
        question_id=outcome.question_id,
        fact_id=outcome.fact_id,
        previous_level=outcome.previous_level,
        new_level=outcome.new_level,
        level_name=describe_level(outcome.new_level).name,
        answered=outcome.answered,
        total=outcome.total,
        unit_complete=outcome.unit_complete,
        next_question=(
            QuestionResponse.from_question(outcome.next_question)
            if outcome.next_question
            else None
        ),
    )


@router.post("/{user_id}/session-complete", response_model=RotationResponse)
async def complete_session(
    user_id: str,
    request: SessionCompleteRequest | None = None,
    engine: LearningEngine = Depends(get_learning_engine),
) -> RotationResponse:
    """Score the LIVE unit and rotate to the next track."""
    trigger = request.trigger if request else "session_completed"
    outcome = await engine.complete_session(user_id, trigger)
    reposition = outcome.reposition
    return RotationResponse(
        active_track=outcome.active_track,
        rotation_count=outcome.event.rotation_count,
        emergency_load=outcome.emergency_load,
        promotion_deferred=outcome.promotion_deferred,
        reposition=(
            RepositionResponse(
                concept=reposition.concept_key,
                correct=reposition.correct_count,
                total=reposition.total_count,
                perfect=reposition.perfect,
                skip_number=reposition.skip_number,
                previous_position=reposition.previous_position,
                new_position=reposition.new_position,
            )
            if reposition
            else None
        ),
        live_unit=LiveUnitResponse.from_unit(outcome.live_unit) if outcome.live_unit else None,
    )


@router.get("/{user_id}/status", response_model=StatusResponse)
def get_status(
    user_id: str, engine: LearningEngine = Depends(get_learning_engine)
) -> StatusResponse:
    status = engine.status(user_id)
    stats = status.scheduler
    return StatusResponse(
        user_id=status.user_id,
        active_track=status.active_track,
        rotation_count=status.rotation_count,
        cursor=status.cursor,
        answered=status.answered,
        correct=status.correct,
        deferred_tracks=status.deferred_tracks,
        slots=status.slots,
        upcoming=status.upcoming,
        scheduler={
            "queued": stats.queued,
            "deferred": stats.deferred,
            "executed": stats.executed,
            "failed": stats.failed,
            "retried": stats.retried,
            "dropped": stats.dropped,
            "running": stats.running,
        },
    )


@router.get("/{user_id}/mastery", response_model=MasteryResponse)
def get_mastery(
    user_id: str, engine: LearningEngine = Depends(get_learning_engine)
) -> MasteryResponse:
    return MasteryResponse(
        user_id=user_id,
        levels={r.fact_id: r.boundary_level for r in engine.mastery.records(user_id)},
        histogram=engine.mastery.level_histogram(user_id),
    )
