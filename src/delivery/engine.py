"""
Learning Engine.

Facade the session layer talks to. It ties the rotation state machine, the
readiness cache and the prefetch scheduler together:

- initialize_for_user: the one blocking call; the first LIVE unit is
  prepared inline, everything else is queued.
- get_live_unit: reads the active track's LIVE slot and never loads.
- on_answered: scores the answer and advances the question cursor.
- complete_session: repositions the finished concept by its score, rotates
  tracks and re-seeds the prefetch queue.

Background loads write into whichever slot the unit occupies when they
finish, so a unit promoted while it was being prepared still lands in the
right place. Loads whose unit has left the cache are dropped silently.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from config import Settings
from src.content.assembler import QuestionAssembler
from src.content.populator import ContentPopulator, RepositionResult
from src.content.preparer import ContentPreparer
from src.core.container import ServiceGraph
from src.core.errors import (
    NoContentAvailable,
    SessionStartError,
    UnknownQuestion,
    UserNotInitialized,
)
from src.core.models import (
    SLOT_ORDER,
    TRACK_IDS,
    PrefetchTask,
    Question,
    ReadyUnit,
    Slot,
    TaskKind,
    UnitDescriptor,
    UserProgress,
)
from src.delivery.prefetch import PrefetchScheduler, SchedulerStats
from src.delivery.readiness_cache import ReadinessCache
from src.delivery.rotation import RotationController, RotationEvent
from src.facts.fact_store import FactStore, build_arithmetic_catalogue
from src.facts.remote import ComputedFactSource, HttpFactSource, RemoteFactSource
from src.mastery.controller import MasteryController
from src.mastery.persistence import MasteryPersistence


@dataclass(frozen=True)
class AnswerOutcome:
    """Result of scoring one answer."""

    question_id: str
    fact_id: str
    correct: bool
    previous_level: int
    new_level: int
    answered: int
    total: int
    next_question: Question | None

    @property
    def unit_complete(self) -> bool:
        return self.next_question is None


@dataclass(frozen=True)
class RotationOutcome:
    """Result of a session-completed signal."""

    active_track: int
    event: RotationEvent
    live_unit: ReadyUnit | None = None
    reposition: RepositionResult | None = None

    @property
    def emergency_load(self) -> bool:
        return self.event.emergency_load

    @property
    def promotion_deferred(self) -> bool:
        return self.event.promotion_deferred


@dataclass(frozen=True)
class EngineStatus:
    """Point-in-time view of one user's pipeline."""

    user_id: str
    active_track: int
    rotation_count: int
    cursor: int
    answered: int
    correct: int
    deferred_tracks: list[int]
    slots: dict[int, dict[str, dict[str, Any] | None]]
    upcoming: dict[int, list[str]]
    scheduler: SchedulerStats


@dataclass
class _Session:
    progress: UserProgress
    live_unit_id: str | None = None
    cursor: int = 0
    results: dict[str, bool] = field(default_factory=dict)
    recipe_buffer: dict[int, list[UnitDescriptor]] = field(default_factory=dict)


class LearningEngine:
    """Uninterrupted question delivery over three rotating tracks."""

    def __init__(
        self,
        cache: ReadinessCache,
        rotation: RotationController,
        scheduler: PrefetchScheduler,
        populator: ContentPopulator,
        preparer: ContentPreparer,
        mastery: MasteryController,
        persistence: MasteryPersistence | None = None,
        lookahead_units: int = 10,
        warmup_interval_seconds: float = 60.0,
    ):
        self.cache = cache
        self.rotation = rotation
        self.scheduler = scheduler
        self.populator = populator
        self.preparer = preparer
        self.mastery = mastery
        self.persistence = persistence
        self.lookahead_units = lookahead_units
        self.warmup_interval_seconds = warmup_interval_seconds

        self._sessions: dict[str, _Session] = {}
        self._loads: dict[str, tuple[str, UnitDescriptor]] = {}

        self.rotation.subscribe(self._on_rotation)
        self.scheduler.on_drop(self._on_task_dropped)
        self.scheduler.add_periodic(
            "buffer_warmup", warmup_interval_seconds, self._periodic_warmups
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start background prefetching (requires a running event loop)."""
        self.scheduler.start()

    async def shutdown(self) -> None:
        await self.scheduler.stop()

    def _session(self, user_id: str) -> _Session:
        session = self._sessions.get(user_id)
        if session is None:
            raise UserNotInitialized(user_id)
        return session

    def is_initialized(self, user_id: str) -> bool:
        return user_id in self._sessions

    async def initialize_for_user(self, user_id: str) -> ReadyUnit:
        """
        Populate every track and load the first LIVE unit before returning.

        Mastery is seeded from the persistence hook when one is configured.
        Every other slot is queued for background preparation.

        Returns:
            The loaded LIVE unit of track 1

        Raises:
            SessionStartError: Anything prevented the first unit from loading
        """
        if user_id in self._sessions:
            logger.info("User {} already initialized", user_id)
            return self.get_live_unit(user_id)

        try:
            if self.persistence is not None:
                levels = await asyncio.to_thread(self.persistence.load_levels, user_id)
                self.mastery.seed(user_id, levels)

            session = _Session(progress=UserProgress(user_id=user_id))
            self._sessions[user_id] = session

            first_track = self.rotation.active_track(user_id)
            first = self.populator.next_unit_for(first_track, session.progress)
            live = await self.preparer.prepare(first, user_id)
            self.cache.set(user_id, first_track, Slot.LIVE, live)
            session.live_unit_id = live.id

            self._fill_empty_slots(user_id, incoming_track=first_track)
            self._enqueue_warmups(user_id)
        except Exception as e:  # Intentionally broad - any failure is fatal to session start
            self._sessions.pop(user_id, None)
            self.cache.clear_user(user_id)
            self.rotation.reset(user_id)
            logger.error("Session start failed for {}: {}", user_id, e)
            raise SessionStartError(user_id, e) from e

        logger.info(
            "Initialized {}: live unit {} with {} questions, {} loads queued",
            user_id,
            live.id,
            live.question_count,
            len(self.scheduler),
        )
        return live

    # =========================================================================
    # Interactive path
    # =========================================================================

    def get_live_unit(self, user_id: str) -> ReadyUnit:
        """
        The active track's LIVE unit. Never triggers loading.

        A unit with status "loading" means an emergency load is in progress.

        Raises:
            UserNotInitialized: initialize_for_user was never called
            NoContentAvailable: The active track has nothing LIVE
        """
        session = self._session(user_id)
        track_id = self.rotation.active_track(user_id)
        unit = self.cache.get(user_id, track_id, Slot.LIVE)
        if unit is None:
            raise NoContentAvailable(track_id, "no live unit")
        if unit.id != session.live_unit_id:
            session.live_unit_id = unit.id
            session.cursor = 0
            session.results.clear()
        return unit

    def current_question(self, user_id: str) -> Question | None:
        """Next unanswered question of the LIVE unit, if it is loaded."""
        unit = self.get_live_unit(user_id)
        session = self._session(user_id)
        if not unit.is_loaded or session.cursor >= unit.question_count:
            return None
        return unit.questions[session.cursor]

    def on_answered(
        self,
        user_id: str,
        question_id: str,
        correct: bool,
        latency_ms: float,
    ) -> AnswerOutcome:
        """
        Score an answer to a LIVE question and advance the cursor past it.

        Raises:
            UnknownQuestion: The question is not in the LIVE unit
        """
        unit = self.get_live_unit(user_id)
        session = self._session(user_id)
        question = unit.question_by_id(question_id)
        if question is None:
            raise UnknownQuestion(user_id, question_id)

        previous = self.mastery.get_boundary_level(user_id, question.fact_id)
        level = self.mastery.record_response(user_id, question.fact_id, correct, latency_ms)

        session.results[question_id] = correct
        position = unit.questions.index(question)
        session.cursor = max(session.cursor, position + 1)
        next_question = (
            unit.questions[session.cursor] if session.cursor < unit.question_count else None
        )

        return AnswerOutcome(
            question_id=question_id,
            fact_id=question.fact_id,
            correct=correct,
            previous_level=previous,
            new_level=level,
            answered=len(session.results),
            total=unit.question_count,
            next_question=next_question,
        )

    async def complete_session(
        self, user_id: str, trigger: str = "session_completed"
    ) -> RotationOutcome:
        """
        Handle the "session completed" signal: score the LIVE unit, then
        rotate to the next track.

        The LIVE unit's concept is repositioned by its score (see
        ContentPopulator.record_result). The rotation always goes ahead; if
        the outgoing track's next units are still loading, its promotion
        happens once they land.
        """
        session = self._session(user_id)
        live = self.cache.get(user_id, self.rotation.active_track(user_id), Slot.LIVE)
        reposition = None
        if live is not None:
            correct = (
                sum(session.results.values()) if session.live_unit_id == live.id else 0
            )
            reposition = self.populator.record_result(
                session.progress, live.descriptor, correct, live.question_count
            )

        event = self.rotation.rotate(user_id, trigger)
        try:
            incoming = self.get_live_unit(user_id)
        except NoContentAvailable:
            incoming = None
        return RotationOutcome(
            active_track=event.active_track,
            event=event,
            live_unit=incoming,
            reposition=reposition,
        )

    def status(self, user_id: str) -> EngineStatus:
        session = self._session(user_id)
        slots: dict[int, dict[str, dict[str, Any] | None]] = {}
        for track_id, state in self.cache.snapshot(user_id).items():
            slots[track_id] = {
                slot.value: (
                    None
                    if (unit := state.unit(slot)) is None
                    else {
                        "unit_id": unit.id,
                        "status": unit.status.value,
                        "questions": unit.question_count,
                        "error": unit.error,
                    }
                )
                for slot in SLOT_ORDER
            }
        return EngineStatus(
            user_id=user_id,
            active_track=self.rotation.active_track(user_id),
            rotation_count=self.rotation.rotation_count(user_id),
            cursor=session.cursor,
            answered=len(session.results),
            correct=sum(session.results.values()),
            deferred_tracks=self.rotation.deferred_tracks(user_id),
            slots=slots,
            upcoming={
                track_id: [d.id for d in descriptors]
                for track_id, descriptors in session.recipe_buffer.items()
            },
            scheduler=self.scheduler.stats(),
        )

    # =========================================================================
    # Prefetch wiring
    # =========================================================================

    def _on_rotation(self, event: RotationEvent) -> None:
        if event.emergency_load:
            live = self.cache.get(event.user_id, event.active_track, Slot.LIVE)
            if live is not None:
                self._enqueue_load(event.user_id, live.descriptor, priority=1)
        if event.promotion_deferred:
            self._request_unblock(event.user_id, event.previous_track)
        self._fill_empty_slots(event.user_id, incoming_track=event.active_track)
        self._enqueue_warmups(event.user_id)

    def _fill_empty_slots(self, user_id: str, incoming_track: int) -> None:
        """Populate every empty slot with a placeholder and queue its load."""
        progress = self._session(user_id).progress
        for track_id in TRACK_IDS:
            for slot in self.cache.track_state(user_id, track_id).empty_slots():
                try:
                    descriptor = self.populator.next_unit_for(track_id, progress)
                except NoContentAvailable as e:
                    logger.info("Track {} temporarily empty for {}: {}", track_id, user_id, e.reason)
                    break
                self.cache.set(user_id, track_id, slot, ReadyUnit.placeholder(descriptor))
                if slot is Slot.LIVE and track_id == incoming_track:
                    priority = 1
                elif slot is Slot.PREPARING:
                    priority = 3
                else:
                    priority = 2
                self._enqueue_load(user_id, descriptor, priority)

    def _request_unblock(self, user_id: str, track_id: int) -> None:
        """Re-queue the units holding back a deferred promotion, unless already queued."""
        state = self.cache.track_state(user_id, track_id)
        for slot, priority in ((Slot.READY, 2), (Slot.PREPARING, 3)):
            unit = state.unit(slot)
            if unit is not None and not unit.is_loaded and not self.scheduler.is_pending(unit.id):
                self._enqueue_load(user_id, unit.descriptor, priority)

    def _enqueue_load(self, user_id: str, descriptor: UnitDescriptor, priority: int) -> None:
        self._loads[descriptor.id] = (user_id, descriptor)
        kind = {1: TaskKind.LOAD_LIVE, 2: TaskKind.LOAD_READY}.get(priority, TaskKind.LOAD_PREPARING)

        async def load() -> None:
            await self._load_unit(user_id, descriptor)

        self.scheduler.enqueue(
            PrefetchTask(priority=priority, target_unit_id=descriptor.id, action=load, kind=kind)
        )

    async def _load_unit(self, user_id: str, descriptor: UnitDescriptor) -> None:
        track_id = descriptor.track_id
        slot = (
            self.cache.locate(user_id, track_id, descriptor.id)
            if user_id in self._sessions
            else None
        )
        if slot is None:
            logger.debug("Skipping stale load of {}", descriptor.id)
            return

        current = self.cache.get(user_id, track_id, slot)
        if current is None or not current.is_loaded:
            unit = await self.preparer.prepare(descriptor, user_id)
            # The unit may have been promoted (or evicted) while preparing
            slot = self.cache.locate(user_id, track_id, descriptor.id)
            if slot is None:
                logger.debug("Discarding {}: left the cache while loading", descriptor.id)
                return
            self.cache.set(user_id, track_id, slot, unit)

        self._loads.pop(descriptor.id, None)
        self._promote_deferred(user_id)

    def _promote_deferred(self, user_id: str) -> None:
        if not self.rotation.deferred_tracks(user_id):
            return
        if self.rotation.promote_deferred(user_id):
            self._fill_empty_slots(user_id, incoming_track=self.rotation.active_track(user_id))

    def _on_task_dropped(self, task: PrefetchTask, error: Exception) -> None:
        load = self._loads.pop(task.target_unit_id, None)
        if load is None:
            return
        user_id, descriptor = load
        if user_id not in self._sessions:
            return
        slot = self.cache.locate(user_id, descriptor.track_id, descriptor.id)
        if slot is not None:
            self.cache.set(user_id, descriptor.track_id, slot, ReadyUnit.failed(descriptor, error))

    def _warmup_tasks(self, user_id: str) -> list[PrefetchTask]:
        """Buffer warm-ups (p4/p5) and mastery persistence not already queued."""
        tasks = []
        for kind, action in (
            (TaskKind.WARM_FACTS, self._warm_facts),
            (TaskKind.WARM_RECIPES, self._warm_recipes),
            (TaskKind.PERSIST_MASTERY, self._persist_mastery),
        ):
            if kind is TaskKind.PERSIST_MASTERY and self.persistence is None:
                continue
            target = f"{kind.value}:{user_id}"
            if self.scheduler.is_pending(target):
                continue

            async def run(action=action) -> None:
                await action(user_id)

            tasks.append(
                PrefetchTask(
                    priority=kind.default_priority, target_unit_id=target, action=run, kind=kind
                )
            )
        return tasks

    def _enqueue_warmups(self, user_id: str) -> None:
        for task in self._warmup_tasks(user_id):
            self.scheduler.enqueue(task)

    def _periodic_warmups(self) -> list[PrefetchTask]:
        return [task for user_id in list(self._sessions) for task in self._warmup_tasks(user_id)]

    def _upcoming(self, user_id: str) -> dict[int, list[UnitDescriptor]]:
        progress = self._sessions[user_id].progress
        return {
            track_id: self.populator.preview(track_id, progress, self.lookahead_units)
            for track_id in TRACK_IDS
        }

    async def _warm_facts(self, user_id: str) -> None:
        if user_id not in self._sessions:
            return
        descriptors = [d for ds in self._upcoming(user_id).values() for d in ds]
        await self.preparer.warm_facts(descriptors)

    async def _warm_recipes(self, user_id: str) -> None:
        session = self._sessions.get(user_id)
        if session is not None:
            session.recipe_buffer = self._upcoming(user_id)

    async def _persist_mastery(self, user_id: str) -> None:
        if self.persistence is None:
            return
        records = self.mastery.take_dirty(user_id)
        if records:
            await asyncio.to_thread(self.persistence.save_records, records)


# =============================================================================
# Wiring
# =============================================================================


def create_learning_engine(
    settings: Settings,
    *,
    fact_store: FactStore | None = None,
    remote: RemoteFactSource | None = None,
    persistence: MasteryPersistence | None = None,
    rng: random.Random | None = None,
) -> LearningEngine:
    """
    Build a LearningEngine and its collaborators from settings.

    Args:
        settings: Application settings
        fact_store: Local facts (default: in-memory arithmetic catalogue)
        remote: Source for facts missing locally (default: HTTP when
            fact_api_url is set, otherwise computed from fact ids)
        persistence: Optional mastery seed/save hook
        rng: Random source for distractors (inject for reproducibility)
    """
    graph = ServiceGraph()
    graph.provide(Settings, settings)
    graph.register(
        FactStore, lambda: fact_store if fact_store is not None else build_arithmetic_catalogue()
    )
    graph.register(
        RemoteFactSource,
        lambda s: remote
        if remote is not None
        else (
            HttpFactSource(s.fact_api_url, s.fact_api_timeout_seconds)
            if s.has_remote_facts()
            else ComputedFactSource()
        ),
        depends_on=(Settings,),
    )
    graph.register(
        MasteryController,
        lambda s: MasteryController(s.get_fast_thresholds()),
        depends_on=(Settings,),
    )
    graph.register(QuestionAssembler, lambda: QuestionAssembler(rng))
    graph.register(
        ContentPreparer,
        lambda s, store, source, mastery, assembler: ContentPreparer(
            store, mastery, assembler, remote=source, unit_size=s.unit_size
        ),
        depends_on=(Settings, FactStore, RemoteFactSource, MasteryController, QuestionAssembler),
    )
    graph.register(ContentPopulator, ContentPopulator)
    graph.register(ReadinessCache, ReadinessCache)
    graph.register(RotationController, RotationController, depends_on=(ReadinessCache,))
    graph.register(
        PrefetchScheduler,
        lambda s: PrefetchScheduler(
            max_retries=s.max_task_retries, retry_delay_seconds=s.retry_delay_seconds
        ),
        depends_on=(Settings,),
    )
    graph.register(
        LearningEngine,
        lambda s, cache, rotation, scheduler, populator, preparer, mastery: LearningEngine(
            cache=cache,
            rotation=rotation,
            scheduler=scheduler,
            populator=populator,
            preparer=preparer,
            mastery=mastery,
            persistence=persistence,
            lookahead_units=s.buffer_lookahead_units,
            warmup_interval_seconds=s.warmup_interval_seconds,
        ),
        depends_on=(
            Settings,
            ReadinessCache,
            RotationController,
            PrefetchScheduler,
            ContentPopulator,
            ContentPreparer,
            MasteryController,
        ),
    )
    return graph.get(LearningEngine)
