"""
Service Graph.

Typed constructor injection for the engine's collaborators. Each service is
registered under its type together with the types its factory needs; the
graph is validated and built once, in dependency order, at startup.

Example:
    graph = ServiceGraph()
    graph.provide(Settings, settings)
    graph.register(MasteryController, build_mastery, depends_on=(Settings,))
    graph.resolve()
    mastery = graph.get(MasteryController)
"""

from __future__ import annotations

import heapq
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from loguru import logger

from src.core.errors import DependencyResolutionError

T = TypeVar("T")


@dataclass(frozen=True)
class _Registration:
    key: type
    factory: Callable[..., Any]
    depends_on: tuple[type, ...]
    order: int


class ServiceGraph:
    """Registry of service factories resolved once in topological order."""

    def __init__(self):
        self._registrations: dict[type, _Registration] = {}
        self._instances: dict[type, Any] = {}
        self._resolved = False

    def register(
        self,
        key: type[T],
        factory: Callable[..., T],
        depends_on: Sequence[type] = (),
    ) -> None:
        """
        Register a factory for a service type.

        Args:
            key: Type the service is looked up by
            factory: Called with the resolved dependencies, in declared order
            depends_on: Types that must be built before this one
        """
        if self._resolved:
            raise DependencyResolutionError(
                f"Cannot register {key.__name__} after the graph was resolved"
            )
        if key in self._registrations:
            raise DependencyResolutionError(f"{key.__name__} is already registered")
        self._registrations[key] = _Registration(
            key=key,
            factory=factory,
            depends_on=tuple(depends_on),
            order=len(self._registrations),
        )

    def provide(self, key: type[T], instance: T) -> None:
        """Register an already-constructed instance."""
        self.register(key, lambda: instance)

    def resolution_order(self) -> list[type]:
        """
        Compute the build order (Kahn's algorithm, ties by registration order).

        Raises:
            DependencyResolutionError: On a missing dependency or a cycle
        """
        indegree: dict[type, int] = {key: 0 for key in self._registrations}
        dependents: dict[type, list[type]] = defaultdict(list)

        for registration in self._registrations.values():
            for dependency in registration.depends_on:
                if dependency not in self._registrations:
                    raise DependencyResolutionError(
                        f"{registration.key.__name__} depends on unregistered "
                        f"{dependency.__name__}"
                    )
                indegree[registration.key] += 1
                dependents[dependency].append(registration.key)

        available: list[tuple[int, str, type]] = []
        for key, degree in indegree.items():
            if degree == 0:
                reg = self._registrations[key]
                heapq.heappush(available, (reg.order, key.__name__, key))

        ordered: list[type] = []
        while available:
            _, _, key = heapq.heappop(available)
            ordered.append(key)
            for dependent in dependents[key]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    reg = self._registrations[dependent]
                    heapq.heappush(available, (reg.order, dependent.__name__, dependent))

        if len(ordered) != len(self._registrations):
            unresolved = sorted(key.__name__ for key, degree in indegree.items() if degree > 0)
            raise DependencyResolutionError(
                f"Dependency cycle involving {', '.join(unresolved)}"
            )
        return ordered

    def resolve(self) -> dict[type, Any]:
        """Build every registered service exactly once."""
        if self._resolved:
            return dict(self._instances)

        for key in self.resolution_order():
            registration = self._registrations[key]
            args = [self._instances[dependency] for dependency in registration.depends_on]
            self._instances[key] = registration.factory(*args)
            logger.debug("Built service {}", key.__name__)

        self._resolved = True
        logger.info("Service graph resolved: {} services", len(self._instances))
        return dict(self._instances)

    def get(self, key: type[T]) -> T:
        """Return the built instance for a type, resolving the graph on first use."""
        if not self._resolved:
            self.resolve()
        try:
            return self._instances[key]
        except KeyError:
            raise DependencyResolutionError(f"{key.__name__} is not registered") from None

    def __contains__(self, key: type) -> bool:
        return key in self._registrations
