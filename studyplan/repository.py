# studyplan/repository.py
"""Storage interface the planning engine's callers persist snapshots through."""
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Dict, Iterable, List

from .models import AvailabilityWindow, Task, TopicMasteryRecord


class PlanRepository(ABC):
    """Per-learner tasks, availability and topic mastery."""

    @abstractmethod
    def load_tasks(self, learner_id: str) -> List[Task]:
        """Return the learner's task snapshot (empty when unknown)."""

    @abstractmethod
    def save_tasks(self, learner_id: str, tasks: Iterable[Task]) -> None:
        """Replace the learner's task snapshot."""

    @abstractmethod
    def load_availability(self, learner_id: str) -> List[AvailabilityWindow]:
        """Return the learner's free windows."""

    @abstractmethod
    def load_mastery(self, learner_id: str) -> List[TopicMasteryRecord]:
        """Return the learner's topic mastery records."""

    @abstractmethod
    def save_mastery(self, learner_id: str, records: Iterable[TopicMasteryRecord]) -> None:
        """Replace the learner's topic mastery records."""


class InMemoryPlanRepository(PlanRepository):
    """Dictionary-backed repository; copies on the way in and out."""

    def __init__(self) -> None:
        self._tasks: Dict[str, List[Task]] = {}
        self._availability: Dict[str, List[AvailabilityWindow]] = {}
        self._mastery: Dict[str, List[TopicMasteryRecord]] = {}

    def load_tasks(self, learner_id: str) -> List[Task]:
        return [replace(t) for t in self._tasks.get(learner_id, [])]

    def save_tasks(self, learner_id: str, tasks: Iterable[Task]) -> None:
        self._tasks[learner_id] = [replace(t) for t in tasks]

    def set_availability(self, learner_id: str, windows: Iterable[AvailabilityWindow]) -> None:
        self._availability[learner_id] = list(windows)

    def load_availability(self, learner_id: str) -> List[AvailabilityWindow]:
        return list(self._availability.get(learner_id, []))

    def load_mastery(self, learner_id: str) -> List[TopicMasteryRecord]:
        return [replace(r) for r in self._mastery.get(learner_id, [])]

    def save_mastery(self, learner_id: str, records: Iterable[TopicMasteryRecord]) -> None:
        self._mastery[learner_id] = [replace(r) for r in records]


__all__ = ["PlanRepository", "InMemoryPlanRepository"]
