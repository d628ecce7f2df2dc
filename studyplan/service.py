# studyplan/service.py
import threading
import weakref
from datetime import datetime
from typing import Optional, Union

from loguru import logger

from .engine import apply_outcome, generate_plan
from .errors import UnknownTask
from .mastery import MasteryModel
from .models import EngineConfig, Outcome, PlanResult, RebalanceResult, TaskStatus
from .repository import PlanRepository


class StudyPlanService:
    """
    Loads a learner's snapshot, runs the engine and stores the result.

    The engine itself has no locking; this wrapper keeps at most one planning
    run in flight per learner.
    """

    def __init__(self, repository: PlanRepository, config: Optional[EngineConfig] = None):
        self.repository = repository
        self.config = config or EngineConfig()
        # a learner's lock lives only while some call holds it
        self._locks = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    def _lock_for(self, learner_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(learner_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[learner_id] = lock
            return lock

    def _mastery(self, learner_id: str) -> MasteryModel:
        return MasteryModel(self.repository.load_mastery(learner_id), self.config)

    def plan(self, learner_id: str, now: datetime) -> PlanResult:
        with self._lock_for(learner_id):
            result = generate_plan(
                self.repository.load_tasks(learner_id),
                self.repository.load_availability(learner_id),
                now,
                mastery=self._mastery(learner_id),
                config=self.config,
            )
            self.repository.save_tasks(learner_id, result.tasks)
        if result.unplaceable:
            logger.info("learner {}: {} tasks could not be fitted", learner_id,
                        len(result.unplaceable))
        return result

    def report(self, learner_id: str, task_id: str,
               outcome: Union[TaskStatus, Outcome, str], now: datetime,
               full_rebalance: bool = False) -> RebalanceResult:
        with self._lock_for(learner_id):
            tasks = self.repository.load_tasks(learner_id)
            task = next((t for t in tasks if t.id == task_id), None)
            if task is None:
                raise UnknownTask(task_id)
            mastery = self._mastery(learner_id)
            result = apply_outcome(
                task, outcome, now, tasks,
                self.repository.load_availability(learner_id),
                mastery=mastery,
                config=self.config,
                full_rebalance=full_rebalance,
            )
            self.repository.save_tasks(learner_id, result.tasks)
            self.repository.save_mastery(learner_id, mastery.records())
        return result
