# studyplan/rebalancer.py
"""
Reacting to task outcomes.

A task moves PENDING -> SCHEDULED -> {COMPLETED, COMPLETED_LATE, MISSED}.
Each terminal transition feeds the mastery model; a miss also queues a
makeup session and replans everything that has not started yet.
"""
from dataclasses import replace
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Union

import pandas as pd
from loguru import logger

from .availability import AvailabilityGrid
from .errors import InvalidTransition
from .mastery import MasteryModel
from .metrics import OUTCOMES, REBALANCES
from .models import (
    TERMINAL_STATUSES,
    EngineConfig,
    Outcome,
    Placement,
    RebalanceResult,
    Task,
    TaskStatus,
)
from .planner import build_plan, reserve_booked
from .urgency import rescore, score

_FROM_OUTCOME = {
    Outcome.ON_TIME: TaskStatus.COMPLETED,
    Outcome.LATE: TaskStatus.COMPLETED_LATE,
    Outcome.MISSED: TaskStatus.MISSED,
}

_TO_OUTCOME = {
    TaskStatus.COMPLETED: Outcome.ON_TIME,
    TaskStatus.COMPLETED_LATE: Outcome.LATE,
    TaskStatus.MISSED: Outcome.MISSED,
}


def _target_status(outcome: Union[TaskStatus, Outcome, str]) -> TaskStatus:
    if isinstance(outcome, Outcome):
        return _FROM_OUTCOME[outcome]
    try:
        status = TaskStatus(outcome)
    except ValueError:
        try:
            return _FROM_OUTCOME[Outcome(outcome)]
        except ValueError:
            raise InvalidTransition(f"unknown outcome {outcome!r}") from None
    if status not in TERMINAL_STATUSES:
        raise InvalidTransition(f"{status.value} is not an outcome")
    return status


def classify_completion(task: Task, completed_at: datetime,
                        config: Optional[EngineConfig] = None) -> TaskStatus:
    """COMPLETED when finished by the end of its block plus grace, else COMPLETED_LATE."""
    config = config or EngineConfig()
    if task.scheduled_end is None:
        return TaskStatus.COMPLETED
    deadline = task.scheduled_end + pd.Timedelta(minutes=config.grace_minutes)
    if pd.Timestamp(completed_at) > deadline:
        return TaskStatus.COMPLETED_LATE
    return TaskStatus.COMPLETED


def make_makeup(task: Task, existing_ids: Iterable[str],
                config: Optional[EngineConfig] = None) -> Task:
    """A fresh pending copy of a missed task with boosted importance."""
    config = config or EngineConfig()
    taken = set(existing_ids)
    n = 1
    while f"{task.id}-makeup-{n}" in taken:
        n += 1
    return Task(
        id=f"{task.id}-makeup-{n}",
        title=task.title,
        duration_minutes=task.duration_minutes,
        topic=task.topic,
        due_at=task.due_at,
        importance=min(10, task.importance + config.makeup_importance_boost),
        spaced_score=task.spaced_score,
        makeup_of=task.id,
    )


def _current_placements(tasks: Sequence[Task], now: pd.Timestamp, mastery: MasteryModel,
                        config: EngineConfig) -> List[Placement]:
    scheduled = sorted((t for t in tasks if t.status == TaskStatus.SCHEDULED),
                       key=lambda t: (t.scheduled_for, t.id))
    return [
        Placement(t.id, t.title, t.topic, t.scheduled_for, t.scheduled_end,
                  score(t, now, mastery, config))
        for t in scheduled
    ]


def rebalance(tasks: Sequence[Task], availability: Iterable, now: datetime,
              mastery: MasteryModel, config: Optional[EngineConfig] = None):
    """
    Replan the remaining horizon.

    Blocks that already started stay where they are. Every SCHEDULED task
    that has not started is released back to the grid and becomes PENDING
    again, then the plan builder runs over the whole pending pool. A
    released block only frees time inside the windows given to this call.
    """
    config = config or EngineConfig()
    now = pd.Timestamp(now)
    grid = AvailabilityGrid(availability, not_before=now)

    scheduled = [t for t in tasks if t.status == TaskStatus.SCHEDULED]
    reserve_booked(grid, tasks)

    pool: List[Task] = []
    released = 0
    for t in tasks:
        if t.status == TaskStatus.SCHEDULED and t.scheduled_for >= now:
            grid.release(t.scheduled_range)
            t = replace(t, status=TaskStatus.PENDING, scheduled_for=None)
            released += 1
        pool.append(t)

    REBALANCES.inc()
    logger.info("rebalancing: released {} blocks, {} kept in progress",
                released, len(scheduled) - released)
    return build_plan(pool, grid, now, mastery, config)


def apply_outcome(
    task: Task,
    outcome: Union[TaskStatus, Outcome, str],
    now: datetime,
    tasks: Sequence[Task],
    availability: Iterable,
    mastery: MasteryModel,
    config: Optional[EngineConfig] = None,
    full_rebalance: bool = False,
) -> RebalanceResult:
    config = config or EngineConfig()
    now = pd.Timestamp(now)
    target = _target_status(outcome)

    snapshot = [replace(t) for t in tasks]
    idx = next((i for i, t in enumerate(snapshot) if t.id == task.id), None)
    if idx is None:
        snapshot.append(replace(task))
        idx = len(snapshot) - 1
    current = snapshot[idx]

    if not current.is_open:
        raise InvalidTransition(
            f"task {current.id!r} is already {current.status.value}"
        )

    if target == TaskStatus.COMPLETED:
        target = classify_completion(current, now, config)

    scheduled_for = current.scheduled_for
    if target == TaskStatus.MISSED:
        scheduled_for = None
    elif scheduled_for is None:
        # studied without a planned block: record it as just finished
        scheduled_for = now - pd.Timedelta(minutes=current.duration_minutes)

    record = mastery.record_outcome(current.topic, _TO_OUTCOME[target], at=now)
    snapshot[idx] = replace(current, status=target, scheduled_for=scheduled_for,
                            spaced_score=record.mastery_score)
    snapshot = [
        replace(t, spaced_score=record.mastery_score)
        if t.is_open and t.topic == record.topic else t
        for t in snapshot
    ]
    OUTCOMES.labels(status=target.value).inc()
    logger.info("task {} ({}) -> {}", current.id, current.topic, target.value)

    result = RebalanceResult(record=record, applied_status=target)

    if target == TaskStatus.COMPLETED_LATE:
        horizon = now + pd.Timedelta(days=record.current_interval_days)
        affected = [
            t for t in snapshot
            if t.is_open and t.topic == record.topic
            and t.due_at is not None and t.due_at <= horizon
        ]
        result.rescored = dict(rescore(affected, now, mastery, config))

    if target == TaskStatus.MISSED:
        makeup = make_makeup(snapshot[idx], (t.id for t in snapshot), config)
        snapshot.append(makeup)
        result.makeup = makeup

    if target == TaskStatus.MISSED or full_rebalance:
        placements, unplaceable, snapshot = rebalance(snapshot, availability, now,
                                                      mastery, config)
        result.placements = placements
        result.unplaceable = unplaceable
        result.replanned = True
        if result.makeup is not None:
            result.makeup = next(t for t in snapshot if t.id == result.makeup.id)
    else:
        result.placements = _current_placements(snapshot, now, mastery, config)

    result.tasks = snapshot
    return result
