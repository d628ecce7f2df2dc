# studyplan/engine.py
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Union

import pandas as pd

from .availability import AvailabilityGrid, as_window
from .errors import InvalidTask
from .mastery import MasteryModel
from .models import (AvailabilityWindow, EngineConfig, Outcome, PlanResult,
                     RebalanceResult, Task, TaskStatus)
from .planner import build_plan
from . import rebalancer


def _check_ids(tasks: Sequence[Task]) -> None:
    seen = set()
    for t in tasks:
        if t.id in seen:
            raise InvalidTask(f"duplicate task id {t.id!r}")
        seen.add(t.id)


def _check_now(now: datetime, windows: List[AvailabilityWindow],
               tasks: Sequence[Task]) -> pd.Timestamp:
    """Everything must be tz-aware, or everything naive, matching `now`."""
    now = pd.Timestamp(now)
    aware = now.tzinfo is not None
    stamps = [(f"window {w.start}..{w.end}", s) for w in windows for s in (w.start, w.end)]
    stamps += [(f"task {t.id!r}", s) for t in tasks
               for s in (t.due_at, t.scheduled_for) if s is not None]
    for what, stamp in stamps:
        if (stamp.tzinfo is not None) != aware:
            raise ValueError(f"{what} and now must both be tz-aware or both naive")
    return now


def generate_plan(tasks: Sequence[Task],
                  availability: Iterable,
                  now: datetime,
                  mastery: Optional[MasteryModel] = None,
                  config: Optional[EngineConfig] = None) -> PlanResult:
    """
    Build a time-blocked plan for every PENDING task.

    availability: windows as AvailabilityWindow, (start, end) pairs or
                  {"start", "end"} dicts. Time before `now` is never used,
                  nor time held by SCHEDULED or COMPLETED* tasks.
    mastery: the learner's mastery model; a fresh one is used if omitted.
             It is only read here, never updated.

    Inputs are copied; the returned PlanResult carries the updated task
    snapshot for the caller to persist. Equal inputs give equal plans.
    """
    config = config or EngineConfig()
    availability = [as_window(w) for w in availability]
    now = _check_now(now, availability, tasks)
    _check_ids(tasks)
    mastery = mastery.copy() if mastery is not None else MasteryModel(config=config)

    grid = AvailabilityGrid(availability, not_before=now)
    placements, unplaceable, snapshot = build_plan(tasks, grid, now, mastery, config)
    return PlanResult(placements=placements, unplaceable=unplaceable, tasks=snapshot)


def apply_outcome(task: Task,
                  outcome: Union[TaskStatus, Outcome, str],
                  now: datetime,
                  tasks: Sequence[Task],
                  availability: Iterable,
                  mastery: Optional[MasteryModel] = None,
                  config: Optional[EngineConfig] = None,
                  full_rebalance: bool = False) -> RebalanceResult:
    """
    Record a task outcome and rebalance.

    outcome: COMPLETED, COMPLETED_LATE or MISSED (or the matching Outcome).
             COMPLETED after the block end plus grace counts as late.
    mastery: updated in place; pass the learner's model and persist its
             records afterwards.
    full_rebalance: replan even when the outcome would not require it.
    """
    config = config or EngineConfig()
    availability = [as_window(w) for w in availability]
    now = _check_now(now, availability, list(tasks) + [task])
    _check_ids(tasks)
    if mastery is None:
        mastery = MasteryModel(config=config)
    return rebalancer.apply_outcome(task, outcome, now, tasks, availability, mastery,
                                    config, full_rebalance=full_rebalance)
