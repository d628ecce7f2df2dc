# studyplan/planner.py
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Deque, Dict, List, Optional, Sequence, Tuple

import pandas as pd
from loguru import logger

from .availability import AvailabilityGrid, fits
from .errors import NoCapacity
from .mastery import MasteryModel
from .metrics import PLAN_BUILD_TIME, UNPLACEABLE_TASKS
from .models import EngineConfig, Placement, Task, TaskStatus, TimeRange
from .urgency import rank

_BOOKED = (TaskStatus.SCHEDULED, TaskStatus.COMPLETED, TaskStatus.COMPLETED_LATE)


@dataclass
class _Candidate:
    task: Task
    score: float


def _latest(task: Task, config: EngineConfig) -> Optional[pd.Timestamp]:
    return task.due_at if config.enforce_due_dates else None


def _other_topic_fits(queue: Deque[_Candidate], topic: str, target: TimeRange,
                      config: EngineConfig) -> bool:
    """Whether a queued task of another topic fits the window `target` is about to use."""
    return any(
        c.task.topic != topic and fits(target, c.task.duration_minutes, _latest(c.task, config))
        for c in queue
    )


def reserve_booked(grid: AvailabilityGrid, tasks: Sequence[Task]) -> None:
    """Take every block already held by a scheduled or completed task out of the grid."""
    for t in tasks:
        if t.status in _BOOKED and t.scheduled_range is not None:
            grid.reserve(t.scheduled_range)


@PLAN_BUILD_TIME.time()
def build_plan(
    tasks: Sequence[Task],
    grid: AvailabilityGrid,
    now: datetime,
    mastery: MasteryModel,
    config: Optional[EngineConfig] = None,
) -> Tuple[List[Placement], List[Task], List[Task]]:
    """
    Greedily place pending tasks into the grid, most urgent first. Blocks
    already held by SCHEDULED or COMPLETED* tasks are reserved first.

    Consecutive blocks on the same topic are avoided: a candidate that would
    repeat the last placed topic is pushed `config.lookahead` places back in
    the queue while a task of another topic fits the window it would land
    in. After `config.max_topic_deferrals` consecutive deferrals the topic is
    placed anyway so the run always terminates.

    Returns:
        placements in placement order, unplaceable tasks (still PENDING), and
        a copy of every input task with statuses/slots/spaced scores updated.
    """
    config = config or EngineConfig()
    now = pd.Timestamp(now)

    snapshot = [replace(t, spaced_score=mastery.mastery_of(t.topic)) if t.is_open else replace(t)
                for t in tasks]
    reserve_booked(grid, snapshot)
    pending = [t for t in snapshot if t.status == TaskStatus.PENDING]
    ranked = rank(pending, now, mastery, config)

    queue: Deque[_Candidate] = deque(
        _Candidate(pending[int(row.pos)], float(row.score)) for row in ranked.itertuples()
    )
    deferrals: Dict[str, int] = {}
    last_topic: Optional[str] = None
    placements: List[Placement] = []
    unplaceable: List[Task] = []
    placed: Dict[str, Task] = {}

    while queue:
        cand = queue.popleft()
        task = cand.task
        latest = _latest(task, config)

        target = grid.window_for(task.duration_minutes, latest)
        if target is None:
            unplaceable.append(task)
            continue

        forced = False
        if task.topic == last_topic and _other_topic_fits(queue, task.topic, target, config):
            if deferrals.get(task.topic, 0) < config.max_topic_deferrals:
                deferrals[task.topic] = deferrals.get(task.topic, 0) + 1
                queue.insert(min(config.lookahead, len(queue)), cand)
                logger.debug("deferring {} ({}), topic deferred {}x",
                             task.id, task.topic, deferrals[task.topic])
                continue
            forced = True

        try:
            slot = grid.allocate(task.duration_minutes, latest, config.buffer_minutes)
        except NoCapacity:
            unplaceable.append(task)
            continue

        deferrals[task.topic] = 0
        last_topic = task.topic
        placements.append(Placement(
            task_id=task.id,
            title=task.title,
            topic=task.topic,
            start=slot.start,
            end=slot.end,
            score=cand.score,
            forced=forced,
        ))
        placed[task.id] = replace(task, status=TaskStatus.SCHEDULED, scheduled_for=slot.start)

    snapshot = [placed.get(t.id, t) if t.status == TaskStatus.PENDING else t for t in snapshot]

    if unplaceable:
        UNPLACEABLE_TASKS.inc(len(unplaceable))
    logger.info("planned {} of {} pending tasks, {} unplaceable, {:.0f} min free",
                len(placements), len(pending), len(unplaceable), grid.remaining_minutes)
    return placements, unplaceable, snapshot
