# studyplan/urgency.py
from datetime import datetime
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from .mastery import MasteryModel
from .models import EngineConfig, Task


def _hours_until_due(task: Task, now: pd.Timestamp) -> float:
    """Hours from now to the task's due date, +inf when it has none."""
    if task.due_at is None:
        return np.inf
    return (task.due_at - now).total_seconds() / 3600.0


def _mastery_term(task: Task, now: pd.Timestamp, mastery: MasteryModel) -> float:
    # topics still inside their review interval get no reinforcement boost
    if not mastery.is_due_for_review(task.topic, now):
        return 0.0
    return 1.0 - mastery.mastery_of(task.topic)


def _combine(importance: np.ndarray, hours: np.ndarray, mastery_term: np.ndarray,
             config: EngineConfig) -> np.ndarray:
    due_urgency = np.where(np.isinf(hours), 0.0, 1.0 / np.maximum(1.0, hours))
    return (
        config.importance_weight * importance
        + config.due_weight * due_urgency
        + config.mastery_weight * mastery_term
    )


def score(task: Task, now: datetime, mastery: MasteryModel,
          config: Optional[EngineConfig] = None) -> float:
    """
    Urgency of a single task. Only meaningful relative to other tasks
    scored with the same now/mastery/config.
    """
    config = config or EngineConfig()
    now = pd.Timestamp(now)
    out = _combine(
        np.array([float(task.importance)]),
        np.array([_hours_until_due(task, now)]),
        np.array([_mastery_term(task, now, mastery)]),
        config,
    )
    return float(out[0])


def rank(tasks: Sequence[Task], now: datetime, mastery: MasteryModel,
         config: Optional[EngineConfig] = None) -> pd.DataFrame:
    """
    Score tasks and order them most-urgent first.

    Returns a dataframe with columns pos, id, topic, duration_minutes,
    hours_until_due, score. Ties fall back to the earliest due date
    (tasks without one last) and then to input order.
    """
    config = config or EngineConfig()
    now = pd.Timestamp(now)
    columns = ["pos", "id", "topic", "duration_minutes", "hours_until_due", "score"]
    if not tasks:
        return pd.DataFrame(columns=columns)

    df = pd.DataFrame({
        "pos": np.arange(len(tasks)),
        "id": [t.id for t in tasks],
        "topic": [t.topic for t in tasks],
        "duration_minutes": [t.duration_minutes for t in tasks],
        "hours_until_due": [_hours_until_due(t, now) for t in tasks],
    })
    importance = np.array([float(t.importance) for t in tasks])
    mastery_term = np.array([_mastery_term(t, now, mastery) for t in tasks])
    df["score"] = _combine(importance, df["hours_until_due"].to_numpy(dtype=float),
                           mastery_term, config)

    df = df.sort_values(
        ["score", "hours_until_due", "pos"],
        ascending=[False, True, True],
        kind="mergesort",
    ).reset_index(drop=True)
    return df[columns]


def rescore(tasks: Sequence[Task], now: datetime, mastery: MasteryModel,
            config: Optional[EngineConfig] = None) -> List[tuple]:
    """(task id, score) pairs in ranked order."""
    ranked = rank(tasks, now, mastery, config)
    return list(zip(ranked["id"], ranked["score"].astype(float)))
