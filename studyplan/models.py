# studyplan/models.py
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

import pandas as pd

from .errors import InvalidTask, InvalidWindow

DEFAULT_TOPIC = "general"


class TaskStatus(str, Enum):
    PENDING = "pending"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    COMPLETED_LATE = "completed_late"
    MISSED = "missed"


TERMINAL_STATUSES = (TaskStatus.COMPLETED, TaskStatus.COMPLETED_LATE, TaskStatus.MISSED)


class Outcome(str, Enum):
    ON_TIME = "on_time"
    LATE = "late"
    MISSED = "missed"


def _ts(value) -> Optional[pd.Timestamp]:
    if value is None or value is pd.NaT:
        return None
    return pd.Timestamp(value)


@dataclass
class EngineConfig:
    importance_weight: float = 1.0
    due_weight: float = 5.0
    mastery_weight: float = 2.0
    max_topic_deferrals: int = 2    # K: same-topic deferrals before force-placing
    lookahead: int = 3              # how far back a deferred task is re-queued
    grace_minutes: int = 0          # completion slack past the scheduled block
    makeup_importance_boost: int = 2
    buffer_minutes: int = 0         # gap carved after each placed block
    enforce_due_dates: bool = False  # only place blocks that end by due_at
    initial_mastery: float = 0.3
    min_interval_days: int = 1

    def __post_init__(self):
        if self.max_topic_deferrals < 0:
            raise ValueError("max_topic_deferrals must be >= 0")
        if self.lookahead < 1:
            raise ValueError("lookahead must be >= 1")
        if self.grace_minutes < 0 or self.buffer_minutes < 0:
            raise ValueError("grace_minutes and buffer_minutes must be >= 0")
        if not 0.0 <= self.initial_mastery <= 1.0:
            raise ValueError("initial_mastery must be within 0..1")
        if self.min_interval_days < 1:
            raise ValueError("min_interval_days must be >= 1")


@dataclass(frozen=True)
class TimeRange:
    start: pd.Timestamp
    end: pd.Timestamp

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0

    def overlaps(self, other: "TimeRange") -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class AvailabilityWindow:
    start: datetime
    end: datetime

    def __post_init__(self):
        start, end = pd.Timestamp(self.start), pd.Timestamp(self.end)
        if start >= end:
            raise InvalidWindow(f"window start {start} is not before end {end}")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @property
    def minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0

    def as_range(self) -> TimeRange:
        return TimeRange(self.start, self.end)


@dataclass
class Task:
    id: str
    title: str
    duration_minutes: int
    topic: str = DEFAULT_TOPIC
    due_at: Optional[datetime] = None   # tz-aware or naive, same as the windows
    importance: int = 0                 # 0..10
    spaced_score: float = 0.0           # mirrors the topic's mastery score
    status: TaskStatus = TaskStatus.PENDING
    scheduled_for: Optional[datetime] = None
    makeup_of: Optional[str] = None     # id of the missed task this replaces

    def __post_init__(self):
        self.topic = (self.topic or "").strip() or DEFAULT_TOPIC
        self.status = TaskStatus(self.status)
        self.due_at = _ts(self.due_at)
        self.scheduled_for = _ts(self.scheduled_for)
        if self.duration_minutes is None or self.duration_minutes <= 0:
            raise InvalidTask(f"task {self.id!r}: duration_minutes must be > 0")
        if not 0 <= int(self.importance) <= 10:
            raise InvalidTask(f"task {self.id!r}: importance must be within 0..10")
        self.importance = int(self.importance)
        if self.spaced_score < 0:
            raise InvalidTask(f"task {self.id!r}: spaced_score must be >= 0")
        needs_slot = self.status in (TaskStatus.SCHEDULED, TaskStatus.COMPLETED,
                                     TaskStatus.COMPLETED_LATE)
        if needs_slot and self.scheduled_for is None:
            raise InvalidTask(f"task {self.id!r}: status {self.status.value} needs scheduled_for")

    @property
    def is_open(self) -> bool:
        return self.status in (TaskStatus.PENDING, TaskStatus.SCHEDULED)

    @property
    def scheduled_end(self) -> Optional[pd.Timestamp]:
        if self.scheduled_for is None:
            return None
        return self.scheduled_for + pd.Timedelta(minutes=self.duration_minutes)

    @property
    def scheduled_range(self) -> Optional[TimeRange]:
        if self.scheduled_for is None:
            return None
        return TimeRange(self.scheduled_for, self.scheduled_end)


@dataclass
class TopicMasteryRecord:
    topic: str
    mastery_score: float = 0.3          # 0..1, higher = stronger
    last_reviewed_at: Optional[datetime] = None
    current_interval_days: int = 1

    @property
    def next_review_at(self) -> Optional[pd.Timestamp]:
        if self.last_reviewed_at is None:
            return None
        return pd.Timestamp(self.last_reviewed_at) + pd.Timedelta(days=self.current_interval_days)

    def to_dict(self) -> dict:
        return {
            "topic": self.topic,
            "mastery_score": self.mastery_score,
            "last_reviewed_at": (
                pd.Timestamp(self.last_reviewed_at).isoformat()
                if self.last_reviewed_at is not None else None
            ),
            "current_interval_days": self.current_interval_days,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "TopicMasteryRecord":
        return cls(
            topic=payload["topic"],
            mastery_score=float(payload.get("mastery_score", 0.3)),
            last_reviewed_at=_ts(payload.get("last_reviewed_at")),
            current_interval_days=int(payload.get("current_interval_days", 1)),
        )


@dataclass(frozen=True)
class Placement:
    task_id: str
    title: str
    topic: str
    start: pd.Timestamp
    end: pd.Timestamp
    score: float
    forced: bool = False   # placed next to its own topic after K deferrals

    @property
    def range(self) -> TimeRange:
        return TimeRange(self.start, self.end)


@dataclass
class PlanResult:
    placements: list = field(default_factory=list)     # list[Placement]
    unplaceable: list = field(default_factory=list)    # list[Task]
    tasks: list = field(default_factory=list)          # full task snapshot

    def to_frame(self) -> pd.DataFrame:
        """Placements as a dataframe with columns id, title, topic, start, end, score."""
        return pd.DataFrame(
            [(p.task_id, p.title, p.topic, p.start, p.end, p.score) for p in self.placements],
            columns=["id", "title", "topic", "start", "end", "score"],
        )


@dataclass
class RebalanceResult:
    record: TopicMasteryRecord
    applied_status: TaskStatus
    placements: list = field(default_factory=list)
    unplaceable: list = field(default_factory=list)
    tasks: list = field(default_factory=list)
    makeup: Optional[Task] = None
    rescored: dict = field(default_factory=dict)     # task id -> urgency
    replanned: bool = False

    def to_frame(self) -> pd.DataFrame:
        return PlanResult(self.placements, self.unplaceable, self.tasks).to_frame()
