# studyplan/mastery.py
"""
Per-topic mastery tracking and review intervals.

A simplified SM-2 style model: every topic carries a mastery score in 0..1
and an interval in days. On-time completions raise the score and stretch the
interval, late completions shave the score, misses cut both.
"""
import math
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import pandas as pd
from loguru import logger

from .models import DEFAULT_TOPIC, EngineConfig, Outcome, TopicMasteryRecord

ON_TIME_GAIN = 0.15
LATE_PENALTY = 0.05
MISSED_PENALTY = 0.2
INTERVAL_BASE_FACTOR = 1.3


def _topic_key(topic: Optional[str]) -> str:
    return (topic or "").strip() or DEFAULT_TOPIC


class MasteryModel:
    """Owns one TopicMasteryRecord per topic, created lazily on first reference."""

    def __init__(self,
                 records: Optional[Iterable[TopicMasteryRecord]] = None,
                 config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self._records: Dict[str, TopicMasteryRecord] = {}
        for rec in records or []:
            self._records[_topic_key(rec.topic)] = replace(rec, topic=_topic_key(rec.topic))

    def record_for(self, topic: Optional[str]) -> TopicMasteryRecord:
        key = _topic_key(topic)
        rec = self._records.get(key)
        if rec is None:
            rec = TopicMasteryRecord(
                topic=key,
                mastery_score=self.config.initial_mastery,
                current_interval_days=self.config.min_interval_days,
            )
            self._records[key] = rec
        return rec

    def mastery_of(self, topic: Optional[str]) -> float:
        return self.record_for(topic).mastery_score

    def interval_for(self, topic: Optional[str]) -> int:
        return self.record_for(topic).current_interval_days

    def is_due_for_review(self, topic: Optional[str], now: datetime) -> bool:
        """True when the topic was never reviewed or its interval has elapsed."""
        next_at = self.record_for(topic).next_review_at
        return next_at is None or pd.Timestamp(now) >= next_at

    def record_outcome(self, topic: Optional[str], outcome: Outcome,
                       at: Optional[datetime] = None) -> TopicMasteryRecord:
        rec = self.record_for(topic)
        outcome = Outcome(outcome)
        before = (rec.mastery_score, rec.current_interval_days)

        if outcome is Outcome.ON_TIME:
            rec.mastery_score = min(1.0, rec.mastery_score + ON_TIME_GAIN)
            rec.current_interval_days = math.ceil(
                rec.current_interval_days * (INTERVAL_BASE_FACTOR + rec.mastery_score)
            )
        elif outcome is Outcome.LATE:
            rec.mastery_score = max(0.0, rec.mastery_score - LATE_PENALTY)
        else:
            rec.mastery_score = max(0.0, rec.mastery_score - MISSED_PENALTY)
            rec.current_interval_days = max(self.config.min_interval_days,
                                            rec.current_interval_days // 2)

        # a miss is not a review
        if outcome is not Outcome.MISSED and at is not None:
            rec.last_reviewed_at = pd.Timestamp(at)

        logger.debug(
            "mastery {} {}: score {:.2f}->{:.2f}, interval {}->{}d",
            rec.topic, outcome.value, before[0], rec.mastery_score,
            before[1], rec.current_interval_days,
        )
        return replace(rec)

    def records(self) -> List[TopicMasteryRecord]:
        return [replace(r) for _, r in sorted(self._records.items())]

    def to_frame(self) -> pd.DataFrame:
        rows = [r.to_dict() for r in self.records()]
        return pd.DataFrame(rows, columns=["topic", "mastery_score",
                                           "last_reviewed_at", "current_interval_days"])

    def copy(self) -> "MasteryModel":
        return MasteryModel(self.records(), self.config)

    def __contains__(self, topic: str) -> bool:
        return _topic_key(topic) in self._records

    def __len__(self) -> int:
        return len(self._records)
