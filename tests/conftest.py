import pandas as pd
import pytest

from studyplan.mastery import MasteryModel
from studyplan.models import AvailabilityWindow, EngineConfig, Task


@pytest.fixture
def now():
    return pd.Timestamp("2025-01-06 09:00")


@pytest.fixture
def config():
    return EngineConfig()


@pytest.fixture
def mastery(config):
    return MasteryModel(config=config)


def window(start, minutes):
    start = pd.Timestamp(start)
    return AvailabilityWindow(start, start + pd.Timedelta(minutes=minutes))


def task(id, topic="Math", minutes=60, importance=0, due_in_hours=None, now=None, **kw):
    due_at = None
    if due_in_hours is not None:
        base = pd.Timestamp(now) if now is not None else pd.Timestamp("2025-01-06 09:00")
        due_at = base + pd.Timedelta(hours=due_in_hours)
    return Task(id=id, title=f"{topic} {id}", topic=topic, duration_minutes=minutes,
                importance=importance, due_at=due_at, **kw)
