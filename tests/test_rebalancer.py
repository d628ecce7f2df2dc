import pandas as pd
import pytest
from prometheus_client import REGISTRY

from conftest import task, window
from studyplan.engine import apply_outcome, generate_plan
from studyplan.errors import InvalidTransition
from studyplan.mastery import MasteryModel
from studyplan.models import EngineConfig, Outcome, TaskStatus, TopicMasteryRecord
from studyplan.rebalancer import classify_completion, make_makeup


def by_id(tasks):
    return {t.id: t for t in tasks}


@pytest.fixture
def planned(now):
    """Math 09:00-10:00 then Physics 10:00-11:00 in a 09:00-13:00 window."""
    tasks = [task("math1", importance=3), task("phys1", topic="Physics", importance=1)]
    windows = [window(now, 240)]
    plan = generate_plan(tasks, windows, now)
    assert [p.task_id for p in plan.placements] == ["math1", "phys1"]
    return plan, windows


class TestMissed:
    def test_miss_cuts_mastery_and_queues_a_makeup(self, now, planned):
        plan, windows = planned
        mastery = MasteryModel([TopicMasteryRecord(
            "Math", 0.6, now - pd.Timedelta(days=10), 4)])
        later = now + pd.Timedelta(hours=1)
        math1 = by_id(plan.tasks)["math1"]

        result = apply_outcome(math1, TaskStatus.MISSED, later, plan.tasks, windows,
                               mastery=mastery)

        assert result.applied_status == TaskStatus.MISSED
        assert result.record.mastery_score == pytest.approx(0.4)
        assert result.record.current_interval_days == 2
        assert mastery.mastery_of("Math") == pytest.approx(0.4)

        makeup = result.makeup
        assert makeup.id == "math1-makeup-1"
        assert makeup.makeup_of == "math1"
        assert makeup.topic == "Math"
        assert makeup.duration_minutes == 60
        assert makeup.importance == 5
        assert result.replanned

    def test_rebalance_moves_unstarted_blocks(self, now, planned):
        plan, windows = planned
        later = now + pd.Timedelta(hours=1)
        math1 = by_id(plan.tasks)["math1"]

        result = apply_outcome(math1, "missed", later, plan.tasks, windows)
        tasks = by_id(result.tasks)

        assert tasks["math1"].status == TaskStatus.MISSED
        assert tasks["math1"].scheduled_for is None
        # the boosted makeup now outranks physics
        assert [p.task_id for p in result.placements] == ["math1-makeup-1", "phys1"]
        assert tasks["math1-makeup-1"].scheduled_for == later
        assert tasks["phys1"].scheduled_for == later + pd.Timedelta(hours=1)
        assert result.unplaceable == []

    def test_makeup_is_pending_for_the_next_plan_when_it_does_not_fit(self, now):
        windows = [window(now, 60)]
        plan = generate_plan([task("a", importance=4), task("b", topic="Physics", importance=1)],
                             windows, now)
        a = by_id(plan.tasks)["a"]

        result = apply_outcome(a, Outcome.MISSED, now, plan.tasks, windows)
        tasks = by_id(result.tasks)

        assert sorted(tasks) == ["a", "a-makeup-1", "b"]
        assert [p.task_id for p in result.placements] == ["a-makeup-1"]
        assert [t.id for t in result.unplaceable] == ["b"]
        assert tasks["b"].status == TaskStatus.PENDING

        nxt = generate_plan(result.tasks, [window(now + pd.Timedelta(days=1), 120)], now)
        assert [p.task_id for p in nxt.placements] == ["b"]

    def test_started_blocks_stay_put(self, now):
        windows = [window(now - pd.Timedelta(hours=1), 240)]
        tasks = [
            task("z", topic="Bio", status=TaskStatus.SCHEDULED,
                 scheduled_for=now - pd.Timedelta(hours=1)),
            task("p", topic="Physics", status=TaskStatus.SCHEDULED, scheduled_for=now),
            task("q", topic="History", status=TaskStatus.SCHEDULED,
                 scheduled_for=now + pd.Timedelta(hours=1)),
        ]
        at = now + pd.Timedelta(minutes=30)

        result = apply_outcome(tasks[0], TaskStatus.COMPLETED, at, tasks, windows,
                               full_rebalance=True)
        after = by_id(result.tasks)

        assert result.replanned
        assert after["z"].status == TaskStatus.COMPLETED_LATE
        assert after["p"].status == TaskStatus.SCHEDULED
        assert after["p"].scheduled_for == now
        assert after["q"].scheduled_for == now + pd.Timedelta(hours=1)
        assert [p.task_id for p in result.placements] == ["q"]

    def test_importance_boost_is_capped(self):
        t = task("a", importance=9)
        assert make_makeup(t, ["a"]).importance == 10

    def test_makeup_ids_do_not_collide(self):
        t = task("a")
        assert make_makeup(t, ["a", "a-makeup-1"]).id == "a-makeup-2"


class TestCompletion:
    def test_on_time(self, now, planned):
        plan, windows = planned
        math1 = by_id(plan.tasks)["math1"]
        mastery = MasteryModel()
        at = now + pd.Timedelta(hours=1)

        result = apply_outcome(math1, TaskStatus.COMPLETED, at, plan.tasks, windows,
                               mastery=mastery)

        assert result.applied_status == TaskStatus.COMPLETED
        assert result.record.mastery_score == pytest.approx(0.45)
        assert result.record.current_interval_days == 2
        assert result.record.last_reviewed_at == at
        assert not result.replanned
        assert [p.task_id for p in result.placements] == ["phys1"]

    def test_completion_after_the_block_is_late(self, now, planned):
        plan, windows = planned
        math1 = by_id(plan.tasks)["math1"]
        result = apply_outcome(math1, TaskStatus.COMPLETED, now + pd.Timedelta(minutes=90),
                               plan.tasks, windows)
        assert result.applied_status == TaskStatus.COMPLETED_LATE
        assert result.record.mastery_score == pytest.approx(0.25)
        assert result.record.current_interval_days == 1

    def test_grace_period(self, now):
        t = task("a", status=TaskStatus.SCHEDULED, scheduled_for=now)
        cfg = EngineConfig(grace_minutes=30)
        assert classify_completion(t, now + pd.Timedelta(minutes=80), cfg) == TaskStatus.COMPLETED
        assert classify_completion(t, now + pd.Timedelta(minutes=91), cfg) == TaskStatus.COMPLETED_LATE

    def test_late_rescores_open_tasks_of_the_topic(self, now):
        windows = [window(now, 240)]
        tasks = [task("m1", importance=2), task("m2", minutes=30, due_in_hours=12),
                 task("m3", minutes=30, due_in_hours=24 * 30),
                 task("p1", topic="Physics", due_in_hours=3)]
        plan = generate_plan(tasks, windows, now)
        m1 = by_id(plan.tasks)["m1"]

        result = apply_outcome(m1, TaskStatus.COMPLETED_LATE, now + pd.Timedelta(hours=3),
                               plan.tasks, windows)

        assert set(result.rescored) == {"m2"}
        assert not result.replanned
        assert by_id(result.tasks)["m2"].spaced_score == pytest.approx(0.25)

    def test_unscheduled_task_can_be_reported_done(self, now):
        t = task("a")
        result = apply_outcome(t, TaskStatus.COMPLETED, now, [t], [window(now, 60)])
        done = by_id(result.tasks)["a"]
        assert done.status == TaskStatus.COMPLETED
        assert done.scheduled_end == now


class TestTransitions:
    def test_terminal_tasks_reject_outcomes(self, now):
        t = task("a", status=TaskStatus.COMPLETED, scheduled_for=now)
        with pytest.raises(InvalidTransition):
            apply_outcome(t, TaskStatus.MISSED, now, [t], [window(now, 60)])

    @pytest.mark.parametrize("outcome", [TaskStatus.PENDING, TaskStatus.SCHEDULED, "skipped"])
    def test_non_terminal_outcomes_rejected(self, now, outcome):
        t = task("a")
        with pytest.raises(InvalidTransition):
            apply_outcome(t, outcome, now, [t], [window(now, 60)])

    def test_caller_tasks_are_not_mutated(self, now, planned):
        plan, windows = planned
        before = [(t.id, t.status, t.scheduled_for) for t in plan.tasks]
        apply_outcome(by_id(plan.tasks)["math1"], TaskStatus.MISSED,
                      now + pd.Timedelta(hours=1), plan.tasks, windows)
        assert [(t.id, t.status, t.scheduled_for) for t in plan.tasks] == before


def test_outcomes_are_counted(now):
    def sample():
        return REGISTRY.get_sample_value("studyplan_outcomes_total", {"status": "missed"}) or 0

    before = sample()
    t = task("a")
    apply_outcome(t, TaskStatus.MISSED, now, [t], [window(now, 60)])
    assert sample() == before + 1


def test_rebalance_never_places_outside_the_given_windows(now):
    windows = [window(now, 60)]
    far = now + pd.Timedelta(hours=5)
    tasks = [
        task("a", status=TaskStatus.SCHEDULED, scheduled_for=now),
        task("far", topic="Physics", status=TaskStatus.SCHEDULED, scheduled_for=far),
        task("p", topic="History"),
    ]

    result = apply_outcome(tasks[0], TaskStatus.MISSED, now, tasks, windows)

    for p in result.placements:
        assert any(w.start <= p.start and p.end <= w.end for w in windows)
    assert [p.task_id for p in result.placements] == ["a-makeup-1"]
    assert sorted(t.id for t in result.unplaceable) == ["far", "p"]
    assert all(t.status == TaskStatus.PENDING for t in result.unplaceable)
