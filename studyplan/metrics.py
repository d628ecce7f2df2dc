# studyplan/metrics.py
from prometheus_client import Counter, Summary

PLAN_BUILD_TIME = Summary(
    "studyplan_plan_build_seconds",
    "Time spent building a study plan",
)

UNPLACEABLE_TASKS = Counter(
    "studyplan_unplaceable_tasks_total",
    "Tasks that did not fit in the planning horizon",
)

OUTCOMES = Counter(
    "studyplan_outcomes_total",
    "Task outcomes applied to the plan, by resulting status",
    ["status"],
)

REBALANCES = Counter(
    "studyplan_rebalances_total",
    "Full replanning passes triggered by outcomes",
)
