# demo.py
import pandas as pd
import matplotlib.dates as mdates
import matplotlib.pyplot as plt

from studyplan.engine import apply_outcome, generate_plan
from studyplan.mastery import MasteryModel
from studyplan.models import AvailabilityWindow, EngineConfig, Task, TaskStatus


def main():
    TZ = "America/New_York"

    now = pd.Timestamp("2025-11-03 08:00").tz_localize(TZ)
    config = EngineConfig(buffer_minutes=10)
    mastery = MasteryModel(config=config)

    availability = [
        AvailabilityWindow(
            start=pd.Timestamp("2025-11-03 09:00").tz_localize(TZ),
            end=pd.Timestamp("2025-11-03 12:00").tz_localize(TZ),
        ),
        AvailabilityWindow(
            start=pd.Timestamp("2025-11-03 14:00").tz_localize(TZ),
            end=pd.Timestamp("2025-11-03 17:00").tz_localize(TZ),
        ),
        AvailabilityWindow(
            start=pd.Timestamp("2025-11-04 09:00").tz_localize(TZ),
            end=pd.Timestamp("2025-11-04 11:00").tz_localize(TZ),
        ),
    ]

    tasks = [
        Task(
            id="calc1",
            title="Calculus: limits",
            topic="Math",
            duration_minutes=60,
            importance=5,
            due_at=pd.Timestamp("2025-11-03 18:00").tz_localize(TZ),
        ),
        Task(
            id="calc2",
            title="Calculus: derivatives",
            topic="Math",
            duration_minutes=45,
            importance=4,
            due_at=pd.Timestamp("2025-11-05 18:00").tz_localize(TZ),
        ),
        Task(
            id="phys1",
            title="Kinematics problems",
            topic="Physics",
            duration_minutes=90,
            importance=3,
            due_at=pd.Timestamp("2025-11-06 12:00").tz_localize(TZ),
        ),
        Task(
            id="hist1",
            title="Read chapter 4",
            topic="History",
            duration_minutes=50,
            importance=1,
        ),
        Task(
            id="essay",
            title="Essay draft",
            topic="",
            duration_minutes=120,
            importance=6,
            due_at=pd.Timestamp("2025-11-04 12:00").tz_localize(TZ),
        ),
    ]

    plan = generate_plan(tasks, availability, now, mastery=mastery, config=config)

    print("=== Plan ===")
    print(plan.to_frame())
    print("Unplaceable:", [t.id for t in plan.unplaceable])

    # The first Math block gets missed; replan from the moment it ended
    missed = next(t for t in plan.tasks if t.id == "calc1")
    later = missed.scheduled_end
    rebalanced = apply_outcome(missed, TaskStatus.MISSED, later, plan.tasks,
                               availability, mastery=mastery, config=config)

    print("\n=== After missing calc1 ===")
    print(rebalanced.to_frame())
    print("Makeup:", rebalanced.makeup.id, "importance", rebalanced.makeup.importance)
    print("Unplaceable:", [t.id for t in rebalanced.unplaceable])
    print("\n=== Mastery ===")
    print(mastery.to_frame())

    # Timeline of the rebalanced plan
    df = rebalanced.to_frame()
    if not df.empty:
        topics = sorted(df["topic"].unique())
        colors = {tp: plt.cm.tab10(i % 10) for i, tp in enumerate(topics)}
        fig, ax = plt.subplots(figsize=(10, 3))
        for _, row in df.iterrows():
            start = mdates.date2num(row["start"].tz_localize(None).to_pydatetime())
            width = (row["end"] - row["start"]).total_seconds() / 86400
            ax.barh(row["topic"], width, left=start, color=colors[row["topic"]])
        ax.xaxis_date()
        plt.title("Rebalanced study plan")
        plt.xlabel("Time")
        plt.tight_layout()
        plt.show()


if __name__ == "__main__":
    main()
