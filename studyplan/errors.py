# studyplan/errors.py


class StudyPlanError(Exception):
    """Base class for everything the planning engine raises."""


class NoCapacity(StudyPlanError):
    """No free window in the horizon can hold the requested duration."""

    def __init__(self, duration_minutes: int):
        super().__init__(f"no free window can fit {duration_minutes} minutes")
        self.duration_minutes = duration_minutes


class InvalidWindow(StudyPlanError, ValueError):
    """An availability window with start >= end."""


class InvalidTask(StudyPlanError, ValueError):
    """A task record that fails boundary validation."""


class InvalidTransition(StudyPlanError, ValueError):
    """An outcome that the task's current status does not allow."""


class UnknownTask(StudyPlanError, KeyError):
    """A task id that the learner's snapshot does not contain."""
