"""Error taxonomy for schedule and saved webhook operations."""

from typing import Iterable, List, Optional


class ScheduleError(Exception):
    """Base class for errors surfaced to API callers."""


class ScheduleValidationError(ScheduleError, ValueError):
    """Rejected input; never reaches the dispatcher."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors))


class QuotaExceededError(ScheduleError):
    """Owner reached the limit of active schedules or saved webhooks."""


class NotFoundError(ScheduleError):
    """Entity does not exist or is owned by someone else."""

    def __init__(self, entity: str, entity_id: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found")
