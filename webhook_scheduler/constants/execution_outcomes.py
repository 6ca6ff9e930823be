from enum import Enum
from typing import Dict


class ExecutionOutcome(str, Enum):
    """Where a schedule ends up after one firing attempt."""
    RESCHEDULED = "rescheduled"
    EXHAUSTED = "exhausted"
    FAILED_TERMINAL = "failed_terminal"
    SUPERSEDED = "superseded"


class TerminationReason(str, Enum):
    ONE_TIME = "one_time"
    MAX_EXECUTIONS_REACHED = "max_executions_reached"
    NO_NEXT_OCCURRENCE = "no_next_occurrence"
    INVALID_RECURRENCE = "invalid_recurrence"


def explain_reason(reason: TerminationReason, context: Dict) -> str:
    templates = {
        TerminationReason.ONE_TIME: "One-time schedule delivered; deactivated.",
        TerminationReason.MAX_EXECUTIONS_REACHED: "Reached {max_executions} executions; deactivated.",
        TerminationReason.NO_NEXT_OCCURRENCE: "Cron expression '{cron}' has no further occurrence; deactivated.",
        TerminationReason.INVALID_RECURRENCE: "Stored recurrence cannot be evaluated: {detail}.",
    }
    template = templates[reason]
    return template.format(**{"max_executions": "", "cron": "", "detail": "", **context})
