from __future__ import annotations


class RecurrenceError(Exception):
    """Base class for failures raised by the recurrence engine."""


class InvalidRuleError(RecurrenceError, ValueError):
    """The recurrence descriptor cannot produce a schedule."""


class TimezoneResolutionError(RecurrenceError, LookupError):
    def __init__(self, name: object) -> None:
        super().__init__(f"Unknown timezone: {name!r}")
        self.name = name


class TemplateNotFoundError(RecurrenceError, LookupError):
    def __init__(self, template_id: int) -> None:
        super().__init__(f"Recurring template {template_id} not found")
        self.template_id = template_id


class ConcurrentModificationError(RecurrenceError):
    """The template changed under an in-flight operation; the caller should retry."""


class TransactionFailure(RecurrenceError):
    """Storage failed; the operation was rolled back."""
