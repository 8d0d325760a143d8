"""Exceptions raised by the event core."""
from typing import List


class CalendarError(Exception):
    """Base class for event core errors."""


class ValidationError(CalendarError):
    """Event data failed one or more field rules."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Event validation failed: {', '.join(self.errors)}")


class NotFoundError(CalendarError):
    """Operation targeted an event id that is not in the store."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event with ID {event_id} not found")
