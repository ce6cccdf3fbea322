"""Typed errors raised by the checklist engine.

Every failure the engine can report is one of these; nothing is silently
defaulted. The HTTP layer in ``floorcheck.main`` maps them to responses.
"""
from typing import List, Optional


class ChecklistEngineError(Exception):
    """Base class for all engine errors."""


class NotFoundError(ChecklistEngineError):
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ValidationError(ChecklistEngineError):
    """An answer value is malformed or of the wrong type for its item."""

    def __init__(self, item_id: str, message: str):
        self.item_id = item_id
        self.message = message
        super().__init__(f"Invalid answer for item {item_id}: {message}")


class CompletionBlockedError(ChecklistEngineError):
    """``complete()`` was attempted while the completion gate fails."""

    def __init__(self, run_id: str, unanswered_item_ids: List[str], missing_photo_item_ids: List[str]):
        self.run_id = run_id
        self.unanswered_item_ids = list(unanswered_item_ids)
        self.missing_photo_item_ids = list(missing_photo_item_ids)
        super().__init__(
            f"Run {run_id} cannot be completed: "
            f"{len(self.unanswered_item_ids)} unanswered, "
            f"{len(self.missing_photo_item_ids)} missing photo"
        )


class InvalidTransitionError(ChecklistEngineError):
    """A transition or answer was attempted on a run that is no longer in progress."""

    public_message = "this checklist can no longer be edited"

    def __init__(self, run_id: str, status: Optional[str], action: str):
        self.run_id = run_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} run {run_id} in status {status}")


class SchedulingError(ChecklistEngineError):
    """A frequency value outside the known set."""

    def __init__(self, frequency):
        self.frequency = frequency
        super().__init__(f"Unknown frequency: {frequency!r}")


class TemplateError(ChecklistEngineError):
    def __init__(self, template_id: Optional[str], message: str):
        self.template_id = template_id
        self.message = message
        super().__init__(f"Template {template_id}: {message}" if template_id else message)


class ActiveRunConflictError(ChecklistEngineError):
    """Another run is already open on the machine and the single-run policy is on."""

    def __init__(self, machine_id: str, run_id: str):
        self.machine_id = machine_id
        self.run_id = run_id
        super().__init__(f"Machine {machine_id} already has run {run_id} in progress")
