"""Error taxonomy for Perfcycle.

Three kinds of failure exist in the review workflow:

- not-found: a referenced cycle, form, record or person is absent. Surfaced
  to the caller; aborts only the processing of that entity.
- invalid-state: the requested action is not allowed in the entity's current
  phase or status. Rejected before any mutation, with a specific reason.
- external-dependency: the notifier or the HR archive failed. Logged and
  swallowed per attempt; the next scheduled sweep re-evaluates.
"""

from __future__ import annotations

from enum import Enum


class PerfcycleError(Exception):
    """Base class for all Perfcycle errors."""


class EntityNotFoundError(PerfcycleError, LookupError):
    """Raised when a referenced entity does not exist.

    Attributes:
        entity: Entity kind, e.g. "review_cycle".
        entity_id: Identifier that was looked up.
    """

    def __init__(self, entity: str, entity_id: object) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InvalidStateError(PerfcycleError):
    """Raised when an action is rejected because of the entity's current state.

    Attributes:
        reason: Human-readable rejection reason.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class InvalidPhaseTransitionError(InvalidStateError):
    """Raised when a review cycle phase transition is not allowed.

    Attributes:
        current: The current cycle phase.
        target: The attempted target phase.
        cycle_id: The ID of the cycle that failed to transition.
    """

    def __init__(self, current: Enum, target: Enum, cycle_id: str | None = None) -> None:
        self.current = current
        self.target = target
        self.cycle_id = cycle_id
        msg = f"Invalid phase transition from {current.value} to {target.value}"
        if cycle_id:
            msg += f" for cycle {cycle_id}"
        super().__init__(msg)


class InvalidFormTransitionError(InvalidStateError):
    """Raised when a review form status transition is not allowed.

    Attributes:
        current: The current form status.
        target: The attempted target status.
        form_id: The ID of the form that failed to transition.
    """

    def __init__(self, current: Enum, target: Enum, form_id: str | None = None) -> None:
        self.current = current
        self.target = target
        self.form_id = form_id
        msg = f"Invalid form transition from {current.value} to {target.value}"
        if form_id:
            msg += f" for form {form_id}"
        super().__init__(msg)


class ExternalDependencyError(PerfcycleError):
    """Raised when the HR archive or a notification channel fails.

    Attributes:
        dependency: Name of the failing collaborator, e.g. "hr_archive".
    """

    def __init__(self, dependency: str, message: str) -> None:
        self.dependency = dependency
        super().__init__(f"{dependency}: {message}")


class ConcurrentUpdateError(InvalidStateError):
    """Raised when a record changed between being read and being written.

    Attributes:
        entity: Entity kind, e.g. "calibration_record".
        entity_id: Identifier of the record.
    """

    def __init__(self, entity: str, entity_id: object) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} was changed concurrently; reload and retry")
