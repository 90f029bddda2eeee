"""
Error taxonomy for placement operations.

Every error is raised before the aggregate is mutated, so a failed
operation never leaves a partial write behind. Messages carry the
violated rule and, where known, the placement's current stage.
"""

from typing import Optional


class PlacementError(Exception):
    """Base class for all placement operation failures."""

    kind = "placement_error"

    def __init__(self, message: str, stage: Optional[str] = None):
        self.rule = message
        self.stage = stage
        if stage:
            message = f"{message} (current stage: {stage})"
        super().__init__(message)


class InvalidTransition(PlacementError):
    """Target stage is not reachable from the current stage."""

    kind = "invalid_transition"


class Unauthorized(PlacementError):
    """Actor's role cannot perform the operation."""

    kind = "unauthorized"


class PreconditionNotMet(PlacementError):
    """A gate required by the operation is not satisfied."""

    kind = "precondition_not_met"


class ValidationError(PlacementError):
    """Payload is missing a required field or carries a bad value."""

    kind = "validation_error"


class NotFound(PlacementError):
    """Unknown placement, document or offer."""

    kind = "not_found"


class InvalidState(PlacementError):
    """A sub-entity (document, offer, placement) is not in the required state."""

    kind = "invalid_state"


class Conflict(PlacementError):
    """The write collides with state another actor already established."""

    kind = "conflict"


class StaleVersion(Conflict):
    """Optimistic-concurrency collision; reload and retry."""

    kind = "stale_version"

    def __init__(self, placement_id: str, expected: int, actual: Optional[int] = None, stage: Optional[str] = None):
        self.placement_id = placement_id
        self.expected = expected
        self.actual = actual
        detail = f"Placement {placement_id} was modified concurrently (read version {expected}"
        if actual is not None:
            detail += f", stored version {actual}"
        super().__init__(detail + "); reload and retry", stage=stage)
