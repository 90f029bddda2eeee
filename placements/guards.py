"""Authorization and state checks shared by every operation handler."""

from typing import Iterable

from .errors import InvalidState, Unauthorized
from .models import Actor, Placement, Role


def require_role(placement: Placement, actor: Actor, roles: Iterable[Role], action: str) -> None:
    """
    Raise Unauthorized unless the actor holds one of the given roles.

    A candidate actor must also be the placement's own candidate.
    """
    roles = tuple(roles)
    stage = placement.stage.value
    if actor.role not in roles:
        allowed = " or ".join(r.value for r in roles)
        raise Unauthorized(f"Only {allowed} may {action}; actor {actor.id} is {actor.role.value}", stage=stage)
    if actor.role == Role.CANDIDATE and actor.id != placement.candidate_id:
        raise Unauthorized(f"Candidate {actor.id} may not {action} on another candidate's placement", stage=stage)


def require_open(placement: Placement, action: str) -> None:
    """Raise InvalidState if the placement is in a terminal stage."""
    if placement.is_terminal:
        raise InvalidState(f"Cannot {action}: placement is closed", stage=placement.stage.value)
