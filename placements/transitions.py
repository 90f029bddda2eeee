"""
Stage Transition Engine.

Owns the fixed hiring graph and is the only code that writes
``Placement.stage`` or appends ``stage_change`` events. Sub-workflows
(offers, documents) request moves through ``apply_transition``.
"""

from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Tuple

from .errors import InvalidTransition, PreconditionNotMet, ValidationError
from .guards import require_role
from .models import (
    Actor,
    BGVDocument,
    DocumentStatus,
    EventType,
    OfferResponse,
    Placement,
    Role,
    Stage,
    TimelineEvent,
)
from .schema import validate_rejection

# Forward edges only; Rejected is reachable from every non-terminal stage.
TRANSITIONS: Dict[Stage, Tuple[Stage, ...]] = {
    Stage.SHORTLISTED: (Stage.SCREENING_TEST,),
    Stage.SCREENING_TEST: (Stage.PANEL_INTERVIEW,),
    Stage.PANEL_INTERVIEW: (Stage.FEEDBACK,),
    Stage.FEEDBACK: (Stage.BGV,),
    Stage.BGV: (Stage.CONFIRMATION,),
    Stage.CONFIRMATION: (Stage.OFFER_LETTER,),
    Stage.OFFER_LETTER: (Stage.HIRED,),
    Stage.HIRED: (),
    Stage.REJECTED: (),
}

FORWARD_ROLES: FrozenSet[Role] = frozenset({Role.EMPLOYER})
REJECT_ROLES: FrozenSet[Role] = frozenset({Role.EMPLOYER, Role.CANDIDATE})

PIPELINE: List[Stage] = [
    Stage.SHORTLISTED,
    Stage.SCREENING_TEST,
    Stage.PANEL_INTERVIEW,
    Stage.FEEDBACK,
    Stage.BGV,
    Stage.CONFIRMATION,
    Stage.OFFER_LETTER,
    Stage.HIRED,
]


def allowed_targets(stage: Stage) -> Tuple[Stage, ...]:
    """Stages reachable from ``stage`` in one step."""
    if stage.is_terminal:
        return ()
    return TRANSITIONS[stage] + (Stage.REJECTED,)


def next_stage(stage: Stage) -> Optional[Stage]:
    successors = TRANSITIONS[stage]
    return successors[0] if successors else None


def blocking_documents(placement: Placement) -> List[BGVDocument]:
    """
    Documents that keep the placement out of Confirmation.

    Every uploaded document must be verified, except a rejected document
    that a later upload explicitly replaced.
    """
    superseded = {d.supersedes for d in placement.bgv_documents if d.supersedes}
    return [
        d for d in placement.bgv_documents
        if d.status != DocumentStatus.VERIFIED
        and not (d.status == DocumentStatus.REJECTED and d.id in superseded)
    ]


def check_transition(
    placement: Placement,
    target: Stage,
    actor: Actor,
    rejection_reason: Optional[str] = None,
    roles: Optional[FrozenSet[Role]] = None,
) -> None:
    """
    Raise the first rule ``target`` violates; return None if the move is legal.

    Args:
        placement: Aggregate as loaded
        target: Requested stage
        actor: Who asks for the move
        rejection_reason: Mandatory when target is Rejected
        roles: Override the roles allowed to initiate the move (used when a
            sub-workflow, such as a candidate accepting an offer, drives it)
    """
    current = placement.stage
    if current.is_terminal:
        raise InvalidTransition(
            f"No transitions are allowed out of terminal stage {current.value}",
            stage=current.value,
        )
    if target not in allowed_targets(current):
        expected = ", ".join(s.value for s in allowed_targets(current))
        raise InvalidTransition(
            f"Cannot move from {current.value} to {target.value}; allowed: {expected}",
            stage=current.value,
        )

    # Only the candidate's acceptance (which overrides roles) may hire over an offer.
    offer = placement.offer_letter
    if (
        roles is None
        and target == Stage.HIRED
        and offer is not None
        and offer.candidate_response != OfferResponse.ACCEPTED
    ):
        raise PreconditionNotMet(
            f"Offer {offer.id} has not been accepted ({offer.status}); "
            "the candidate must accept it before the placement is Hired",
            stage=current.value,
        )

    if roles is None:
        roles = REJECT_ROLES if target == Stage.REJECTED else FORWARD_ROLES
    require_role(placement, actor, sorted(roles, key=lambda r: r.value), f"move a placement to {target.value}")

    if target == Stage.REJECTED:
        errors = validate_rejection(rejection_reason)
        if errors:
            raise ValidationError("; ".join(errors), stage=current.value)

    if target == Stage.CONFIRMATION:
        blocking = blocking_documents(placement)
        if blocking:
            listed = ", ".join(f"{d.type.value} ({d.status.value})" for d in blocking)
            raise PreconditionNotMet(
                f"All BGV documents must be verified before Confirmation; not verified: {listed}",
                stage=current.value,
            )


def apply_transition(
    placement: Placement,
    target: Stage,
    actor: Actor,
    notes: Optional[str] = None,
    rejection_reason: Optional[str] = None,
    rejection_comments: Optional[str] = None,
    roles: Optional[FrozenSet[Role]] = None,
    now: Optional[datetime] = None,
) -> TimelineEvent:
    """
    Validate and apply one stage move, appending its ``stage_change`` event.

    A move to Rejected also stores the reason and appends a ``rejection``
    entry carrying it; an offer still open at that point is withdrawn.

    Returns:
        The last event appended
    """
    check_transition(placement, target, actor, rejection_reason=rejection_reason, roles=roles)

    previous = placement.stage
    placement.stage = target
    event = placement.record(
        EventType.STAGE_CHANGE,
        notes or f"Moved from {previous.value} to {target.value}",
        completed_by=actor.id,
        now=now,
    )
    if target == Stage.REJECTED:
        placement.rejection_reason = rejection_reason.strip()
        placement.rejection_comments = rejection_comments
        detail = f"Rejected: {placement.rejection_reason}"
        if rejection_comments:
            detail += f" ({rejection_comments})"
        offer = placement.offer_letter
        if offer is not None and offer.is_open:
            offer.withdrawn_by = actor.id
            offer.withdrawn_at = event.date
            detail += f"; open offer {offer.id} withdrawn"
        event = placement.record(EventType.REJECTION, detail, completed_by=actor.id, now=now)
    return event
