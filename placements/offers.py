"""
Offer Lifecycle Manager.

A placement carries at most one offer letter, and at most one open one.
The candidate may accept, decline or ask to defer; a deferral waits for
the employer's approval before the candidate can answer again. Stage
moves (to Offer Letter, Hired or Rejected) go through the transition
engine.

Deferral approval is its own small state machine:

    none -> pending_approval -> approved | rejected
"""

from datetime import datetime
from typing import Any, Dict, Optional, Union

from .errors import Conflict, InvalidState, NotFound, PreconditionNotMet, ValidationError
from .guards import require_open, require_role
from .models import (
    Actor,
    DeferApproval,
    EventType,
    OfferLetter,
    OfferResponse,
    Placement,
    Role,
    Stage,
    utcnow,
)
from .schema import validate_offer
from .transitions import apply_transition

DECLINED_REASON = "candidate declined offer"
OFFER_STAGES = (Stage.CONFIRMATION, Stage.OFFER_LETTER)
RESPONSE_ROLES = frozenset({Role.CANDIDATE})

# Allowed moves of the deferral sub-state.
DEFER_TRANSITIONS = {
    DeferApproval.NONE: (DeferApproval.PENDING_APPROVAL,),
    DeferApproval.PENDING_APPROVAL: (DeferApproval.APPROVED, DeferApproval.REJECTED),
    DeferApproval.APPROVED: (),
    DeferApproval.REJECTED: (),
}


def _move_deferral(offer: OfferLetter, target: DeferApproval, stage: str) -> None:
    if target not in DEFER_TRANSITIONS[offer.defer_approval]:
        raise InvalidState(
            f"Deferral cannot go from {offer.defer_approval.value} to {target.value}",
            stage=stage,
        )
    offer.defer_approval = target


def _current_offer(placement: Placement) -> OfferLetter:
    offer = placement.offer_letter
    if offer is None:
        raise NotFound("No offer letter has been sent for this placement", stage=placement.stage.value)
    return offer


def _require_unresolved(offer: OfferLetter, stage: str) -> None:
    if not offer.is_open:
        raise Conflict(f"Offer {offer.id} is already resolved ({offer.status})", stage=stage)


def send_offer(
    placement: Placement,
    payload: Dict[str, Any],
    actor: Actor,
    now: Optional[datetime] = None,
) -> OfferLetter:
    """
    Issue a new offer letter.

    From Confirmation the placement first moves to Offer Letter. A new
    offer replaces a closed one; it is refused while an offer is still open.
    """
    require_open(placement, "send an offer")
    require_role(placement, actor, [Role.EMPLOYER], "send offer letters")

    stage = placement.stage.value
    if placement.stage not in OFFER_STAGES:
        raise PreconditionNotMet(
            "Offers can only be sent from Confirmation or Offer Letter",
            stage=stage,
        )
    if placement.offer_letter is not None and placement.offer_letter.is_open:
        raise PreconditionNotMet(
            f"Offer {placement.offer_letter.id} is still unresolved ({placement.offer_letter.status}); "
            "it must be resolved before another offer is sent",
            stage=stage,
        )
    errors = validate_offer(payload)
    if errors:
        raise ValidationError("; ".join(errors), stage=stage)

    now = now or utcnow()
    if placement.stage == Stage.CONFIRMATION:
        apply_transition(placement, Stage.OFFER_LETTER, actor, notes="Offer letter issued", now=now)

    offer = OfferLetter(
        salary=payload["salary"].strip(),
        joining_date=payload["joining_date"].strip(),
        probation_period=payload["probation_period"].strip(),
        custom_notes=(payload.get("custom_notes") or "").strip(),
        sent_by=actor.id,
        sent_at=now,
    )
    placement.offer_letter = offer
    placement.record(
        EventType.OFFER_SENT,
        f"Offer sent: salary {offer.salary}, joining {offer.joining_date}, probation {offer.probation_period}",
        completed_by=actor.id,
        now=now,
    )
    return offer


def respond_to_offer(
    placement: Placement,
    response: Union[OfferResponse, str],
    actor: Actor,
    deferred_date: Optional[str] = None,
    now: Optional[datetime] = None,
) -> OfferLetter:
    """
    Record the candidate's answer to the open offer.

    accepted moves the placement to Hired, rejected moves it to Rejected,
    deferred keeps the stage and waits for the employer.
    """
    try:
        response = OfferResponse(response)
    except ValueError:
        raise ValidationError(
            f"Unknown offer response {response!r}; expected accepted, rejected or deferred",
            stage=placement.stage.value,
        )

    require_open(placement, "respond to an offer")
    require_role(placement, actor, [Role.CANDIDATE], "respond to offers")
    offer = _current_offer(placement)
    stage = placement.stage.value
    _require_unresolved(offer, stage)

    if offer.defer_approval == DeferApproval.PENDING_APPROVAL:
        raise InvalidState("The deferral request is awaiting the employer's decision", stage=stage)
    if response == OfferResponse.DEFERRED:
        if offer.defer_approval != DeferApproval.NONE:
            raise InvalidState("This offer has already been deferred once", stage=stage)
        if not isinstance(deferred_date, str) or not deferred_date.strip():
            raise ValidationError("Missing required field: deferred_date", stage=stage)

    now = now or utcnow()
    if response == OfferResponse.ACCEPTED:
        apply_transition(
            placement, Stage.HIRED, actor,
            notes="Offer accepted", roles=RESPONSE_ROLES, now=now,
        )
    elif response == OfferResponse.REJECTED:
        # apply_transition withdraws any offer still open on Rejected
        offer.candidate_response = response
        apply_transition(
            placement, Stage.REJECTED, actor,
            notes="Offer declined", rejection_reason=DECLINED_REASON,
            roles=RESPONSE_ROLES, now=now,
        )

    offer.candidate_response = response
    offer.response_date = now
    if response == OfferResponse.DEFERRED:
        offer.deferred_date = deferred_date.strip()
        _move_deferral(offer, DeferApproval.PENDING_APPROVAL, stage)
        notes = f"Candidate requested to defer joining to {offer.deferred_date}"
    else:
        notes = f"Candidate {response.value} the offer"

    placement.record(EventType.OFFER_RESPONSE, notes, completed_by=actor.id, now=now)
    return offer


def resolve_deferral(
    placement: Placement,
    decision: Union[DeferApproval, str],
    actor: Actor,
    now: Optional[datetime] = None,
) -> OfferLetter:
    """
    Approve or reject a pending deferral.

    Approval keeps the offer open for a further answer; rejection closes it
    without touching the stage.
    """
    stage = placement.stage.value
    try:
        decision = DeferApproval(decision)
    except ValueError:
        decision = None
    if decision not in (DeferApproval.APPROVED, DeferApproval.REJECTED):
        raise ValidationError("Deferral decision must be approved or rejected", stage=stage)

    require_open(placement, "resolve a deferral")
    require_role(placement, actor, [Role.EMPLOYER], "resolve offer deferrals")
    offer = _current_offer(placement)
    _require_unresolved(offer, stage)
    if offer.defer_approval != DeferApproval.PENDING_APPROVAL:
        raise InvalidState(
            f"No deferral is awaiting a decision (deferral state: {offer.defer_approval.value})",
            stage=stage,
        )

    _move_deferral(offer, decision, stage)
    if decision == DeferApproval.APPROVED:
        notes = f"Deferral to {offer.deferred_date} approved; offer remains open"
    else:
        notes = f"Deferral to {offer.deferred_date} rejected; offer closed"
    placement.record(EventType.OFFER_RESPONSE, notes, completed_by=actor.id, now=now or utcnow())
    return offer


def withdraw_offer(
    placement: Placement,
    actor: Actor,
    reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> OfferLetter:
    """Close the open offer on the employer's side without a stage change."""
    require_open(placement, "withdraw an offer")
    require_role(placement, actor, [Role.EMPLOYER], "withdraw offers")
    offer = _current_offer(placement)
    _require_unresolved(offer, placement.stage.value)

    now = now or utcnow()
    offer.withdrawn_by = actor.id
    offer.withdrawn_at = now
    notes = "Offer withdrawn by employer"
    if reason:
        notes += f": {reason}"
    placement.record(EventType.OFFER_RESPONSE, notes, completed_by=actor.id, now=now)
    return offer
