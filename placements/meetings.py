"""Meeting Scheduler: one interview meeting slot per placement."""

from datetime import datetime
from typing import Any, Dict, Optional

from .errors import ValidationError
from .guards import require_open, require_role
from .models import Actor, EventType, Meeting, Placement, Role, utcnow
from .schema import validate_meeting


def schedule_meeting(
    placement: Placement,
    payload: Dict[str, Any],
    actor: Actor,
    now: Optional[datetime] = None,
) -> Meeting:
    """
    Replace the placement's meeting slot.

    Participants may be a list or a comma-separated string. No calendar
    conflict checking happens here.
    """
    require_open(placement, "schedule a meeting")
    require_role(placement, actor, [Role.EMPLOYER], "schedule meetings")

    errors = validate_meeting(payload)
    if errors:
        raise ValidationError("; ".join(errors), stage=placement.stage.value)

    participants = payload["participants"]
    if isinstance(participants, str):
        participants = participants.split(",")

    now = now or utcnow()
    previous = placement.meeting
    meeting = Meeting(
        date=payload["date"].strip(),
        time=payload["time"].strip(),
        timezone=payload["timezone"].strip(),
        participants=[p.strip() for p in participants],
        scheduled_by=actor.id,
        scheduled_at=now,
    )
    placement.meeting = meeting

    notes = f"Meeting scheduled for {meeting.describe()} with {', '.join(meeting.participants)}"
    if previous is not None:
        notes += f" (replaces {previous.describe()})"
    placement.record(EventType.MEETING_SCHEDULED, notes, completed_by=actor.id, now=now)
    return meeting
