"""Comment Thread: append-only notes, allowed on closed placements too."""

from datetime import datetime
from typing import List, Optional, Union

from .errors import ValidationError
from .guards import require_role
from .models import Actor, EventType, Placement, PlacementComment, Role, Stage, utcnow


def add_comment(
    placement: Placement,
    text: str,
    actor: Actor,
    stage: Optional[Union[Stage, str]] = None,
    now: Optional[datetime] = None,
) -> PlacementComment:
    require_role(placement, actor, [Role.EMPLOYER, Role.CANDIDATE], "comment")

    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Comment text must be a non-empty string", stage=placement.stage.value)
    if stage is None:
        stage = placement.stage
    else:
        try:
            stage = Stage(stage)
        except ValueError:
            raise ValidationError(f"Unknown stage {stage!r} for comment", stage=placement.stage.value)

    now = now or utcnow()
    comment = PlacementComment(
        text=text.strip(),
        author=actor.id,
        author_role=actor.role,
        timestamp=now,
        stage=stage,
    )
    placement.comments.append(comment)
    placement.record(
        EventType.COMMENT_ADDED,
        f"{actor.role.value.capitalize()} commented on {stage.value}",
        completed_by=actor.id,
        now=now,
    )
    return comment


def comments_for_stage(placement: Placement, stage: Union[Stage, str]) -> List[PlacementComment]:
    stage = Stage(stage)
    return [c for c in placement.comments if c.stage == stage]
