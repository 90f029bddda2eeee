"""
Placement Service: command handlers over the placement aggregate.

Every mutating operation follows the same unit of work:

    load -> check version -> authorize/validate/apply -> persist -> notify

Validation happens before any field is touched and the store only writes
when the stored version still matches the one loaded, so a failed
operation leaves the persisted placement exactly as it was.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from . import comments as comment_thread, documents, evaluation, meetings, offers
from .errors import InvalidTransition, PlacementError, StaleVersion, ValidationError
from .evaluation import ScoringClient
from .guards import require_role
from .logger import StructuredLogger, get_logger
from .models import (
    Actor,
    DeferApproval,
    EventType,
    OfferResponse,
    Placement,
    Role,
    Stage,
    TimelineEvent,
    utcnow,
)
from .notifications import Notifier
from .storage import PlacementStore
from .transitions import apply_transition


class PlacementService:
    def __init__(
        self,
        store: PlacementStore,
        notifier: Optional[Notifier] = None,
        scoring_client: Optional[ScoringClient] = None,
        clock: Callable[[], datetime] = utcnow,
        logger: Optional[StructuredLogger] = None,
    ):
        self.store = store
        self.notifier = notifier or Notifier()
        self.scoring_client = scoring_client
        self.clock = clock
        self.logger = logger or get_logger()

    # Unit of work

    def _execute(
        self,
        operation: str,
        placement_id: str,
        actor: Actor,
        apply: Callable[[Placement, datetime], Any],
        expected_version: Optional[int] = None,
    ) -> Placement:
        self.logger.record_operation_attempt(operation)
        try:
            placement = self.store.get(placement_id)
            if expected_version is not None and expected_version != placement.version:
                raise StaleVersion(placement_id, expected_version, placement.version, stage=placement.stage.value)
            apply(placement, self.clock())
            self.store.save(placement)
        except PlacementError as e:
            self.logger.record_operation_failure(operation, e.kind)
            self.logger.warning(
                f"{operation} rejected",
                placement_id=placement_id,
                actor=actor.id,
                role=actor.role.value,
                error_kind=e.kind,
                error=str(e),
            )
            raise

        self.logger.record_operation_success(operation)
        self.logger.info(
            f"{operation} applied",
            placement_id=placement_id,
            actor=actor.id,
            stage=placement.stage.value,
            version=placement.version,
        )
        self._dispatch(operation, placement)
        return placement

    def _dispatch(self, operation: str, placement: Placement) -> None:
        try:
            self.notifier.notify(operation, placement)
        except Exception as e:
            self.logger.record_notification(delivered=False)
            self.logger.warning("Notification dispatch failed", operation=operation, placement_id=placement.id, error=str(e))

    # Reads

    def get(self, placement_id: str) -> Placement:
        return self.store.get(placement_id)

    def list(
        self,
        stage: Optional[Union[Stage, str]] = None,
        job_id: Optional[str] = None,
        candidate_id: Optional[str] = None,
    ) -> List[Placement]:
        return self.store.list(stage=stage, job_id=job_id, candidate_id=candidate_id)

    def timeline(self, placement_id: str, event_type: Optional[Union[EventType, str]] = None) -> List[TimelineEvent]:
        events = self.store.get(placement_id).timeline
        if event_type is not None:
            event_type = EventType(event_type)
            events = [e for e in events if e.event_type == event_type]
        return events

    # Pipeline

    def shortlist(self, job_id: str, candidate_id: str, client_id: str, actor: Actor) -> Placement:
        """Create a placement at Shortlisted for a (job, candidate) pair."""
        operation = "shortlist"
        self.logger.record_operation_attempt(operation)
        now = self.clock()
        placement = Placement(
            job_id=job_id,
            candidate_id=candidate_id,
            client_id=client_id,
            stage=Stage.SHORTLISTED,
            applied_date=now,
            last_updated=now,
        )
        try:
            for name, value in (("job_id", job_id), ("candidate_id", candidate_id), ("client_id", client_id)):
                if not isinstance(value, str) or not value.strip():
                    raise ValidationError(f"Missing required field: {name}")
            require_role(placement, actor, [Role.EMPLOYER], "shortlist candidates")
            placement.record(EventType.STAGE_CHANGE, "Candidate shortlisted", completed_by=actor.id, now=now)
            self.store.add(placement)
        except PlacementError as e:
            self.logger.record_operation_failure(operation, e.kind)
            self.logger.warning(f"{operation} rejected", job_id=job_id, candidate_id=candidate_id, error=str(e))
            raise

        self.logger.record_operation_success(operation)
        self.logger.info("Candidate shortlisted", placement_id=placement.id, job_id=job_id, candidate_id=candidate_id)
        self._dispatch(operation, placement)
        return placement

    def transition(
        self,
        placement_id: str,
        target_stage: Union[Stage, str],
        actor: Actor,
        notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
        rejection_comments: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Placement:
        """
        Move a placement one step along the pipeline, or to Rejected.

        Raises:
            InvalidTransition, Unauthorized, ValidationError,
            PreconditionNotMet, NotFound, StaleVersion
        """
        def apply(placement: Placement, now: datetime):
            try:
                target = Stage(target_stage)
            except ValueError:
                raise InvalidTransition(f"Unknown stage {target_stage!r}", stage=placement.stage.value)
            apply_transition(
                placement,
                target,
                actor,
                notes=notes,
                rejection_reason=rejection_reason,
                rejection_comments=rejection_comments,
                now=now,
            )

        return self._execute("transition", placement_id, actor, apply, expected_version)

    def reject(
        self,
        placement_id: str,
        actor: Actor,
        reason: str,
        comments: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Placement:
        return self.transition(
            placement_id,
            Stage.REJECTED,
            actor,
            rejection_reason=reason,
            rejection_comments=comments,
            expected_version=expected_version,
        )

    # Documents

    def upload_document(
        self,
        placement_id: str,
        doc: Dict[str, Any],
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> Placement:
        return self._execute(
            "upload_document", placement_id, actor,
            lambda p, now: documents.upload_document(p, doc, actor, now=now),
            expected_version,
        )

    def verify_document(
        self,
        placement_id: str,
        document_id: str,
        actor: Actor,
        comments: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Placement:
        return self._execute(
            "verify_document", placement_id, actor,
            lambda p, now: documents.verify_document(p, document_id, actor, comments, now=now),
            expected_version,
        )

    def reject_document(
        self,
        placement_id: str,
        document_id: str,
        actor: Actor,
        comments: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Placement:
        return self._execute(
            "reject_document", placement_id, actor,
            lambda p, now: documents.reject_document(p, document_id, actor, comments, now=now),
            expected_version,
        )

    # Meetings

    def schedule_meeting(
        self,
        placement_id: str,
        meeting: Dict[str, Any],
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> Placement:
        return self._execute(
            "schedule_meeting", placement_id, actor,
            lambda p, now: meetings.schedule_meeting(p, meeting, actor, now=now),
            expected_version,
        )

    # AI evaluation

    def record_evaluation(
        self,
        placement_id: str,
        result: Dict[str, Any],
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> Placement:
        return self._execute(
            "record_evaluation", placement_id, actor,
            lambda p, now: evaluation.record_evaluation(p, result, actor, now=now),
            expected_version,
        )

    def evaluate_screening(
        self,
        placement_id: str,
        questions: List[Dict[str, Any]],
        answers: List[str],
        actor: Actor,
    ) -> Placement:
        """
        Score a screening submission with the external service and record it.

        The placement is checked first so the service is not called for a
        closed placement or one that already has an evaluation.
        """
        if self.scoring_client is None:
            raise RuntimeError("No scoring service configured (set PLACEMENTS_SCORING_URL)")
        placement = self.store.get(placement_id)
        evaluation.check_can_record(placement, actor)
        result = self.scoring_client.evaluate(questions, answers)
        return self.record_evaluation(placement_id, result, actor, expected_version=placement.version)

    # Offers

    def send_offer(
        self,
        placement_id: str,
        offer: Dict[str, Any],
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> Placement:
        return self._execute(
            "send_offer", placement_id, actor,
            lambda p, now: offers.send_offer(p, offer, actor, now=now),
            expected_version,
        )

    def respond_to_offer(
        self,
        placement_id: str,
        response: Union[OfferResponse, str],
        actor: Actor,
        deferred_date: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Placement:
        return self._execute(
            "respond_to_offer", placement_id, actor,
            lambda p, now: offers.respond_to_offer(p, response, actor, deferred_date=deferred_date, now=now),
            expected_version,
        )

    def resolve_deferral(
        self,
        placement_id: str,
        decision: Union[DeferApproval, str],
        actor: Actor,
        expected_version: Optional[int] = None,
    ) -> Placement:
        return self._execute(
            "resolve_deferral", placement_id, actor,
            lambda p, now: offers.resolve_deferral(p, decision, actor, now=now),
            expected_version,
        )

    def withdraw_offer(
        self,
        placement_id: str,
        actor: Actor,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Placement:
        return self._execute(
            "withdraw_offer", placement_id, actor,
            lambda p, now: offers.withdraw_offer(p, actor, reason=reason, now=now),
            expected_version,
        )

    # Comments

    def add_comment(
        self,
        placement_id: str,
        text: str,
        actor: Actor,
        stage: Optional[Union[Stage, str]] = None,
        expected_version: Optional[int] = None,
    ) -> Placement:
        return self._execute(
            "add_comment", placement_id, actor,
            lambda p, now: comment_thread.add_comment(p, text, actor, stage=stage, now=now),
            expected_version,
        )
