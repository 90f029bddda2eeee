"""
End-to-end pipeline scenarios through the placement service.
"""

import threading
from datetime import datetime, timezone

import pytest

from placements.errors import (
    Conflict,
    InvalidTransition,
    PreconditionNotMet,
    StaleVersion,
    Unauthorized,
)
from placements.models import EventType, Stage, utcnow
from placements.notifications import Notifier
from placements.retry import retry_on_conflict
from placements.service import PlacementService


def assert_history_consistent(placement):
    """Stage agrees with the last stage_change and dates never go backwards."""
    assert placement.last_stage_change().stage == placement.stage
    dates = [e.date for e in placement.timeline]
    assert dates == sorted(dates)


class TestShortlist:

    def test_creates_placement_at_shortlisted(self, service, employer, notifier):
        placement = service.shortlist("job-9", "cand-9", "client-1", employer)

        assert placement.stage == Stage.SHORTLISTED
        assert placement.version == 1
        assert len(placement.timeline) == 1
        assert placement.timeline[0].event_type == EventType.STAGE_CHANGE
        assert notifier.sent == [("shortlist", placement.id, "Shortlisted")]

    def test_one_placement_per_job_and_candidate(self, service, placement, employer):
        with pytest.raises(Conflict):
            service.shortlist("job-1", "cand-1", "client-2", employer)

    def test_candidate_cannot_shortlist(self, service, candidate):
        with pytest.raises(Unauthorized):
            service.shortlist("job-9", "cand-1", "client-1", candidate)


class TestScenarioA:
    """Full happy path from shortlist to hire."""

    def test_hire(self, service, placement, employer, candidate, scorer, offer_payload):
        pid = placement.id
        service.schedule_meeting(
            pid, {"date": "2024-03-12", "time": "10:30", "timezone": "Asia/Kolkata",
                  "participants": ["Priya (HR)", "Arjun"]}, employer,
        )
        service.transition(pid, Stage.SCREENING_TEST, employer)
        service.transition(pid, Stage.PANEL_INTERVIEW, employer)
        evaluated = service.record_evaluation(pid, {"score": 78, "rationale": "Good fundamentals"}, scorer)
        assert evaluated.stage == Stage.PANEL_INTERVIEW

        service.transition(pid, Stage.FEEDBACK, employer)
        service.transition(pid, Stage.BGV, employer)
        for doc_type in ("ID Proof", "Experience Letter"):
            uploaded = service.upload_document(pid, {"type": doc_type, "file_name": f"{doc_type}.pdf"}, candidate)
            service.verify_document(pid, uploaded.bgv_documents[-1].id, employer)

        confirmed = service.transition(pid, Stage.CONFIRMATION, employer)
        assert confirmed.stage == Stage.CONFIRMATION

        service.send_offer(pid, offer_payload, employer)
        final = service.respond_to_offer(pid, "accepted", candidate)

        assert final.stage == Stage.HIRED
        assert len(final.timeline) >= 6
        assert final.timeline[-1].event_type == EventType.OFFER_RESPONSE
        assert [e.event_type for e in final.timeline].count(EventType.OFFER_RESPONSE) == 1
        assert final.ai_evaluation.score == 78
        assert_history_consistent(final)


class TestScenarioB:
    """Confirmation blocked by a pending document."""

    def test_pending_document_keeps_bgv(self, service, placement, advance, employer, candidate):
        pid = placement.id
        advance(pid, Stage.BGV)
        first = service.upload_document(pid, {"type": "ID Proof", "file_name": "id.pdf"}, candidate)
        service.verify_document(pid, first.bgv_documents[-1].id, employer)
        service.upload_document(pid, {"type": "Experience Letter", "file_name": "exp.pdf"}, candidate)
        before = service.store.raw(pid)

        with pytest.raises(PreconditionNotMet) as exc:
            service.transition(pid, Stage.CONFIRMATION, employer)

        assert "Experience Letter (pending)" in str(exc.value)
        assert "current stage: BGV" in str(exc.value)
        assert service.get(pid).stage == Stage.BGV
        assert service.store.raw(pid) == before


class TestScenarioC:
    """Two writers racing on the same version."""

    def test_expected_version_mismatch(self, service, placement, employer, candidate):
        pid = placement.id
        service.transition(pid, Stage.SCREENING_TEST, employer, expected_version=1)
        before = service.store.raw(pid)

        with pytest.raises(StaleVersion):
            service.reject(pid, candidate, "Candidate withdrew", expected_version=1)
        assert service.store.raw(pid) == before

    def test_concurrent_transitions(self, store, placement, employer, quiet_logger):
        barrier = threading.Barrier(2, timeout=10)

        def clock_after_both_loaded():
            barrier.wait()
            return utcnow()

        racer = PlacementService(store, clock=clock_after_both_loaded, logger=quiet_logger)
        results = []

        def attempt():
            try:
                racer.transition(placement.id, Stage.SCREENING_TEST, employer, expected_version=1)
                results.append("ok")
            except StaleVersion:
                results.append("conflict")

        threads = [threading.Thread(target=attempt) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(results) == ["conflict", "ok"]
        final = store.get(placement.id)
        assert final.version == 2
        assert [e.event_type for e in final.timeline].count(EventType.STAGE_CHANGE) == 2

    def test_retry_on_conflict_reloads(self, service, placement, employer, candidate):
        pid = placement.id
        attempts = []

        def add_note():
            attempts.append(1)
            if len(attempts) == 1:
                # someone else writes between our read and our write
                service.add_comment(pid, "interleaved", candidate)
                return service.add_comment(pid, "mine", employer, expected_version=1)
            return service.add_comment(pid, "mine", employer)

        updated = retry_on_conflict(base_delay=0)(add_note)()

        assert len(attempts) == 2
        assert [c.text for c in updated.comments] == ["interleaved", "mine"]


class TestScenarioD:
    """Deferral rejected, then a fresh offer."""

    def test_defer_reject_then_resend(self, service, at_offer_letter, employer, candidate, offer_payload):
        pid = at_offer_letter.id
        service.respond_to_offer(pid, "deferred", candidate, deferred_date="2024-08-01")
        closed = service.resolve_deferral(pid, "rejected", employer)

        assert not closed.offer_letter.is_open
        assert closed.stage == Stage.OFFER_LETTER

        resent = service.send_offer(pid, dict(offer_payload, joining_date="2024-06-01"), employer)
        assert resent.offer_letter.is_open
        assert resent.offer_letter.joining_date == "2024-06-01"
        assert_history_consistent(resent)


class TestUnitOfWork:
    """Failure semantics shared by every operation."""

    def test_failed_operation_leaves_row_unchanged(self, service, placement, employer):
        before = service.store.raw(placement.id)
        with pytest.raises(InvalidTransition):
            service.transition(placement.id, Stage.HIRED, employer)
        assert service.store.raw(placement.id) == before

    def test_notifications_follow_successful_operations(self, service, placement, employer, notifier):
        service.transition(placement.id, Stage.SCREENING_TEST, employer)
        with pytest.raises(InvalidTransition):
            service.transition(placement.id, Stage.FEEDBACK, employer)

        assert [op for op, _, _ in notifier.sent] == ["shortlist", "transition"]

    def test_broken_notifier_does_not_roll_back(self, store, placement, employer, quiet_logger):
        class Broken(Notifier):
            def notify(self, operation, placement):
                raise ConnectionError("webhook down")

        svc = PlacementService(store, notifier=Broken(), logger=quiet_logger)
        updated = svc.transition(placement.id, Stage.SCREENING_TEST, employer)

        assert updated.stage == Stage.SCREENING_TEST
        assert store.get(placement.id).stage == Stage.SCREENING_TEST
        assert quiet_logger.get_metrics()["notifications_failed"] == 1

    def test_metrics_track_outcomes(self, service, placement, employer, quiet_logger):
        service.transition(placement.id, Stage.SCREENING_TEST, employer)
        with pytest.raises(InvalidTransition):
            service.transition(placement.id, Stage.HIRED, employer)

        metrics = quiet_logger.get_metrics()
        assert metrics["errors_by_type"]["invalid_transition"] == 1
        assert metrics["operation_success_rate"]["transition"]["attempts"] == 2
        assert metrics["operation_success_rate"]["transition"]["successes"] == 1

    def test_timeline_filter(self, service, placement, employer):
        service.add_comment(placement.id, "note", employer)
        service.transition(placement.id, Stage.SCREENING_TEST, employer)

        changes = service.timeline(placement.id, event_type="stage_change")
        assert [e.stage for e in changes] == [Stage.SHORTLISTED, Stage.SCREENING_TEST]

    def test_clock_stepping_backwards_keeps_timeline_ordered(self, store, employer, quiet_logger):
        late = datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)
        ticks = iter([
            late,
            datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc),
            datetime(2023, 12, 31, 9, 0, tzinfo=timezone.utc),
        ])
        svc = PlacementService(store, clock=lambda: next(ticks), logger=quiet_logger)

        created = svc.shortlist("job-7", "cand-7", "client-1", employer)
        svc.add_comment(created.id, "Clock drift", employer)
        updated = svc.transition(created.id, Stage.SCREENING_TEST, employer)

        dates = [e.date for e in updated.timeline]
        assert dates == sorted(dates)
        assert dates == [late, late, late]
        assert updated.last_updated == late
        assert_history_consistent(store.get(created.id))
