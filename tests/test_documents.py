"""
Tests for the BGV document verification workflow.
"""

import pytest

from placements.errors import InvalidState, NotFound, Unauthorized, ValidationError
from placements.models import DocumentStatus, EventType, Stage


@pytest.fixture
def uploaded(service, placement, candidate):
    """Placement with one pending ID Proof."""
    return service.upload_document(
        placement.id, {"type": "ID Proof", "file_name": "s3://bgv/cand-1/id.pdf", "file_size": 2048}, candidate
    )


class TestUpload:

    def test_upload_appends_pending_document(self, uploaded, candidate):
        doc = uploaded.bgv_documents[0]

        assert doc.status == DocumentStatus.PENDING
        assert doc.name == "ID Proof"
        assert doc.uploaded_by == candidate.id
        assert doc.file_size == 2048
        assert uploaded.timeline[-1].event_type == EventType.DOCUMENT_UPLOADED

    def test_upload_does_not_change_stage(self, uploaded):
        assert uploaded.stage == Stage.SHORTLISTED

    def test_employer_cannot_upload(self, service, placement, employer):
        with pytest.raises(Unauthorized):
            service.upload_document(placement.id, {"type": "ID Proof", "file_name": "id.pdf"}, employer)

    def test_other_candidate_cannot_upload(self, service, placement, other_candidate):
        with pytest.raises(Unauthorized):
            service.upload_document(placement.id, {"type": "ID Proof", "file_name": "id.pdf"}, other_candidate)

    def test_unknown_type_rejected(self, service, placement, candidate):
        with pytest.raises(ValidationError) as exc:
            service.upload_document(placement.id, {"type": "Passport Photo", "file_name": "p.jpg"}, candidate)
        assert "type" in str(exc.value)

    def test_file_name_required(self, service, placement, candidate):
        with pytest.raises(ValidationError):
            service.upload_document(placement.id, {"type": "Other"}, candidate)

    def test_replacing_pending_document_fails(self, service, uploaded, candidate):
        doc_id = uploaded.bgv_documents[0].id
        with pytest.raises(InvalidState):
            service.upload_document(
                uploaded.id, {"type": "ID Proof", "file_name": "id2.pdf", "replaces": doc_id}, candidate
            )

    def test_replacing_unknown_document_fails(self, service, placement, candidate):
        with pytest.raises(NotFound):
            service.upload_document(
                placement.id, {"type": "ID Proof", "file_name": "id2.pdf", "replaces": "doc_missing"}, candidate
            )

    def test_reupload_keeps_rejected_original(self, service, uploaded, employer, candidate):
        old_id = uploaded.bgv_documents[0].id
        service.reject_document(uploaded.id, old_id, employer, comments="Expired")
        updated = service.upload_document(
            uploaded.id, {"type": "ID Proof", "file_name": "id-new.pdf", "replaces": old_id}, candidate
        )

        assert len(updated.bgv_documents) == 2
        assert updated.bgv_documents[0].status == DocumentStatus.REJECTED
        assert updated.bgv_documents[0].comments == "Expired"
        assert updated.bgv_documents[1].supersedes == old_id
        assert updated.bgv_documents[1].status == DocumentStatus.PENDING


class TestReview:

    def test_verify(self, service, uploaded, employer):
        doc_id = uploaded.bgv_documents[0].id
        updated = service.verify_document(uploaded.id, doc_id, employer, comments="Matches records")
        doc = updated.find_document(doc_id)

        assert doc.status == DocumentStatus.VERIFIED
        assert doc.verified_by == employer.id
        assert doc.verified_at is not None
        assert updated.timeline[-1].event_type == EventType.DOCUMENT_VERIFIED
        assert "verified" in updated.timeline[-1].notes

    def test_reject_uses_same_event_type(self, service, uploaded, employer):
        doc_id = uploaded.bgv_documents[0].id
        updated = service.reject_document(uploaded.id, doc_id, employer)

        assert updated.find_document(doc_id).status == DocumentStatus.REJECTED
        assert updated.timeline[-1].event_type == EventType.DOCUMENT_VERIFIED
        assert "rejected" in updated.timeline[-1].notes

    def test_candidate_cannot_verify(self, service, uploaded, candidate):
        with pytest.raises(Unauthorized):
            service.verify_document(uploaded.id, uploaded.bgv_documents[0].id, candidate)

    def test_unknown_document(self, service, uploaded, employer):
        with pytest.raises(NotFound):
            service.verify_document(uploaded.id, "doc_nope", employer)

    @pytest.mark.parametrize("first, second", [
        ("verify_document", "reject_document"),
        ("reject_document", "verify_document"),
        ("verify_document", "verify_document"),
    ])
    def test_settled_document_is_immutable(self, service, uploaded, employer, first, second):
        doc_id = uploaded.bgv_documents[0].id
        getattr(service, first)(uploaded.id, doc_id, employer)
        before = service.store.raw(uploaded.id)

        with pytest.raises(InvalidState):
            getattr(service, second)(uploaded.id, doc_id, employer)
        assert service.store.raw(uploaded.id) == before

    def test_no_review_on_closed_placement(self, service, uploaded, employer):
        service.reject(uploaded.id, employer, "Position filled")
        with pytest.raises(InvalidState):
            service.verify_document(uploaded.id, uploaded.bgv_documents[0].id, employer)
