"""
Document Verification Workflow.

Candidates upload background-verification documents; employers verify or
reject them. A document only ever moves pending -> verified or
pending -> rejected. Re-uploading creates a new document that may name the
rejected one it replaces.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from .errors import InvalidState, NotFound, ValidationError
from .guards import require_open, require_role
from .models import (
    Actor,
    BGVDocument,
    DocumentStatus,
    DocumentType,
    EventType,
    Placement,
    Role,
    utcnow,
)
from .schema import validate_document


def upload_document(
    placement: Placement,
    payload: Dict[str, Any],
    actor: Actor,
    now: Optional[datetime] = None,
) -> BGVDocument:
    """
    Append a pending document uploaded by the candidate.

    Args:
        placement: Aggregate to mutate
        payload: ``type``, ``file_name`` and optionally ``name``,
            ``file_size`` and ``replaces`` (id of a rejected document)
        actor: Must be the placement's candidate
        now: Timestamp override

    Returns:
        The new BGVDocument
    """
    require_open(placement, "upload a document")
    require_role(placement, actor, [Role.CANDIDATE], "upload BGV documents")

    errors = validate_document(payload)
    if errors:
        raise ValidationError("; ".join(errors), stage=placement.stage.value)

    replaces = payload.get("replaces")
    if replaces:
        old = placement.find_document(replaces)
        if old is None:
            raise NotFound(f"Document {replaces} to replace does not exist", stage=placement.stage.value)
        if old.status != DocumentStatus.REJECTED:
            raise InvalidState(
                f"Only a rejected document can be replaced; {replaces} is {old.status.value}",
                stage=placement.stage.value,
            )

    now = now or utcnow()
    doc_type = DocumentType(payload["type"])
    doc = BGVDocument(
        name=payload.get("name") or doc_type.value,
        type=doc_type,
        file_name=payload["file_name"],
        file_size=payload.get("file_size"),
        uploaded_by=actor.id,
        uploaded_at=now,
        supersedes=replaces or None,
    )
    placement.bgv_documents.append(doc)

    notes = f"Uploaded {doc.type.value}: {doc.file_name}"
    if replaces:
        notes += f" (replaces {replaces})"
    placement.record(EventType.DOCUMENT_UPLOADED, notes, completed_by=actor.id, now=now)
    return doc


def review_document(
    placement: Placement,
    document_id: str,
    status: DocumentStatus,
    actor: Actor,
    comments: Optional[str] = None,
    now: Optional[datetime] = None,
) -> BGVDocument:
    """Settle a pending document as verified or rejected."""
    if status == DocumentStatus.PENDING:
        raise ValidationError("A review must verify or reject the document", stage=placement.stage.value)

    require_open(placement, "review a document")
    require_role(placement, actor, [Role.EMPLOYER], "verify BGV documents")

    doc = placement.find_document(document_id)
    if doc is None:
        raise NotFound(f"Document {document_id} does not exist", stage=placement.stage.value)
    if doc.status != DocumentStatus.PENDING:
        raise InvalidState(
            f"Document {document_id} is already {doc.status.value} and cannot change",
            stage=placement.stage.value,
        )

    now = now or utcnow()
    doc.status = status
    doc.verified_by = actor.id
    doc.verified_at = now
    doc.comments = comments

    notes = f"{doc.type.value} {status.value}"
    if comments:
        notes += f": {comments}"
    placement.record(EventType.DOCUMENT_VERIFIED, notes, completed_by=actor.id, now=now)
    return doc


def verify_document(placement, document_id, actor, comments=None, now=None) -> BGVDocument:
    return review_document(placement, document_id, DocumentStatus.VERIFIED, actor, comments, now)


def reject_document(placement, document_id, actor, comments=None, now=None) -> BGVDocument:
    return review_document(placement, document_id, DocumentStatus.REJECTED, actor, comments, now)
