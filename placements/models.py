"""
Placement aggregate and its embedded records.

A Placement tracks one candidate's progress for one job. The timeline,
documents, comments, meeting, offer and evaluation are all embedded in the
aggregate so the whole history is persisted and read as a single document.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class Stage(str, Enum):
    SHORTLISTED = "Shortlisted"
    SCREENING_TEST = "Screening Test"
    PANEL_INTERVIEW = "Panel Interview"
    FEEDBACK = "Feedback"
    BGV = "BGV"
    CONFIRMATION = "Confirmation"
    OFFER_LETTER = "Offer Letter"
    HIRED = "Hired"
    REJECTED = "Rejected"

    @property
    def is_terminal(self) -> bool:
        return self in (Stage.HIRED, Stage.REJECTED)


class EventType(str, Enum):
    STAGE_CHANGE = "stage_change"
    MEETING_SCHEDULED = "meeting_scheduled"
    DOCUMENT_UPLOADED = "document_uploaded"
    DOCUMENT_VERIFIED = "document_verified"
    OFFER_SENT = "offer_sent"
    OFFER_RESPONSE = "offer_response"
    COMMENT_ADDED = "comment_added"
    AI_EVALUATION = "ai_evaluation"
    REJECTION = "rejection"


class Role(str, Enum):
    EMPLOYER = "employer"
    CANDIDATE = "candidate"
    SYSTEM = "system"


class DocumentType(str, Enum):
    ID_PROOF = "ID Proof"
    ADDRESS_PROOF = "Address Proof"
    EDUCATION_CERTIFICATE = "Education Certificate"
    EXPERIENCE_LETTER = "Experience Letter"
    OTHER = "Other"


class DocumentStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class OfferResponse(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    DEFERRED = "deferred"


class DeferApproval(str, Enum):
    NONE = "none"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class QuestionType(str, Enum):
    MCQ = "mcq"
    TEXT = "text"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class Actor:
    """Identity and role of whoever issues an operation."""

    id: str
    role: Role


@dataclass
class TimelineEvent:
    stage: Stage
    date: datetime
    notes: str
    event_type: EventType
    completed_by: Optional[str] = None
    id: str = field(default_factory=lambda: new_id("evt"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "stage": self.stage.value,
            "date": _ts(self.date),
            "notes": self.notes,
            "completed_by": self.completed_by,
            "event_type": self.event_type.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimelineEvent":
        return cls(
            id=data["id"],
            stage=Stage(data["stage"]),
            date=_parse_ts(data["date"]),
            notes=data.get("notes", ""),
            completed_by=data.get("completed_by"),
            event_type=EventType(data["event_type"]),
        )


@dataclass
class Meeting:
    date: str
    time: str
    timezone: str
    participants: List[str]
    scheduled_by: str
    scheduled_at: datetime
    id: str = field(default_factory=lambda: new_id("mtg"))

    def describe(self) -> str:
        return f"{self.date} {self.time} {self.timezone}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "time": self.time,
            "timezone": self.timezone,
            "participants": list(self.participants),
            "scheduled_by": self.scheduled_by,
            "scheduled_at": _ts(self.scheduled_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Meeting":
        return cls(
            id=data["id"],
            date=data["date"],
            time=data["time"],
            timezone=data["timezone"],
            participants=list(data.get("participants", [])),
            scheduled_by=data["scheduled_by"],
            scheduled_at=_parse_ts(data["scheduled_at"]),
        )


@dataclass
class BGVDocument:
    name: str
    type: DocumentType
    file_name: str
    uploaded_by: str
    uploaded_at: datetime
    status: DocumentStatus = DocumentStatus.PENDING
    file_size: Optional[int] = None
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    comments: Optional[str] = None
    supersedes: Optional[str] = None  # id of the rejected document this upload replaces
    id: str = field(default_factory=lambda: new_id("doc"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "uploaded_by": self.uploaded_by,
            "uploaded_at": _ts(self.uploaded_at),
            "status": self.status.value,
            "verified_by": self.verified_by,
            "verified_at": _ts(self.verified_at),
            "comments": self.comments,
            "supersedes": self.supersedes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BGVDocument":
        return cls(
            id=data["id"],
            name=data["name"],
            type=DocumentType(data["type"]),
            file_name=data["file_name"],
            file_size=data.get("file_size"),
            uploaded_by=data["uploaded_by"],
            uploaded_at=_parse_ts(data["uploaded_at"]),
            status=DocumentStatus(data["status"]),
            verified_by=data.get("verified_by"),
            verified_at=_parse_ts(data.get("verified_at")),
            comments=data.get("comments"),
            supersedes=data.get("supersedes"),
        )


@dataclass
class OfferLetter:
    salary: str
    joining_date: str
    probation_period: str
    sent_by: str
    sent_at: datetime
    custom_notes: str = ""
    candidate_response: Optional[OfferResponse] = None
    response_date: Optional[datetime] = None
    deferred_date: Optional[str] = None
    defer_approval: DeferApproval = DeferApproval.NONE
    withdrawn_by: Optional[str] = None
    withdrawn_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: new_id("offer"))

    @property
    def is_open(self) -> bool:
        """True while the offer still awaits a final outcome."""
        if self.withdrawn_at is not None:
            return False
        if self.candidate_response in (OfferResponse.ACCEPTED, OfferResponse.REJECTED):
            return False
        if self.defer_approval == DeferApproval.REJECTED:
            return False
        return True

    @property
    def status(self) -> str:
        if self.withdrawn_at is not None:
            return "withdrawn"
        if self.candidate_response is None:
            return "sent"
        if self.candidate_response == OfferResponse.DEFERRED:
            return f"deferred:{self.defer_approval.value}"
        return self.candidate_response.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "salary": self.salary,
            "joining_date": self.joining_date,
            "probation_period": self.probation_period,
            "custom_notes": self.custom_notes,
            "sent_by": self.sent_by,
            "sent_at": _ts(self.sent_at),
            "candidate_response": self.candidate_response.value if self.candidate_response else None,
            "response_date": _ts(self.response_date),
            "deferred_date": self.deferred_date,
            "defer_approval": self.defer_approval.value,
            "withdrawn_by": self.withdrawn_by,
            "withdrawn_at": _ts(self.withdrawn_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OfferLetter":
        response = data.get("candidate_response")
        return cls(
            id=data["id"],
            salary=data["salary"],
            joining_date=data["joining_date"],
            probation_period=data["probation_period"],
            custom_notes=data.get("custom_notes", ""),
            sent_by=data["sent_by"],
            sent_at=_parse_ts(data["sent_at"]),
            candidate_response=OfferResponse(response) if response else None,
            response_date=_parse_ts(data.get("response_date")),
            deferred_date=data.get("deferred_date"),
            defer_approval=DeferApproval(data.get("defer_approval", "none")),
            withdrawn_by=data.get("withdrawn_by"),
            withdrawn_at=_parse_ts(data.get("withdrawn_at")),
        )


@dataclass
class ScreeningQuestion:
    id: str
    question: str
    type: QuestionType
    options: List[str] = field(default_factory=list)
    correct_answer: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "type": self.type.value,
            "options": list(self.options),
            "correct_answer": self.correct_answer,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScreeningQuestion":
        return cls(
            id=str(data["id"]),
            question=data["question"],
            type=QuestionType(data.get("type", "text")),
            options=list(data.get("options") or []),
            correct_answer=data.get("correct_answer"),
        )


@dataclass
class AIEvaluation:
    score: int
    rationale: str
    evaluated_at: datetime
    questions: List[ScreeningQuestion] = field(default_factory=list)
    answers: List[str] = field(default_factory=list)
    id: str = field(default_factory=lambda: new_id("eval"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "score": self.score,
            "rationale": self.rationale,
            "evaluated_at": _ts(self.evaluated_at),
            "questions": [q.to_dict() for q in self.questions],
            "answers": list(self.answers),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AIEvaluation":
        return cls(
            id=data["id"],
            score=data["score"],
            rationale=data["rationale"],
            evaluated_at=_parse_ts(data["evaluated_at"]),
            questions=[ScreeningQuestion.from_dict(q) for q in data.get("questions", [])],
            answers=list(data.get("answers", [])),
        )


@dataclass
class PlacementComment:
    text: str
    author: str
    author_role: Role
    timestamp: datetime
    stage: Stage
    id: str = field(default_factory=lambda: new_id("cmt"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "author": self.author,
            "author_role": self.author_role.value,
            "timestamp": _ts(self.timestamp),
            "stage": self.stage.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlacementComment":
        return cls(
            id=data["id"],
            text=data["text"],
            author=data["author"],
            author_role=Role(data["author_role"]),
            timestamp=_parse_ts(data["timestamp"]),
            stage=Stage(data["stage"]),
        )


@dataclass
class Placement:
    """Aggregate root for one (job, candidate) pair."""

    job_id: str
    candidate_id: str
    client_id: str
    stage: Stage
    applied_date: datetime
    last_updated: datetime
    version: int = 1
    timeline: List[TimelineEvent] = field(default_factory=list)
    meeting: Optional[Meeting] = None
    bgv_documents: List[BGVDocument] = field(default_factory=list)
    offer_letter: Optional[OfferLetter] = None
    ai_evaluation: Optional[AIEvaluation] = None
    rejection_reason: Optional[str] = None
    rejection_comments: Optional[str] = None
    comments: List[PlacementComment] = field(default_factory=list)
    id: str = field(default_factory=lambda: new_id("plc"))

    @property
    def is_terminal(self) -> bool:
        return self.stage.is_terminal

    def record(
        self,
        event_type: EventType,
        notes: str,
        completed_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TimelineEvent:
        """
        Append a timeline event and bump last_updated.

        The event is never stamped earlier than the previous one, so the
        timeline stays ordered even if the clock steps backwards.
        """
        now = now or utcnow()
        if self.timeline and now < self.timeline[-1].date:
            now = self.timeline[-1].date
        event = TimelineEvent(
            stage=self.stage,
            date=now,
            notes=notes,
            event_type=event_type,
            completed_by=completed_by,
        )
        self.timeline.append(event)
        self.last_updated = now
        return event

    def find_document(self, document_id: str) -> Optional[BGVDocument]:
        for doc in self.bgv_documents:
            if doc.id == document_id:
                return doc
        return None

    def last_stage_change(self) -> Optional[TimelineEvent]:
        for event in reversed(self.timeline):
            if event.event_type == EventType.STAGE_CHANGE:
                return event
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "candidate_id": self.candidate_id,
            "client_id": self.client_id,
            "stage": self.stage.value,
            "applied_date": _ts(self.applied_date),
            "last_updated": _ts(self.last_updated),
            "version": self.version,
            "timeline": [e.to_dict() for e in self.timeline],
            "meeting": self.meeting.to_dict() if self.meeting else None,
            "bgv_documents": [d.to_dict() for d in self.bgv_documents],
            "offer_letter": self.offer_letter.to_dict() if self.offer_letter else None,
            "ai_evaluation": self.ai_evaluation.to_dict() if self.ai_evaluation else None,
            "rejection_reason": self.rejection_reason,
            "rejection_comments": self.rejection_comments,
            "comments": [c.to_dict() for c in self.comments],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Placement":
        return cls(
            id=data["id"],
            job_id=data["job_id"],
            candidate_id=data["candidate_id"],
            client_id=data["client_id"],
            stage=Stage(data["stage"]),
            applied_date=_parse_ts(data["applied_date"]),
            last_updated=_parse_ts(data["last_updated"]),
            version=data.get("version", 1),
            timeline=[TimelineEvent.from_dict(e) for e in data.get("timeline", [])],
            meeting=Meeting.from_dict(data["meeting"]) if data.get("meeting") else None,
            bgv_documents=[BGVDocument.from_dict(d) for d in data.get("bgv_documents", [])],
            offer_letter=OfferLetter.from_dict(data["offer_letter"]) if data.get("offer_letter") else None,
            ai_evaluation=AIEvaluation.from_dict(data["ai_evaluation"]) if data.get("ai_evaluation") else None,
            rejection_reason=data.get("rejection_reason"),
            rejection_comments=data.get("rejection_comments"),
            comments=[PlacementComment.from_dict(c) for c in data.get("comments", [])],
        )
