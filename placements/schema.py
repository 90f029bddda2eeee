from typing import Any, Dict, List

from .models import DocumentType, QuestionType

REJECTION_REASONS = [
    "Skill gap",
    "Failed test",
    "Cultural mismatch",
    "Experience mismatch",
    "Salary expectations",
    "Communication issues",
    "Background verification failed",
    "Candidate withdrew",
    "Position filled",
    "Other",
]

OFFER_REQUIRED_FIELDS = ["salary", "joining_date", "probation_period"]
MEETING_REQUIRED_FIELDS = ["date", "time", "timezone"]
DOCUMENT_REQUIRED_FIELDS = ["type", "file_name"]


def _is_non_empty_str(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""


def _require_strings(data: Dict[str, Any], fields: List[str]) -> List[str]:
    errors: List[str] = []
    for f in fields:
        if f not in data or data[f] is None:
            errors.append(f"Missing required field: {f}")
        elif not _is_non_empty_str(data[f]):
            errors.append(f"Field '{f}' must be a non-empty string")
    return errors


def validate_offer(data: Dict[str, Any]) -> List[str]:
    """
    Returns a list of validation error messages. Empty list means valid.
    """
    errors = _require_strings(data, OFFER_REQUIRED_FIELDS)
    if "custom_notes" in data and data["custom_notes"] is not None and not isinstance(data["custom_notes"], str):
        errors.append("Field 'custom_notes' must be a string if provided")
    return errors


def validate_meeting(data: Dict[str, Any]) -> List[str]:
    errors = _require_strings(data, MEETING_REQUIRED_FIELDS)

    participants = data.get("participants")
    if isinstance(participants, str):
        participants = [p.strip() for p in participants.split(",")]
    if not participants or not isinstance(participants, list):
        errors.append("Missing required field: participants")
    elif not all(_is_non_empty_str(p) for p in participants):
        errors.append("Field 'participants' must contain only non-empty names")
    return errors


def validate_document(data: Dict[str, Any]) -> List[str]:
    errors = _require_strings(data, DOCUMENT_REQUIRED_FIELDS)

    doc_type = data.get("type")
    if _is_non_empty_str(doc_type) and doc_type not in {t.value for t in DocumentType}:
        allowed = ", ".join(t.value for t in DocumentType)
        errors.append(f"Field 'type' must be one of: {allowed}")

    size = data.get("file_size")
    if size is not None and (isinstance(size, bool) or not isinstance(size, int) or size < 0):
        errors.append("Field 'file_size' must be a non-negative integer if provided")
    return errors


def validate_evaluation(data: Dict[str, Any]) -> List[str]:
    """
    Checks an AI evaluation payload: score in [0, 100], a rationale, and
    answers that line up one-to-one with the questions when both are given.
    """
    errors: List[str] = []

    score = data.get("score")
    if score is None:
        errors.append("Missing required field: score")
    elif isinstance(score, bool) or not isinstance(score, (int, float)):
        errors.append("Field 'score' must be a number")
    elif not 0 <= score <= 100:
        errors.append(f"Field 'score' must be between 0 and 100, got {score}")

    errors.extend(_require_strings(data, ["rationale"]))

    questions = data.get("questions") or []
    answers = data.get("answers") or []
    if not isinstance(questions, list) or not isinstance(answers, list):
        errors.append("Fields 'questions' and 'answers' must be lists if provided")
        return errors
    for q in questions:
        if not isinstance(q, dict) or not _is_non_empty_str(q.get("question")):
            errors.append("Each question must have non-empty 'question' text")
            break
        if q.get("type", "text") not in {t.value for t in QuestionType}:
            errors.append(f"Question type must be 'mcq' or 'text', got {q.get('type')!r}")
            break
    if answers and len(answers) != len(questions):
        errors.append(f"Got {len(answers)} answers for {len(questions)} questions")
    return errors


def validate_rejection(reason: Any) -> List[str]:
    if reason is None:
        return ["Missing required field: rejection_reason"]
    if not _is_non_empty_str(reason):
        return ["Field 'rejection_reason' must be a non-empty string"]
    return []
