"""
AI Evaluation Adapter.

Attaches the external scoring service's verdict to a placement. Scores
are advisory: recording one never changes the stage, advancing or
rejecting stays a manual employer decision.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from .errors import ValidationError
from .guards import require_open, require_role
from .logger import get_logger
from .models import (
    Actor,
    AIEvaluation,
    EventType,
    Placement,
    Role,
    ScreeningQuestion,
    utcnow,
)
from .retry import CircuitBreaker, CircuitOpenError, exponential_backoff, is_retryable_status
from .schema import validate_evaluation

EVALUATION_ROLES = [Role.SYSTEM, Role.EMPLOYER]


def check_can_record(placement: Placement, actor: Actor) -> None:
    """Raise unless ``actor`` may attach an evaluation to ``placement`` now."""
    require_open(placement, "record an AI evaluation")
    require_role(placement, actor, EVALUATION_ROLES, "record AI evaluations")
    if placement.ai_evaluation is not None:
        raise ValidationError(
            f"An AI evaluation (score {placement.ai_evaluation.score}) is already recorded for this screening cycle",
            stage=placement.stage.value,
        )


def record_evaluation(
    placement: Placement,
    payload: Dict[str, Any],
    actor: Actor,
    now: Optional[datetime] = None,
) -> AIEvaluation:
    """
    Attach an evaluation to the placement's screening cycle.

    Args:
        placement: Aggregate to mutate
        payload: ``score`` (0-100), ``rationale`` and optional
            ``questions``/``answers`` the score was derived from
        actor: The scoring service, or an employer recording on its behalf
        now: Timestamp override

    Raises:
        ValidationError: Bad payload, or an evaluation already exists
    """
    check_can_record(placement, actor)
    errors = validate_evaluation(payload)
    if errors:
        raise ValidationError("; ".join(errors), stage=placement.stage.value)

    now = now or utcnow()
    evaluation = AIEvaluation(
        score=int(round(payload["score"])),
        rationale=payload["rationale"].strip(),
        evaluated_at=now,
        questions=[ScreeningQuestion.from_dict(q) for q in payload.get("questions") or []],
        answers=[str(a) for a in payload.get("answers") or []],
    )
    placement.ai_evaluation = evaluation
    placement.record(
        EventType.AI_EVALUATION,
        f"AI evaluation recorded: score {evaluation.score}/100",
        completed_by=actor.id,
        now=now,
    )
    return evaluation


def clamp_score(raw: Any) -> int:
    """Normalize a raw service score into [0, 100]."""
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Scoring service returned a non-numeric score: {raw!r}")
    return int(round(min(100.0, max(0.0, value))))


class ScoringServiceError(Exception):
    """The external scoring service failed or answered with garbage."""


class RetryableScoringError(ScoringServiceError):
    pass


class ScoringClient:
    """
    HTTP client for the external AI scoring service.

    POSTs ``{"questions": [...], "answers": [...]}`` to ``<base_url>/evaluate``
    and expects ``{"score": number, "rationale": str}`` back.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self.logger = get_logger()
        self._post = exponential_backoff(
            max_retries=max_retries,
            base_delay=base_delay,
            exceptions=(requests.exceptions.Timeout, requests.exceptions.ConnectionError, RetryableScoringError),
            on_retry=self._log_retry,
            wrap_exhausted=False,
        )(self._post_once)

    def _log_retry(self, attempt, exc, delay):
        self.logger.warning("Scoring service call failed, retrying", attempt=attempt, delay=delay, error=str(exc))

    def _post_once(self, body: Dict[str, Any]) -> requests.Response:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        resp = requests.post(f"{self.base_url}/evaluate", json=body, headers=headers, timeout=self.timeout)
        if is_retryable_status(resp.status_code):
            raise RetryableScoringError(f"Scoring service answered {resp.status_code}")
        return resp

    def evaluate(self, questions: List[Dict[str, Any]], answers: List[str]) -> Dict[str, Any]:
        """
        Ask the service to score a screening submission.

        Returns:
            Evaluation payload ready for ``record_evaluation``: clamped
            ``score``, ``rationale``, and the questions/answers sent

        Raises:
            ScoringServiceError: On HTTP failure or a malformed answer
        """
        body = {"questions": questions, "answers": answers}
        try:
            resp = self.breaker.call(self._post, body)
            resp.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "HTTPError"
            self.logger.error("Scoring service rejected request", status=status)
            raise ScoringServiceError(f"Scoring service request failed ({status})") from e
        except (requests.exceptions.RequestException, RetryableScoringError, CircuitOpenError) as e:
            self.logger.error("Scoring service unavailable", error=str(e))
            raise ScoringServiceError(f"Scoring service unavailable: {e}") from e

        try:
            result = resp.json()
        except ValueError as e:
            raise ScoringServiceError(f"Scoring service returned invalid JSON: {e}") from e

        if not isinstance(result, dict) or "score" not in result:
            raise ScoringServiceError("Scoring service response is missing 'score'")
        try:
            score = clamp_score(result["score"])
        except ValueError as e:
            raise ScoringServiceError(str(e)) from e

        return {
            "score": score,
            "rationale": str(result.get("rationale") or "").strip() or "No rationale provided",
            "questions": questions,
            "answers": answers,
        }
