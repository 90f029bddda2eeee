"""
Best-effort notifications for completed placement operations.

Dispatch happens after the placement is committed, off the caller's
thread. Delivery is retried with backoff (at-least-once); a failure is
logged and counted, never raised back into the operation.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional

import requests

from .logger import get_logger
from .models import Placement, utcnow
from .retry import exponential_backoff


def build_payload(operation: str, placement: Placement) -> Dict[str, Any]:
    last = placement.timeline[-1] if placement.timeline else None
    return {
        "operation": operation,
        "placement_id": placement.id,
        "job_id": placement.job_id,
        "candidate_id": placement.candidate_id,
        "client_id": placement.client_id,
        "stage": placement.stage.value,
        "version": placement.version,
        "event": last.to_dict() if last else None,
        "sent_at": utcnow().isoformat(),
    }


class Notifier:
    """Does nothing; subclasses deliver somewhere."""

    def notify(self, operation: str, placement: Placement) -> None:
        pass

    def close(self) -> None:
        pass


class WebhookNotifier(Notifier):
    """POST a JSON summary of each operation to a webhook URL."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_workers: int = 2,
    ):
        self.url = url
        self.timeout = timeout
        self.logger = get_logger()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="placement-notify")
        self._post = exponential_backoff(
            max_retries=max_retries,
            base_delay=base_delay,
            exceptions=(requests.exceptions.RequestException,),
        )(self._post_once)

    def _post_once(self, payload: Dict[str, Any]) -> None:
        resp = requests.post(self.url, json=payload, timeout=self.timeout)
        resp.raise_for_status()

    def deliver(self, payload: Dict[str, Any]) -> bool:
        """Deliver one payload synchronously; True on success."""
        try:
            self._post(payload)
        except Exception as e:
            self.logger.warning(
                "Notification delivery failed",
                operation=payload.get("operation"),
                placement_id=payload.get("placement_id"),
                error=str(e),
            )
            self.logger.record_notification(delivered=False)
            return False
        self.logger.record_notification(delivered=True)
        return True

    def notify(self, operation: str, placement: Placement) -> Optional[Future]:
        payload = build_payload(operation, placement)
        return self._executor.submit(self.deliver, payload)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
