from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID, uuid4

import httpx

from director.models.domain import WebhookDelivery, WebhookStatus, utcnow
from director.storage.stores import WebhookStore

from .retry import Backoff, exponential_backoff

RESPONSE_BODY_LIMIT = 1000


class WebhookDispatcher:
    """Delivers job notifications to user endpoints with bounded retries.

    Every attempt is recorded through a conditional update keyed on the
    attempt counter the dispatcher observed, so two sweepers racing on one
    delivery cannot both count an attempt. ``next_retry_at`` grows with each
    failure until ``max_attempts`` is reached and the delivery is failed.
    """

    def __init__(
        self,
        store: WebhookStore,
        max_attempts: int = 3,
        timeout: float = 10.0,
        backoff: Backoff | None = None,
        secret: str | None = None,
        user_agent: str = "AI-Director-Worker/1.0",
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = store
        self._max_attempts = max_attempts
        self._timeout = timeout
        self._backoff = backoff or exponential_backoff(30.0, cap=3600.0)
        self._secret = secret or ""
        self._user_agent = user_agent
        self._transport = transport
        self._clock = clock
        self.log = logger or logging.getLogger(__name__)

    async def deliver(self, project_id: UUID, payload: Dict[str, Any], url: str) -> WebhookDelivery:
        delivery = WebhookDelivery(
            id=uuid4(),
            project_id=project_id,
            url=url,
            payload=payload,
            max_attempts=self._max_attempts,
            created_at=self._clock(),
        )
        self._store.insert(delivery)
        return await self.attempt(delivery)

    async def attempt(self, delivery: WebhookDelivery) -> WebhookDelivery:
        if delivery.status != WebhookStatus.PENDING:
            return delivery
        status_code: Optional[int] = None
        body: Optional[str] = None
        error: Optional[str] = None
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(delivery.url, json=delivery.payload, headers=self._headers())
            status_code = response.status_code
            body = response.text[:RESPONSE_BODY_LIMIT]
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            error = str(exc) or type(exc).__name__
            body = error[:RESPONSE_BODY_LIMIT]

        now = self._clock()
        if status_code is not None and 200 <= status_code < 300:
            recorded = self._store.record_success(delivery.id, delivery.attempts, status_code, body or "", now)
            self.log.info(
                "webhook delivered",
                extra={"delivery_id": str(delivery.id), "status": status_code, "recorded": recorded},
            )
        else:
            attempts = delivery.attempts + 1
            retry_at = None
            if attempts < delivery.max_attempts:
                retry_at = now + timedelta(seconds=self._backoff(attempts))
            recorded = self._store.record_failure(delivery.id, delivery.attempts, status_code, body, retry_at)
            self.log.warning(
                "webhook delivery failed",
                extra={
                    "delivery_id": str(delivery.id),
                    "status": status_code,
                    "attempt": attempts,
                    "next_retry_at": retry_at.isoformat() if retry_at else None,
                    "error": error,
                    "recorded": recorded,
                },
            )
        return self._store.get(delivery.id) or delivery

    async def retry_due(self, now: datetime | None = None) -> int:
        due = self._store.due(now or self._clock())
        for delivery in due:
            current = self._store.get(delivery.id)
            if current is None or current.attempts != delivery.attempts:
                continue
            await self.attempt(current)
        return len(due)

    def cancel_for_project(self, project_id: UUID) -> int:
        cancelled = self._store.cancel_for_project(project_id)
        if cancelled:
            self.log.info("webhooks cancelled", extra={"project_id": str(project_id), "count": cancelled})
        return cancelled

    def list_for_project(self, project_id: UUID) -> List[WebhookDelivery]:
        return self._store.list_for_project(project_id)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "User-Agent": self._user_agent}
        if self._secret:
            headers["X-Webhook-Secret"] = self._secret
        return headers


def build_payload(
    job_id: UUID,
    project_id: UUID,
    status: str,
    video_url: str | None = None,
    error: str | None = None,
    timestamp: datetime | None = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "job_id": str(job_id),
        "project_id": str(project_id),
        "status": status,
        "timestamp": (timestamp or utcnow()).isoformat() + "Z",
    }
    if video_url:
        payload["video_url"] = video_url
    if error:
        payload["error"] = error
    return payload
