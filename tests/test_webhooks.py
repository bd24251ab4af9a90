import json
from datetime import timedelta
from uuid import uuid4

import httpx

from director.models.domain import WebhookStatus
from director.services.retry import exponential_backoff
from director.services.webhooks import WebhookDispatcher, build_payload
from director.storage.stores import WebhookStore


def make_dispatcher(sessions, clock, handler, max_attempts=3):
    return WebhookDispatcher(
        store=WebhookStore(sessions),
        max_attempts=max_attempts,
        backoff=exponential_backoff(30.0, cap=3600.0),
        secret="s3cret",
        transport=httpx.MockTransport(handler),
        clock=clock,
    )


async def test_successful_delivery(sessions, clock):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, text="ok")

    dispatcher = make_dispatcher(sessions, clock, handler)
    project_id = uuid4()
    payload = build_payload(uuid4(), project_id, "completed", video_url="https://v/x.mp4", timestamp=clock.now)

    delivery = await dispatcher.deliver(project_id, payload, "https://hooks.example.com/done")

    assert delivery.status == WebhookStatus.SENT
    assert delivery.attempts == 1
    assert delivery.response_status == 200
    assert delivery.sent_at == clock.now
    request = seen[0]
    assert request.headers["X-Webhook-Secret"] == "s3cret"
    assert request.headers["User-Agent"] == "AI-Director-Worker/1.0"
    body = json.loads(request.content)
    assert body["status"] == "completed"
    assert body["video_url"] == "https://v/x.mp4"
    assert body["timestamp"] == "2026-01-01T12:00:00Z"


async def test_retries_back_off_then_fail(sessions, clock):
    dispatcher = make_dispatcher(sessions, clock, lambda request: httpx.Response(500, text="nope"))
    project_id = uuid4()

    delivery = await dispatcher.deliver(project_id, {"status": "completed"}, "https://hooks.example.com/x")
    retry_times = [delivery.next_retry_at]
    assert delivery.status == WebhookStatus.PENDING
    assert delivery.response_status == 500
    assert delivery.response_body == "nope"

    clock.now = delivery.next_retry_at
    assert await dispatcher.retry_due() == 1
    delivery = dispatcher.list_for_project(project_id)[0]
    retry_times.append(delivery.next_retry_at)
    assert delivery.status == WebhookStatus.PENDING
    assert delivery.attempts == 2

    clock.now = delivery.next_retry_at
    await dispatcher.retry_due()
    delivery = dispatcher.list_for_project(project_id)[0]

    assert retry_times[1] > retry_times[0]
    assert delivery.status == WebhookStatus.FAILED
    assert delivery.attempts == 3
    assert delivery.next_retry_at is None

    clock.now += timedelta(days=1)
    assert await dispatcher.retry_due() == 0
    assert dispatcher.list_for_project(project_id)[0].status == WebhookStatus.FAILED


async def test_next_retry_gap_grows(sessions, clock):
    dispatcher = make_dispatcher(sessions, clock, lambda request: httpx.Response(503), max_attempts=4)
    project_id = uuid4()
    delivery = await dispatcher.deliver(project_id, {}, "https://hooks.example.com/x")
    gaps = [delivery.next_retry_at - clock.now]
    for _ in range(2):
        clock.now = delivery.next_retry_at
        await dispatcher.retry_due()
        delivery = dispatcher.list_for_project(project_id)[0]
        gaps.append(delivery.next_retry_at - clock.now)

    assert gaps == [timedelta(seconds=30), timedelta(seconds=60), timedelta(seconds=120)]


async def test_transport_errors_count_as_failures(sessions, clock):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    dispatcher = make_dispatcher(sessions, clock, handler)
    delivery = await dispatcher.deliver(uuid4(), {}, "https://hooks.example.com/x")

    assert delivery.status == WebhookStatus.PENDING
    assert delivery.attempts == 1
    assert delivery.response_status is None
    assert "refused" in delivery.response_body


async def test_cancel_for_project_only_touches_pending(sessions, clock):
    responses = iter([httpx.Response(200), httpx.Response(500)])
    dispatcher = make_dispatcher(sessions, clock, lambda request: next(responses))
    project_id = uuid4()
    sent = await dispatcher.deliver(project_id, {}, "https://hooks.example.com/a")
    pending = await dispatcher.deliver(project_id, {}, "https://hooks.example.com/b")

    assert dispatcher.cancel_for_project(project_id) == 1

    by_id = {d.id: d for d in dispatcher.list_for_project(project_id)}
    assert by_id[sent.id].status == WebhookStatus.SENT
    assert by_id[pending.id].status == WebhookStatus.CANCELLED
    clock.now += timedelta(days=1)
    assert await dispatcher.retry_due() == 0


async def test_stale_attempt_is_not_double_counted(sessions, clock):
    dispatcher = make_dispatcher(sessions, clock, lambda request: httpx.Response(500))
    delivery = await dispatcher.deliver(uuid4(), {}, "https://hooks.example.com/x")
    stale = delivery.model_copy(update={"attempts": 0})

    result = await dispatcher.attempt(stale)

    assert result.attempts == 1


async def test_malformed_url_counts_as_a_failed_attempt(sessions, clock):
    dispatcher = make_dispatcher(sessions, clock, lambda request: httpx.Response(200), max_attempts=2)
    project_id = uuid4()

    delivery = await dispatcher.deliver(project_id, {}, "http://[::1")

    assert delivery.status == WebhookStatus.PENDING
    assert delivery.attempts == 1
    assert delivery.next_retry_at == clock.now + timedelta(seconds=30)

    clock.now = delivery.next_retry_at
    assert await dispatcher.retry_due() == 1
    delivery = dispatcher.list_for_project(project_id)[0]
    assert delivery.status == WebhookStatus.FAILED
    assert delivery.attempts == 2


class CancelAfterSelectStore(WebhookStore):
    """Cancels the project's deliveries right after the sweep selects them."""

    def due(self, now, limit=50):
        selected = super().due(now, limit)
        for delivery in selected:
            self.cancel_for_project(delivery.project_id)
        return selected


async def test_sweep_skips_delivery_cancelled_after_selection(sessions, clock):
    posts = []

    def handler(request):
        posts.append(request)
        return httpx.Response(500)

    dispatcher = WebhookDispatcher(
        store=CancelAfterSelectStore(sessions),
        transport=httpx.MockTransport(handler),
        clock=clock,
    )
    project_id = uuid4()
    delivery = await dispatcher.deliver(project_id, {}, "https://hooks.example.com/x")
    assert len(posts) == 1

    clock.now = delivery.next_retry_at
    await dispatcher.retry_due()

    assert len(posts) == 1
    delivery = dispatcher.list_for_project(project_id)[0]
    assert delivery.status == WebhookStatus.CANCELLED
    assert delivery.attempts == 1
