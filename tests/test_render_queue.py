import threading
from datetime import timedelta
from uuid import uuid4

import pytest

from director.errors import ClaimConflict, InvalidTransition, NotFoundError, ValidationError
from director.models.domain import RenderStatus
from director.queue.render_queue import RenderQueue
from director.services.retry import linear_backoff
from director.storage.stores import RenderQueueStore


class FakeProjects:
    def __init__(self, artifacts=None):
        self.artifacts = artifacts or {}
        self.subtitle_styles = []

    def final_artifact(self, project_id):
        return self.artifacts.get(project_id)

    async def subtitles(self, project_id, subtitle_style=None):
        self.subtitle_styles.append(subtitle_style)
        return "/video-assets/renders/subs.srt"


class FakeRenderer:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def render(self, input_uri, spec, output_key, subtitle_uri=None):
        self.calls.append((input_uri, spec, output_key, subtitle_uri))
        if self.fail:
            raise RuntimeError("ffmpeg crashed")
        return f"/video-assets/{output_key}"


def make_queue(sessions, clock, renderer=None, projects=None, max_attempts=3):
    return RenderQueue(
        store=RenderQueueStore(sessions),
        renderer=renderer or FakeRenderer(),
        projects=projects or FakeProjects(),
        max_attempts=max_attempts,
        backoff=linear_backoff(300),
        clock=clock,
    )


def test_create_and_read_back(sessions, clock):
    queue = make_queue(sessions, clock)
    project_id = uuid4()

    job_id = queue.create_render_job(project_id, "9:16", True, subtitle_style="impact", priority=2)
    entry = queue.get_render_job_status(job_id)

    assert entry.status == RenderStatus.PENDING
    assert entry.project_id == project_id
    assert entry.priority == 2
    assert entry.attempts == 0
    assert entry.max_attempts == 3


def test_invalid_aspect_ratio_and_unknown_job(sessions, clock):
    queue = make_queue(sessions, clock)
    with pytest.raises(ValidationError):
        queue.create_render_job(uuid4(), "4:3", False)
    with pytest.raises(NotFoundError):
        queue.get_render_job_status(uuid4())


def test_claim_order_is_priority_then_fifo(sessions, clock):
    queue = make_queue(sessions, clock)
    first_low = queue.create_render_job(uuid4(), "16:9", False, priority=0)
    clock.now += timedelta(seconds=1)
    high = queue.create_render_job(uuid4(), "16:9", False, priority=5)
    clock.now += timedelta(seconds=1)
    second_low = queue.create_render_job(uuid4(), "16:9", False, priority=0)

    order = [queue.claim_next().id for _ in range(3)]

    assert order == [high, first_low, second_low]
    assert queue.claim_next() is None


def test_claim_increments_attempts(sessions, clock):
    queue = make_queue(sessions, clock)
    job_id = queue.create_render_job(uuid4(), "1:1", False)

    entry = queue.claim_next()

    assert entry.id == job_id
    assert entry.status == RenderStatus.PROCESSING
    assert entry.attempts == 1
    assert entry.started_at == clock.now


def test_exactly_one_worker_claims(sessions, clock):
    store = RenderQueueStore(sessions)
    queue = make_queue(sessions, clock)
    job_id = queue.create_render_job(uuid4(), "16:9", False)
    barrier = threading.Barrier(2)
    results = []

    def worker():
        barrier.wait()
        try:
            store.claim(job_id, clock.now)
        except ClaimConflict:
            results.append(False)
        else:
            results.append(True)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == [False, True]
    assert queue.get_render_job_status(job_id).attempts == 1


class RivalClaimStore(RenderQueueStore):
    """Another worker claims the head candidate right after it is selected."""

    def pending_candidates(self, now, limit=10):
        candidates = super().pending_candidates(now, limit)
        if candidates:
            super().claim(candidates[0].id, now)
        return candidates


def test_lost_claim_moves_on_to_next_candidate(sessions, clock):
    queue = RenderQueue(
        store=RivalClaimStore(sessions), renderer=FakeRenderer(), projects=FakeProjects(), clock=clock
    )
    first = queue.create_render_job(uuid4(), "16:9", False, priority=1)
    clock.now += timedelta(seconds=1)
    second = queue.create_render_job(uuid4(), "16:9", False, priority=0)

    entry = queue.claim_next()

    assert entry.id == second
    assert entry.attempts == 1
    rival = queue.get_render_job_status(first)
    assert rival.status == RenderStatus.PROCESSING
    assert rival.attempts == 1


def test_racing_workers_claim_different_entries(sessions, clock):
    queue = make_queue(sessions, clock)
    created = {queue.create_render_job(uuid4(), "16:9", False) for _ in range(2)}
    barrier = threading.Barrier(2)
    claimed = []

    def worker():
        barrier.wait()
        entry = queue.claim_next()
        claimed.append(entry.id if entry else None)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert set(claimed) == created


async def test_process_next_completes_entry(sessions, clock):
    project_id = uuid4()
    renderer = FakeRenderer()
    projects = FakeProjects({project_id: "/video-assets/final-videos/u/p.mp4"})
    queue = make_queue(sessions, clock, renderer=renderer, projects=projects)
    job_id = queue.create_render_job(project_id, "9:16", True, subtitle_style="minimal")

    entry = await queue.process_next()

    assert entry.status == RenderStatus.COMPLETED
    assert entry.output_url == f"/video-assets/renders/{project_id}/{job_id}_9x16.mp4"
    assert entry.completed_at == clock.now
    source, spec, _, subtitle_uri = renderer.calls[0]
    assert source == "/video-assets/final-videos/u/p.mp4"
    assert spec.crop.width == 607
    assert subtitle_uri == "/video-assets/renders/subs.srt"
    assert projects.subtitle_styles == ["minimal"]


async def test_failure_reschedules_with_linear_backoff(sessions, clock):
    project_id = uuid4()
    queue = make_queue(
        sessions, clock, renderer=FakeRenderer(fail=True), projects=FakeProjects({project_id: "/video-assets/x.mp4"})
    )
    job_id = queue.create_render_job(project_id, "16:9", False)

    entry = await queue.process_next()

    assert entry.status == RenderStatus.PENDING
    assert entry.attempts == 1
    assert entry.next_retry_at == clock.now + timedelta(seconds=300)
    assert entry.error_message == "ffmpeg crashed"
    assert await queue.process_next() is None

    clock.now += timedelta(seconds=300)
    entry = await queue.process_next()
    assert entry.attempts == 2
    assert entry.next_retry_at == clock.now + timedelta(seconds=600)
    assert queue.get_render_job_status(job_id).status == RenderStatus.PENDING


async def test_attempts_never_exceed_max_and_failure_is_terminal(sessions, clock):
    project_id = uuid4()
    queue = make_queue(
        sessions,
        clock,
        renderer=FakeRenderer(fail=True),
        projects=FakeProjects({project_id: "/video-assets/x.mp4"}),
        max_attempts=2,
    )
    job_id = queue.create_render_job(project_id, "16:9", False)

    for _ in range(5):
        await queue.process_next()
        clock.now += timedelta(hours=1)
        entry = queue.get_render_job_status(job_id)
        assert entry.attempts <= entry.max_attempts

    entry = queue.get_render_job_status(job_id)
    assert entry.status == RenderStatus.FAILED
    assert entry.attempts == 2
    assert queue.claim_next() is None


async def test_project_without_video_fails_the_attempt(sessions, clock):
    queue = make_queue(sessions, clock, max_attempts=1)
    queue.create_render_job(uuid4(), "16:9", False)

    entry = await queue.process_next()

    assert entry.status == RenderStatus.FAILED
    assert "no completed video" in entry.error_message


async def test_retry_render_job_resets_failed_entry(sessions, clock):
    queue = make_queue(sessions, clock, max_attempts=1)
    job_id = queue.create_render_job(uuid4(), "16:9", False)
    await queue.process_next()

    entry = queue.retry_render_job(job_id)

    assert entry.status == RenderStatus.PENDING
    assert entry.attempts == 0
    assert entry.error_message is None
    with pytest.raises(InvalidTransition):
        queue.retry_render_job(job_id)


async def test_stats(sessions, clock):
    queue = make_queue(sessions, clock, max_attempts=1)
    queue.create_render_job(uuid4(), "16:9", False)
    queue.create_render_job(uuid4(), "16:9", False)
    await queue.process_next()

    assert queue.stats() == {"pending": 1, "processing": 0, "completed": 0, "failed": 1, "total": 2}
