"""Background process: generation jobs from Kafka plus the periodic sweeps.

The sweeps drain the render queue, retry due webhooks and run scheduled
deletions. Every state change they make is a conditional update, so any
number of worker processes can run side by side.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from director.config import Settings, get_settings
from director.queue.queue import BaseQueue, KafkaQueue
from director.services.container import Container, build_container

log = logging.getLogger(__name__)


async def _every(name: str, interval: float, tick: Callable[[], Awaitable[object]]) -> None:
    while True:
        try:
            await tick()
        except Exception:
            log.exception("periodic task failed", extra={"task": name})
        await asyncio.sleep(interval)


async def _drain_render_queue(container: Container) -> None:
    while await container.render_queue.process_next() is not None:
        pass


async def run(container: Container) -> None:
    settings = container.settings
    await asyncio.gather(
        _every("render-queue", settings.render_poll_interval_seconds, lambda: _drain_render_queue(container)),
        _every("webhook-retry", settings.webhook_sweep_interval_seconds, container.webhooks.retry_due),
        _every("cleanup-sweep", settings.cleanup_sweep_interval_seconds, container.cleanup.sweep),
    )


def _job_consumer(settings: Settings, container: Container) -> BaseQueue | None:
    if not settings.kafka_enabled:
        return None
    return KafkaQueue(
        bootstrap_servers=settings.kafka_bootstrap_servers,
        topic=settings.kafka_topic,
        group_id=settings.kafka_group_id,
        processor=container.orchestrator.process_job,
    )


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    settings = get_settings()
    container = build_container(settings)
    jobs = _job_consumer(settings, container)
    log.info("director worker started", extra={"kafka": jobs is not None})
    try:
        asyncio.run(run(container))
    except KeyboardInterrupt:
        log.info("director worker stopped")
    finally:
        if jobs is not None:
            jobs.close()
        if container.events is not None:
            container.events.close()


if __name__ == "__main__":
    main()
