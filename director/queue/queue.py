from __future__ import annotations

import json
import logging
import threading
import time
from queue import Queue
from typing import Callable, List, Optional
from uuid import UUID

from kafka import KafkaConsumer, KafkaProducer

log = logging.getLogger(__name__)

JobProcessor = Callable[[UUID], None]


class BaseQueue:
    """Hands generation job ids to whatever runs the pipeline."""

    def enqueue(self, job_id: UUID) -> None:  # pragma: no cover
        raise NotImplementedError

    def close(self) -> None:
        return None


def _run_job(processor: JobProcessor, job_id: UUID) -> None:
    started = time.monotonic()
    try:
        processor(job_id)
    except Exception:
        log.exception("generation job crashed", extra={"job_id": str(job_id)})
        return
    log.info(
        "generation job finished",
        extra={"job_id": str(job_id), "seconds": round(time.monotonic() - started, 2)},
    )


class LocalQueue(BaseQueue):
    """In-process dispatch to a small pool of daemon threads.

    With one worker, jobs run in arrival order. Each job gets its own event
    loop inside ``processor``, so workers never share asyncio state.
    """

    def __init__(self, processor: JobProcessor, workers: int = 1) -> None:
        self._processor = processor
        self._jobs: Queue[Optional[UUID]] = Queue()
        self._threads: List[threading.Thread] = []
        for index in range(max(1, workers)):
            thread = threading.Thread(target=self._work, name=f"generation-jobs-{index}", daemon=True)
            thread.start()
            self._threads.append(thread)

    def enqueue(self, job_id: UUID) -> None:
        self._jobs.put(job_id)

    def join(self) -> None:
        """Block until every queued job has been processed."""
        self._jobs.join()

    def close(self) -> None:
        for _ in self._threads:
            self._jobs.put(None)

    def _work(self) -> None:
        while True:
            job_id = self._jobs.get()
            try:
                if job_id is None:
                    return
                _run_job(self._processor, job_id)
            finally:
                self._jobs.task_done()


class KafkaQueue(BaseQueue):
    """Dispatch through a Kafka topic shared by every API and worker process.

    Offsets are committed only after a job has been processed, so a worker
    that dies mid-job leaves the message for the next consumer. The pipeline
    ignores terminal jobs, which makes a redelivery harmless.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        group_id: str,
        processor: JobProcessor,
        consume: bool = True,
    ) -> None:
        self._topic = topic
        self._processor = processor
        self._producer = KafkaProducer(
            bootstrap_servers=bootstrap_servers,
            key_serializer=lambda key: key.encode("utf-8"),
            value_serializer=lambda value: json.dumps(value).encode("utf-8"),
        )
        self._consumer: KafkaConsumer | None = None
        self._stopping = threading.Event()
        if consume:
            self._consumer = KafkaConsumer(
                topic,
                bootstrap_servers=bootstrap_servers,
                group_id=group_id,
                auto_offset_reset="earliest",
                enable_auto_commit=False,
            )
            self._thread = threading.Thread(target=self._consume, name="generation-jobs-kafka", daemon=True)
            self._thread.start()

    def enqueue(self, job_id: UUID) -> None:
        payload = {"job_id": str(job_id), "ts": time.time()}
        self._producer.send(self._topic, key=str(job_id), value=payload)
        self._producer.flush()

    def close(self) -> None:
        self._stopping.set()
        self._producer.close()

    def _consume(self) -> None:
        assert self._consumer is not None
        for message in self._consumer:
            if self._stopping.is_set():
                break
            job_id = parse_job_message(message.value)
            if job_id is None:
                log.warning(
                    "skipping malformed job message",
                    extra={"topic": self._topic, "offset": message.offset},
                )
            else:
                _run_job(self._processor, job_id)
            self._consumer.commit()
        self._consumer.close()


def parse_job_message(raw: bytes) -> UUID | None:
    try:
        return UUID(json.loads(raw.decode("utf-8"))["job_id"])
    except (ValueError, KeyError, TypeError, AttributeError):
        return None
