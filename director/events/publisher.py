from __future__ import annotations

import json
import logging
from typing import Any

from kafka import KafkaProducer

from director.models.domain import GenerationJob, RenderQueueEntry


class JobEventPublisher:
    """Publishes generation job and render entry snapshots to Kafka."""

    def __init__(self, bootstrap_servers: str, topic: str, logger: logging.Logger | None = None) -> None:
        if not bootstrap_servers:
            raise ValueError("bootstrap_servers is required")
        if not topic:
            raise ValueError("topic is required")
        self._topic = topic
        self._logger = logger or logging.getLogger(__name__)
        self._producer = KafkaProducer(
            bootstrap_servers=bootstrap_servers,
            value_serializer=lambda payload: json.dumps(payload, ensure_ascii=False).encode("utf-8"),
            linger_ms=5,
        )

    def publish_job(self, job: GenerationJob, extras: dict[str, Any] | None = None) -> None:
        payload: dict[str, Any] = {"type": "generation_job", "job": job.model_dump(mode="json")}
        if extras:
            payload.update(extras)
        self._send(payload, key=str(job.id))

    def publish_render(self, entry: RenderQueueEntry) -> None:
        payload = {"type": "render_job", "job": entry.model_dump(mode="json")}
        self._send(payload, key=str(entry.id))

    def _send(self, payload: dict[str, Any], key: str) -> None:
        try:
            self._producer.send(self._topic, payload)
        except Exception:
            self._logger.warning(
                "failed to publish job event",
                extra={"job_id": key, "topic": self._topic},
                exc_info=True,
            )

    def close(self) -> None:
        try:
            self._producer.flush()
            self._producer.close()
        except Exception:
            self._logger.debug("job event publisher close failed", exc_info=True)
