from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import redis

from update_dispatch.dispatch.engine import ChangedEntity
from update_dispatch.knowledge_graph.models import EntityReference
from update_dispatch.knowledge_graph.snapshot import snapshot_to_json

from .sink import call_with_retry

if TYPE_CHECKING:
    from update_dispatch.settings import DispatchSettings

logger = logging.getLogger(__name__)


class MalformedJob(ValueError):
    pass


def encode_job(change: ChangedEntity, *, attempt: int = 0) -> str:
    payload = {
        "title": change.subject.serialize(),
        "snapshot": snapshot_to_json(change.snapshot),
        "attempt": attempt,
    }
    return json.dumps(payload, sort_keys=True, ensure_ascii=False)


def decode_job(raw: str | bytes) -> tuple[ChangedEntity, int]:
    try:
        payload = json.loads(raw)
        ref = EntityReference.deserialize(payload["title"])
    except (ValueError, KeyError, TypeError) as e:
        raise MalformedJob(f"malformed dispatch job: {raw!r}") from e
    return ChangedEntity.from_title(ref, payload.get("snapshot")), int(payload.get("attempt") or 0)


class DispatchJobQueue:
    """Deferred dispatch runs, queued on a Redis list.

    `insert` is a no-op while update jobs are disabled.
    """

    def __init__(
        self,
        client: Any,
        *,
        queue_name: str,
        enabled: bool = True,
        retry_attempts: int = 3,
        retry_wait: float = 0.2,
    ):
        self.client = client
        self.queue_name = queue_name
        self.enabled = enabled
        self.retry_attempts = retry_attempts
        self.retry_wait = retry_wait

    @classmethod
    def from_settings(cls, s: DispatchSettings) -> DispatchJobQueue:
        return cls(
            redis.Redis.from_url(s.redis_url),
            queue_name=s.dispatch_queue_name,
            enabled=s.enable_update_jobs,
            retry_attempts=s.retry_attempts,
        )

    def insert(self, change: ChangedEntity, *, attempt: int = 0) -> bool:
        if not self.enabled:
            logger.debug("Update jobs disabled; not queueing dispatch for %s", change.subject)
            return False
        raw = encode_job(change, attempt=attempt)
        call_with_retry(
            lambda: self.client.lpush(self.queue_name, raw),
            attempts=self.retry_attempts,
            wait=self.retry_wait,
        )
        return True

    def pop(self, timeout: int = 5) -> tuple[ChangedEntity, int] | None:
        """Next queued change and its attempt counter, or None on timeout."""

        item = call_with_retry(
            lambda: self.client.brpop(self.queue_name, timeout=timeout),
            attempts=self.retry_attempts,
            wait=self.retry_wait,
        )
        if not item:
            return None
        _key, raw = item
        return decode_job(raw)
