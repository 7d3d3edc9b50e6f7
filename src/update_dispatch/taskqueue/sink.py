from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol, TypeVar

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter

from update_dispatch.dispatch.plan import UpdateTask
from update_dispatch.errors import SinkRejected

if TYPE_CHECKING:
    from update_dispatch.settings import DispatchSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

TransientRedisError = (RedisConnectionError, RedisTimeoutError)

# KEYS[1] = pending set, KEYS[2] = queue; ARGV = key1, payload1, key2, payload2, ...
_SUBMIT_LUA = """
local pushed = 0
for i = 1, #ARGV, 2 do
  if redis.call('SADD', KEYS[1], ARGV[i]) == 1 then
    redis.call('LPUSH', KEYS[2], ARGV[i + 1])
    pushed = pushed + 1
  end
end
return pushed
"""

# KEYS[1] = queue, KEYS[2] = pending set. Pop and clear the key in one step so a
# consumed task never leaves its key pending.
_POP_LUA = """
local raw = redis.call('RPOP', KEYS[1])
if not raw then
  return false
end
local ok, payload = pcall(cjson.decode, raw)
if ok and type(payload) == 'table' and payload['title'] then
  redis.call('SREM', KEYS[2], payload['title'])
end
return raw
"""


class TaskQueueSink(Protocol):
    def submit(self, batch: list[UpdateTask]) -> int: ...


def call_with_retry(fn: Callable[[], T], *, attempts: int, wait: float) -> T:
    """Run `fn`, retrying transient Redis errors; anything else is SinkRejected."""

    retrying = Retrying(
        reraise=True,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential_jitter(initial=wait, max=5.0, jitter=wait),
        retry=retry_if_exception_type(TransientRedisError),
    )
    try:
        return retrying(fn)
    except RedisError as e:
        raise SinkRejected(f"task queue rejected the request: {e}") from e


class RedisTaskQueue:
    """Update task queue on a Redis list.

    A pending set holds the canonical keys of queued tasks; a task whose key
    is already pending is coalesced instead of pushed again. Consumers take
    tasks with `pop`, which clears the key in the same script so the page can
    be queued again.
    """

    def __init__(
        self,
        client: Any,
        *,
        queue_name: str,
        pending_key: str,
        retry_attempts: int = 3,
        retry_wait: float = 0.2,
        poll_interval: float = 0.5,
    ):
        self.client = client
        self.queue_name = queue_name
        self.pending_key = pending_key
        self.retry_attempts = retry_attempts
        self.retry_wait = retry_wait
        self.poll_interval = poll_interval
        self._submit_script = client.register_script(_SUBMIT_LUA)
        self._pop_script = client.register_script(_POP_LUA)

    @classmethod
    def from_settings(cls, s: DispatchSettings) -> RedisTaskQueue:
        return cls(
            redis.Redis.from_url(s.redis_url),
            queue_name=s.update_queue_name,
            pending_key=s.pending_set_name,
            retry_attempts=s.retry_attempts,
        )

    def submit(self, batch: list[UpdateTask]) -> int:
        if not batch:
            return 0
        args: list[str] = []
        for task in batch:
            args.extend((task.key, task.to_json()))

        pushed = self._call(lambda: self._submit_script(keys=[self.pending_key, self.queue_name], args=args))
        pushed = int(pushed or 0)
        if pushed < len(batch):
            logger.debug("Coalesced %d already pending task(s)", len(batch) - pushed)
        return pushed

    def pop(self, timeout: float = 5) -> UpdateTask | None:
        """Next task, or None once `timeout` seconds pass with the queue empty.

        Undecodable payloads are logged and skipped.
        """

        deadline = time.monotonic() + timeout
        while True:
            raw = self._call(lambda: self._pop_script(keys=[self.queue_name, self.pending_key]))
            if raw:
                try:
                    return UpdateTask.from_json(raw)
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning("Dropping undecodable update task %r: %s", raw, e)
                    continue
            if time.monotonic() >= deadline:
                return None
            time.sleep(self.poll_interval)

    def _call(self, fn: Callable[[], T]) -> T:
        return call_with_retry(fn, attempts=self.retry_attempts, wait=self.retry_wait)
