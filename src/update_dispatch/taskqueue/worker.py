from __future__ import annotations

import logging

from update_dispatch.dispatch.engine import DispatchEngine
from update_dispatch.errors import DispatchError, GatewayUnavailable, SinkRejected, SnapshotError

from .jobs import DispatchJobQueue, MalformedJob

logger = logging.getLogger(__name__)

# A failed run is re-queued this many times before it is dropped.
MAX_REQUEUE = 1


def run_worker(
    engine: DispatchEngine,
    jobs: DispatchJobQueue,
    *,
    max_jobs: int | None = None,
    timeout: int = 5,
) -> int:
    """Run queued dispatch jobs; returns the number of jobs processed.

    Runs forever unless `max_jobs` is set. A job that fails is logged and
    never stops the loop.
    """

    processed = 0
    while max_jobs is None or processed < max_jobs:
        try:
            item = jobs.pop(timeout=timeout)
        except MalformedJob as e:
            logger.warning("Dropping dispatch job: %s", e)
            processed += 1
            continue
        if item is None:
            if max_jobs is not None:
                break
            continue

        change, attempt = item
        processed += 1
        try:
            result = engine.dispatch(change)
        except SnapshotError as e:
            logger.warning("Dropping dispatch job for %s: %s", change.subject, e)
            continue
        except (GatewayUnavailable, SinkRejected) as e:
            if attempt >= MAX_REQUEUE:
                logger.error("Dispatch for %s failed after %d attempt(s): %s", change.subject, attempt + 1, e)
                continue
            logger.warning("Dispatch for %s failed, re-queueing: %s", change.subject, e)
            try:
                jobs.insert(change, attempt=attempt + 1)
            except DispatchError:
                logger.exception("Could not re-queue dispatch job for %s", change.subject)
            continue
        except Exception:
            # A broken listener or gateway bug fails this job only.
            logger.exception("Dispatch job for %s crashed", change.subject)
            continue

        logger.debug("Dispatch job for %s emitted %d task(s)", change.subject, result.tasks_emitted)

    return processed
