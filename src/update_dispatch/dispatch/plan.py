from __future__ import annotations

import json
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from update_dispatch.errors import PlanAlreadyFlushed
from update_dispatch.knowledge_graph.models import EntityReference


@dataclass(frozen=True, slots=True)
class UpdateTask:
    """Recompute the derived data of one page."""

    target: EntityReference

    @property
    def key(self) -> str:
        return self.target.canonical_key

    def to_payload(self) -> dict[str, Any]:
        return {"type": "update", "title": self.key, "subject": self.target.serialize()}

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), sort_keys=True, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str | bytes) -> UpdateTask:
        payload = json.loads(raw)
        return cls(target=EntityReference.deserialize(payload["subject"]))


class DispatchPlan:
    """Ordered set of pending update tasks for one dispatch run.

    At most one task exists per canonical key; the first reference seen for a
    key wins. References without a backing page are skipped.
    """

    def __init__(self) -> None:
        self._tasks: list[UpdateTask] = []
        self._keys: set[str] = set()
        self._closed = False

    def fold(self, candidates: Iterable[EntityReference]) -> int:
        added = 0
        for ref in candidates:
            target = ref.page()
            if target is None:
                continue
            key = target.canonical_key
            if key in self._keys:
                continue
            self._keys.add(key)
            self._tasks.append(UpdateTask(target))
            added += 1
        return added

    def flush(self) -> list[UpdateTask]:
        self._close()
        tasks = self._tasks
        self._tasks = []
        self._keys = set()
        return tasks

    def discard(self) -> None:
        self._close()
        self._tasks = []
        self._keys = set()

    def _close(self) -> None:
        if self._closed:
            raise PlanAlreadyFlushed("dispatch plan was already flushed or discarded")
        self._closed = True

    def keys(self) -> list[str]:
        return [t.key for t in self._tasks]

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[UpdateTask]:
        return iter(list(self._tasks))

    def __contains__(self, item: object) -> bool:
        if isinstance(item, EntityReference):
            target = item.page()
            return target is not None and target.canonical_key in self._keys
        return item in self._keys

    def __repr__(self) -> str:
        return f"DispatchPlan(tasks={len(self._tasks)})"
