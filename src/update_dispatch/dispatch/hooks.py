from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from typing import TYPE_CHECKING

from update_dispatch.knowledge_graph.models import Property

if TYPE_CHECKING:
    from .plan import DispatchPlan

logger = logging.getLogger(__name__)

PROPERTY_DISPATCH = "property-dispatch"

Listener = Callable[["DispatchPlan", Property], None]


class HookRegistry:
    """Listeners that may add targets to an in-flight plan.

    Listeners run synchronously, in registration order, and only get the plan
    itself, so anything they add goes through `DispatchPlan.fold`. Errors
    raised by a listener abort the run.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def register(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def unregister(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def listeners(self, event: str) -> list[Listener]:
        return list(self._listeners.get(event, ()))

    def notify(self, event: str, plan: DispatchPlan, prop: Property) -> None:
        for listener in self.listeners(event):
            before = len(plan)
            listener(plan, prop)
            logger.debug("%s listener %r added %d target(s)", event, listener, len(plan) - before)
