from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from update_dispatch.knowledge_graph.models import NS_PROPERTY, TYPE_ERROR, EntityReference, Property
from update_dispatch.knowledge_graph.snapshot import deserialize_snapshot
from update_dispatch.knowledge_graph.store import KnowledgeStore
from update_dispatch.settings import settings

from .hooks import PROPERTY_DISPATCH, HookRegistry
from .plan import DispatchPlan

if TYPE_CHECKING:
    from update_dispatch.taskqueue.sink import TaskQueueSink

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    SUBJECT = "subject"
    PROPERTY = "property"


@dataclass(frozen=True, slots=True)
class ChangedEntity:
    """The trigger of a dispatch run.

    `snapshot` is the serialized semantic data of a changed subject; it is
    ignored for property changes.
    """

    kind: ChangeKind
    subject: EntityReference
    snapshot: str | dict[str, Any] | None = None

    @classmethod
    def from_title(cls, ref: EntityReference, snapshot: str | dict[str, Any] | None = None) -> ChangedEntity:
        if ref.namespace == NS_PROPERTY:
            return cls(kind=ChangeKind.PROPERTY, subject=ref)
        return cls(kind=ChangeKind.SUBJECT, subject=ref, snapshot=snapshot)

    @classmethod
    def for_property(cls, prop: Property) -> ChangedEntity:
        return cls(kind=ChangeKind.PROPERTY, subject=EntityReference(dbkey=prop.key, namespace=NS_PROPERTY))

    @property
    def as_property(self) -> Property:
        return Property.from_user_label(self.subject.text)


@dataclass(frozen=True, slots=True)
class DispatchResult:
    tasks_emitted: int
    keys: tuple[str, ...] = field(default=())


class DispatchEngine:
    """Works out which pages to update after a change and queues them once.

    A subject change fans out over every user-defined property the subject
    carries or is pointed at by (plus the properties of an attached snapshot);
    a property change fans out over the property itself, then lets hook
    listeners extend the plan, then re-checks subjects that reported a type
    error against the changed page. Only the queue submission writes
    anything, and only when dispatch is enabled.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        sink: TaskQueueSink,
        *,
        hooks: HookRegistry | None = None,
        enabled: bool | None = None,
    ):
        self.store = store
        self.sink = sink
        self.hooks = hooks or HookRegistry()
        self.enabled = settings.enable_update_jobs if enabled is None else enabled

    def disable(self) -> DispatchEngine:
        """Stop handing plans to the queue; runs still resolve their plan."""

        self.enabled = False
        return self

    def dispatch(self, change: ChangedEntity, enabled: bool | None = None) -> DispatchResult:
        plan = self.resolve(change)

        if enabled is None:
            enabled = self.enabled
        if not enabled:
            logger.info(
                "Dispatch disabled; discarding %d task(s) for %s change of %s",
                len(plan),
                change.kind.value,
                change.subject,
            )
            plan.discard()
            return DispatchResult(tasks_emitted=0)

        batch = plan.flush()
        if batch:
            self.sink.submit(batch)
        logger.info("Dispatched %d update task(s) for %s change of %s", len(batch), change.kind.value, change.subject)
        return DispatchResult(tasks_emitted=len(batch), keys=tuple(t.key for t in batch))

    def resolve(self, change: ChangedEntity) -> DispatchPlan:
        plan = DispatchPlan()
        # Gateway lookups use the normalized page, never a subobject.
        target = change.subject.page()
        if target is None:
            logger.warning("Changed entity %r has no backing page; nothing to dispatch", change.subject)
            return plan

        if change.kind is ChangeKind.PROPERTY:
            self._property_fanout(plan, change, target)
        else:
            self._subject_fanout(plan, change, target)
        return plan

    def _subject_fanout(self, plan: DispatchPlan, change: ChangedEntity, target: EntityReference) -> None:
        self._fold_properties(plan, self.store.get_properties(target))
        self._fold_properties(plan, self.store.get_in_properties(target))

        if change.snapshot is not None:
            snapshot = deserialize_snapshot(change.snapshot)
            self._fold_properties(plan, snapshot.get_properties())

    def _property_fanout(self, plan: DispatchPlan, change: ChangedEntity, target: EntityReference) -> None:
        prop = change.as_property
        self._fold_properties(plan, [prop])

        self.hooks.notify(PROPERTY_DISPATCH, plan, prop)

        # A changed property may resolve a type mismatch reported earlier.
        flagged = self.store.get_property_subjects(TYPE_ERROR, target)
        added = plan.fold(flagged)
        logger.debug("Type error rescan for %s added %d of %d subject(s)", target, added, len(flagged))

    def _fold_properties(self, plan: DispatchPlan, properties: list[Property]) -> None:
        for prop in properties:
            if not prop.is_user_defined:
                continue
            subjects = self.store.get_all_property_subjects(prop)
            added = plan.fold(subjects)
            logger.debug("Property %s: %d subject(s), %d new", prop.key, len(subjects), added)
