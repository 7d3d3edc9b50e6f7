"""Shared fakes for the dispatcher tests."""

from __future__ import annotations

import pytest

from update_dispatch.errors import GatewayUnavailable, SinkRejected
from update_dispatch.knowledge_graph.models import EntityReference, Property


class FakeStore:
    """In-memory knowledge store keyed by canonical key / property key."""

    def __init__(self) -> None:
        self.properties: dict[str, list[Property]] = {}
        self.in_properties: dict[str, list[Property]] = {}
        self.subjects: dict[str, list[EntityReference]] = {}
        self.flagged: dict[tuple[str, str], list[EntityReference]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_on: str | None = None

    def _call(self, name: str, arg: str) -> None:
        self.calls.append((name, arg))
        if self.fail_on == name:
            raise GatewayUnavailable(f"{name} failed")

    def get_properties(self, subject: EntityReference) -> list[Property]:
        self._call("get_properties", subject.canonical_key)
        return list(self.properties.get(subject.canonical_key, []))

    def get_in_properties(self, subject: EntityReference) -> list[Property]:
        self._call("get_in_properties", subject.canonical_key)
        return list(self.in_properties.get(subject.canonical_key, []))

    def get_all_property_subjects(self, prop: Property) -> list[EntityReference]:
        self._call("get_all_property_subjects", prop.key)
        return list(self.subjects.get(prop.key, []))

    def get_property_subjects(self, prop: Property, value: EntityReference) -> list[EntityReference]:
        self._call("get_property_subjects", f"{prop.key}={value.canonical_key}")
        return list(self.flagged.get((prop.key, value.canonical_key), []))


class RecordingSink:
    def __init__(self) -> None:
        self.batches: list[list] = []
        self.fail = False

    def submit(self, batch: list) -> int:
        if self.fail:
            raise SinkRejected("queue unavailable")
        self.batches.append(list(batch))
        return len(batch)


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
