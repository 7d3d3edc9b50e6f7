from __future__ import annotations

from typing import Protocol

from .models import EntityReference, Property


class KnowledgeStore(Protocol):
    """Read-only query surface of the backing knowledge store.

    Property lookups return built-in and user-defined properties together;
    callers filter.
    """

    def get_properties(self, subject: EntityReference) -> list[Property]: ...

    def get_in_properties(self, subject: EntityReference) -> list[Property]: ...

    def get_all_property_subjects(self, prop: Property) -> list[EntityReference]: ...

    def get_property_subjects(
        self, prop: Property, value: EntityReference
    ) -> list[EntityReference]: ...
