from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from update_dispatch.errors import SnapshotError

from .models import EntityReference, Property


class DataItem(BaseModel):
    type: int
    item: str


class PropertyValues(BaseModel):
    property: str
    dataitem: list[DataItem] = Field(default_factory=list)


class SemanticDataSnapshot(BaseModel):
    """Serialized semantic data of one subject, as passed along with a change.

    Only the subject and the list of properties matter for dispatch; values
    are kept so that a snapshot survives a round trip through a job queue.
    """

    subject: str
    data: list[PropertyValues] = Field(default_factory=list)
    serializer: str = "SMW\\SemanticDataSerializer"
    version: float = 0.1

    def get_subject(self) -> EntityReference:
        return EntityReference.deserialize(self.subject)

    def get_properties(self) -> list[Property]:
        seen: set[str] = set()
        out: list[Property] = []
        for pv in self.data:
            if pv.property in seen:
                continue
            seen.add(pv.property)
            out.append(Property(pv.property))
        return out


def deserialize_snapshot(payload: str | bytes | dict[str, Any]) -> SemanticDataSnapshot:
    try:
        if isinstance(payload, (str, bytes, bytearray)):
            snap = SemanticDataSnapshot.model_validate_json(payload)
        else:
            snap = SemanticDataSnapshot.model_validate(payload)
        snap.get_subject()
    except (ValidationError, ValueError) as e:
        raise SnapshotError(f"invalid semantic data snapshot: {e}") from e
    return snap


def snapshot_to_json(payload: str | bytes | dict[str, Any] | None) -> str | None:
    """Normalize a snapshot payload for transport in a queued job."""

    if payload is None:
        return None
    if isinstance(payload, (bytes, bytearray)):
        return payload.decode("utf-8")
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, sort_keys=True, ensure_ascii=False)
