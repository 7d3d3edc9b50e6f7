"""Knowledge graph vocabulary and store access.

This module provides:
- Entity references and properties with their canonical keys
- The semantic data snapshot format passed along with subject changes
- A read-only store protocol + Neo4j implementation
"""

from .models import TYPE_ERROR, EntityReference, Property
from .snapshot import SemanticDataSnapshot, deserialize_snapshot
from .store import KnowledgeStore

__all__ = [
    "TYPE_ERROR",
    "EntityReference",
    "Property",
    "SemanticDataSnapshot",
    "deserialize_snapshot",
    "KnowledgeStore",
]
