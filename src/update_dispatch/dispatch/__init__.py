from .engine import ChangedEntity, ChangeKind, DispatchEngine, DispatchResult
from .hooks import PROPERTY_DISPATCH, HookRegistry
from .plan import DispatchPlan, UpdateTask

__all__ = [
    "ChangedEntity",
    "ChangeKind",
    "DispatchEngine",
    "DispatchResult",
    "PROPERTY_DISPATCH",
    "HookRegistry",
    "DispatchPlan",
    "UpdateTask",
]
