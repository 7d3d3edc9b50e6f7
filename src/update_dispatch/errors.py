from __future__ import annotations


class DispatchError(Exception):
    """Base class for errors raised by the dispatcher and its adapters."""


class GatewayUnavailable(DispatchError):
    """The knowledge store could not answer a query."""


class SinkRejected(DispatchError):
    """The task queue refused or failed a batch submission."""


class SnapshotError(DispatchError):
    """A serialized semantic data snapshot could not be decoded."""


class PlanAlreadyFlushed(DispatchError):
    """A dispatch plan was flushed or discarded twice."""
