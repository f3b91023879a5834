"""Error taxonomy shared by acquisition, assembly and the job front-ends.

Every error carries a ``fault`` tag. Caller faults mean the request has to be
fixed before it is resubmitted; system faults are outside the caller's
control. Front-ends never inspect the concrete exception type, only the
:class:`domain.results.JobResult` built from it.
"""

from __future__ import annotations

CALLER_FAULT = 'caller'
SYSTEM_FAULT = 'system'


class MapPackerError(Exception):
    """Base class for all domain errors."""

    fault: str = SYSTEM_FAULT

    @property
    def is_caller_fault(self) -> bool:
        return self.fault == CALLER_FAULT


class InvalidInput(MapPackerError):
    """Bad or missing bounds, zoom, credentials or overlay."""

    fault = CALLER_FAULT


class InvalidRange(InvalidInput):
    """Tile range is non-finite or inverted."""


class UnsupportedSource(MapPackerError):
    """Style references a URL scheme the resolver cannot service."""

    fault = CALLER_FAULT


class MissingSource(MapPackerError):
    """Style references a local container file that is not on disk."""

    fault = CALLER_FAULT


class AcquisitionFailed(MapPackerError):
    """No tile at all could be obtained for the whole zoom range."""

    fault = SYSTEM_FAULT


class RenderFailed(MapPackerError):
    """A single tile could not be rendered or encoded."""

    fault = SYSTEM_FAULT

    def __init__(self, zoom: int, x: int, y: int, reason: object) -> None:
        self.zoom = zoom
        self.x = x
        self.y = y
        super().__init__(f'Tile {zoom}/{x}/{y} failed to render: {reason}')


class StorageFailed(MapPackerError):
    """Output container could not be opened, written or finalized."""

    fault = SYSTEM_FAULT


class EngineUnavailable(MapPackerError):
    """The configured rendering engine cannot be loaded."""

    fault = SYSTEM_FAULT
