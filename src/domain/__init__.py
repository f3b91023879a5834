"""Domain layer - job models, errors and results."""
from domain.errors import (
    AcquisitionFailed,
    EngineUnavailable,
    InvalidInput,
    InvalidRange,
    MapPackerError,
    MissingSource,
    RenderFailed,
    StorageFailed,
    UnsupportedSource,
)
from domain.models import (
    AcquisitionJob,
    ArchiveJob,
    BoundingBox,
    Credentials,
    TileCoordinate,
    TileJSON,
    ZoomRange,
)
from domain.results import JobResult, JobStatus

__all__ = [
    'AcquisitionFailed',
    'AcquisitionJob',
    'ArchiveJob',
    'BoundingBox',
    'Credentials',
    'EngineUnavailable',
    'InvalidInput',
    'InvalidRange',
    'JobResult',
    'JobStatus',
    'MapPackerError',
    'MissingSource',
    'RenderFailed',
    'StorageFailed',
    'TileCoordinate',
    'TileJSON',
    'UnsupportedSource',
    'ZoomRange',
]
