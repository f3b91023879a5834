"""Uniform job outcome handed back to the CLI and the queue worker."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from domain.errors import MapPackerError

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    SUCCESS = 'SUCCESS'
    # caller's fault: fix the request, then resubmit
    BAD_REQUEST = 'BadRequest'
    # our fault: out of the caller's control
    INTERNAL_SERVER_ERROR = 'InternalServerError'


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobResult(BaseModel):
    """Immutable job outcome."""

    model_config = ConfigDict(frozen=True)

    status: JobStatus
    error_message: str | None = None
    output_path: str | None = None
    thumbnail_path: str | None = None
    file_size: int | None = None
    tile_count: int | None = None
    tiles_by_zoom: dict[int, int] | None = None
    warnings: tuple[str, ...] = ()
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.SUCCESS

    @classmethod
    def success(
        cls,
        *,
        output_path: str,
        file_size: int,
        tile_count: int,
        tiles_by_zoom: dict[int, int] | None = None,
        thumbnail_path: str | None = None,
        warnings: tuple[str, ...] | list[str] = (),
        started_at: datetime | None = None,
    ) -> JobResult:
        return cls(
            status=JobStatus.SUCCESS,
            output_path=output_path,
            thumbnail_path=thumbnail_path,
            file_size=file_size,
            tile_count=tile_count,
            tiles_by_zoom=tiles_by_zoom,
            warnings=tuple(warnings),
            started_at=started_at,
            finished_at=utcnow(),
        )

    @classmethod
    def from_error(
        cls,
        error: BaseException,
        *,
        started_at: datetime | None = None,
        warnings: tuple[str, ...] | list[str] = (),
    ) -> JobResult:
        """Map any exception to a failure result.

        Domain errors carry their own fault tag; anything else is treated as
        a system fault.
        """
        if isinstance(error, MapPackerError) and error.is_caller_fault:
            status = JobStatus.BAD_REQUEST
        else:
            status = JobStatus.INTERNAL_SERVER_ERROR
        message = str(error) or error.__class__.__name__
        return cls(
            status=status,
            error_message=message,
            warnings=tuple(warnings),
            started_at=started_at,
            finished_at=utcnow(),
        )

    def to_record(self) -> dict[str, Any]:
        """Persisted status record (snake_case columns, None values dropped)."""
        data = self.model_dump(mode='json', exclude_none=True)
        data['warnings'] = list(self.warnings)
        if self.tiles_by_zoom is not None:
            data['tiles_by_zoom'] = {str(z): n for z, n in self.tiles_by_zoom.items()}
        return data

    def to_message(self) -> dict[str, Any]:
        """Queue completion payload (camelCase keys)."""
        return {to_camel(k): v for k, v in self.to_record().items()}
