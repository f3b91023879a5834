from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from domain.models import TileCoordinate

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)


class TileStatus(str, Enum):
    FETCHED = 'fetched'
    SKIPPED = 'skipped'
    FAILED = 'failed'


@dataclass(frozen=True)
class TileOutcome:
    tile: TileCoordinate
    status: TileStatus
    error: str | None = None

    @property
    def zoom(self) -> int:
        return self.tile.zoom

    @property
    def x(self) -> int:
        return self.tile.x

    @property
    def y(self) -> int:
        return self.tile.y

    @property
    def available(self) -> bool:
        """Tile is on disk after the run (fetched now or earlier)."""
        return self.status is not TileStatus.FAILED


def summarize(outcomes: Iterable[TileOutcome]) -> Counter:
    return Counter(o.status for o in outcomes)


async def run_tiles(
    tiles: Iterable[tuple[int, int]],
    *,
    zoom: int,
    process_tile: Callable[[int, int, int], Awaitable[None]],
    concurrency: int,
    should_skip: Callable[[int, int], bool] | None = None,
) -> list[TileOutcome]:
    """Process tiles of one zoom level under a concurrency limit.

    Each tile ends up as exactly one TileOutcome. A failing tile is recorded
    and never cancels its siblings. Outcomes come back in input order,
    whatever order the fetches completed in.
    """
    sem = asyncio.Semaphore(concurrency)

    async def worker(tx: int, ty: int) -> TileOutcome:
        tile = TileCoordinate(zoom, tx, ty)
        if should_skip and should_skip(tx, ty):
            return TileOutcome(tile, TileStatus.SKIPPED)
        async with sem:
            try:
                await process_tile(zoom, tx, ty)
            except Exception as e:
                logger.warning(
                    'Error downloading tile %d/%d/%d: %s',
                    zoom,
                    tx,
                    ty,
                    e,
                )
                return TileOutcome(tile, TileStatus.FAILED, str(e))
        return TileOutcome(tile, TileStatus.FETCHED)

    return list(await asyncio.gather(*(worker(x, y) for x, y in tiles)))
