"""Background writer thread for the output archive.

ArchiveWriter is the single owner of the output MBTiles write connection.
The assembler hands it encoded tiles from the event loop; a worker thread
commits them in batches, one transaction per batch.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from domain.errors import StorageFailed
from shared.constants import WRITER_BATCH_SIZE, WRITER_BATCH_TIMEOUT, WRITER_QUEUE_SIZE

if TYPE_CHECKING:
    from tiles.mbtiles import MBTilesStore

logger = logging.getLogger(__name__)

_STOP = None


@dataclass(frozen=True)
class TileWriteRequest:
    zoom: int
    x: int
    y: int
    data: bytes

    def as_row(self) -> tuple[int, int, int, bytes]:
        return self.zoom, self.x, self.y, self.data


class ArchiveWriter:
    """Commits rendered tiles to an MBTiles archive off the event loop.

    An archive must not lose tiles, so ``put()`` waits for room in the
    queue instead of dropping. The first storage error stops further
    commits and is re-raised as StorageFailed from ``put()`` or ``stop()``.

    Usage:
        with MBTilesStore(path, create=True) as store:
            with ArchiveWriter(store) as writer:
                writer.put(3, 1, 2, tile_bytes)
            # leaving the block drains the queue
    """

    def __init__(
        self,
        store: MBTilesStore,
        max_queue_size: int | None = None,
        batch_size: int = WRITER_BATCH_SIZE,
        batch_timeout: float = WRITER_BATCH_TIMEOUT,
    ) -> None:
        self.store = store
        self.batch_size = max(1, batch_size)
        self.batch_timeout = batch_timeout
        self._pending: queue.Queue[TileWriteRequest | None] = queue.Queue(
            maxsize=max_queue_size or WRITER_QUEUE_SIZE
        )
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None
        self._written = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def written(self) -> int:
        return self._written

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name='archive-writer', daemon=True)
        self._thread.start()
        logger.debug('ArchiveWriter started for %s', self.store.path)

    def put(self, zoom: int, x: int, y: int, data: bytes) -> None:
        """Queue one tile, waiting while the queue is full."""
        self._check()
        if not self.running:
            msg = 'ArchiveWriter is not running'
            raise StorageFailed(msg)
        self._pending.put(TileWriteRequest(zoom, x, y, data))

    def stop(self, timeout: float | None = None) -> None:
        """Drain the queue and join the thread.

        Raises:
            StorageFailed: a batch could not be committed.
        """
        thread, self._thread = self._thread, None
        if thread is not None:
            self._pending.put(_STOP)
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning('ArchiveWriter thread did not stop within timeout')
            logger.info('%d tiles committed to %s', self._written, self.store.path)
        self._check()

    def _check(self) -> None:
        err = self._error
        if err is None:
            return
        if isinstance(err, StorageFailed):
            raise err
        msg = f'Archive write failed: {err}'
        raise StorageFailed(msg) from err

    def _run(self) -> None:
        done = False
        while not done:
            batch, done = self._next_batch()
            if batch:
                self._commit(batch)

    def _next_batch(self) -> tuple[list[TileWriteRequest], bool]:
        """Block for the first tile, then gather more until full or stale."""
        first = self._pending.get()
        if first is _STOP:
            return [], True
        batch = [first]
        deadline = time.monotonic() + self.batch_timeout
        while len(batch) < self.batch_size:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            try:
                item = self._pending.get(timeout=remaining)
            except queue.Empty:
                break
            if item is _STOP:
                return batch, True
            batch.append(item)
        return batch, False

    def _commit(self, batch: list[TileWriteRequest]) -> None:
        # after a failure keep consuming so producers never block
        if self._error is not None:
            return
        try:
            self.store.put_tiles(r.as_row() for r in batch)
        except Exception as e:
            logger.exception('Could not commit %d tiles', len(batch))
            self._error = e
        else:
            self._written += len(batch)

    def __enter__(self) -> ArchiveWriter:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
