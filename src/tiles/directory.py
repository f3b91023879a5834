"""Plain ``{root}/{z}/{x}/{y}.{ext}`` directory tile store."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


class DirectoryTileStore:
    """Stateless tile tree on disk.

    Readers get ``None`` for a missing file. Acquisition writes through
    :meth:`write_tile`, which never leaves a half-written tile behind, so a
    file that exists is always complete and safe to skip on a rerun.
    """

    def __init__(self, root: str | Path, ext: str = 'jpg') -> None:
        self.root = Path(root)
        self.ext = ext.lstrip('.')

    def tile_path(self, zoom: int, x: int, y: int) -> Path:
        return self.root / str(zoom) / str(x) / f'{y}.{self.ext}'

    def exists(self, zoom: int, x: int, y: int) -> bool:
        return self.tile_path(zoom, x, y).is_file()

    def read_tile(self, zoom: int, x: int, y: int) -> bytes | None:
        try:
            return self.tile_path(zoom, x, y).read_bytes()
        except FileNotFoundError:
            return None

    def write_tile(self, zoom: int, x: int, y: int, data: bytes) -> Path:
        """Write via a temp file in the same directory, then rename."""
        path = self.tile_path(zoom, x, y)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f'.{y}.', suffix='.part')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            Path(tmp).replace(path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        return path


def read_path(path: Path) -> bytes | None:
    """Read a tile file resolved from a ``.../z/x/y.ext`` URL."""
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None
