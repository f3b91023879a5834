"""Tests for ArchiveWriter."""

import pytest

from domain.errors import StorageFailed
from tiles.mbtiles import MBTilesStore
from tiles.writer import ArchiveWriter


class TestArchiveWriter:
    def test_all_queued_tiles_are_committed(self, tmp_path):
        with MBTilesStore(tmp_path / 'out.mbtiles', create=True) as store:
            with ArchiveWriter(store, batch_size=7, batch_timeout=0.05) as writer:
                for x in range(20):
                    writer.put(5, x, 3, b'tile%d' % x)
            assert writer.written == 20
            assert store.tile_count() == 20
            assert store.get_tile(5, 19, 3) == b'tile19'

    def test_put_before_start_fails(self, tmp_path):
        with MBTilesStore(tmp_path / 'out.mbtiles', create=True) as store:
            writer = ArchiveWriter(store)
            with pytest.raises(StorageFailed, match='not running'):
                writer.put(0, 0, 0, b'x')

    def test_stop_is_idempotent(self, tmp_path):
        with MBTilesStore(tmp_path / 'out.mbtiles', create=True) as store:
            writer = ArchiveWriter(store)
            writer.start()
            writer.stop()
            writer.stop()
            assert writer.written == 0

    def test_storage_error_surfaces_on_stop(self, tmp_path):
        class BrokenStore:
            path = tmp_path / 'broken.mbtiles'

            def put_tiles(self, rows):
                msg = 'disk full'
                raise OSError(msg)

        writer = ArchiveWriter(BrokenStore(), batch_size=1)
        writer.start()
        writer.put(0, 0, 0, b'x')
        with pytest.raises(StorageFailed, match='disk full'):
            writer.stop()
