"""Tests for the directory tile store."""

from tiles.directory import DirectoryTileStore, read_path


class TestDirectoryTileStore:
    def test_write_then_read(self, tmp_path):
        store = DirectoryTileStore(tmp_path, ext='.png')
        path = store.write_tile(3, 2, 1, b'png')
        assert path == tmp_path / '3' / '2' / '1.png'
        assert store.exists(3, 2, 1)
        assert store.read_tile(3, 2, 1) == b'png'

    def test_missing_tile(self, tmp_path):
        store = DirectoryTileStore(tmp_path)
        assert not store.exists(0, 0, 0)
        assert store.read_tile(0, 0, 0) is None
        assert read_path(tmp_path / 'nope.jpg') is None

    def test_no_partial_files_left(self, tmp_path):
        store = DirectoryTileStore(tmp_path)
        store.write_tile(1, 0, 0, b'a')
        store.write_tile(1, 0, 0, b'b')
        assert [p.name for p in (tmp_path / '1' / '0').iterdir()] == ['0.jpg']
        assert store.read_tile(1, 0, 0) == b'b'
