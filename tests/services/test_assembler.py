"""Tests for ArchiveAssembler."""

import json

import pytest
from PIL import Image

from domain.models import BoundingBox, ZoomRange
from domain.results import JobStatus
from geo.tilemath import count_tiles
from services.assembler import ArchiveAssembler, default_metadata
from shared.constants import ImageFormat
from tiles.mbtiles import MBTilesStore
from tiles.resolver import SourceResolver

BOUNDS = BoundingBox.parse('-79,37,-77,38')


def _assembler(engine, tmp_path, **kwargs):
    resolver = SourceResolver(source_dir=tmp_path / 'sources', style_dir=tmp_path)
    return ArchiveAssembler(engine, resolver, tile_size=32, work_dir=tmp_path / 'work', **kwargs)


class TestAssemble:
    @pytest.mark.asyncio
    async def test_archive_holds_every_tile(self, tmp_path, stub_engine):
        zoom = ZoomRange.parse(0, 4)
        destination = tmp_path / 'out' / 'va.mbtiles'
        result = await _assembler(stub_engine, tmp_path).assemble(
            {}, None, BOUNDS, zoom, 2, 'png', destination
        )

        expected = count_tiles(BOUNDS, zoom)
        assert result.status is JobStatus.SUCCESS
        assert result.tile_count == sum(expected.values())
        assert result.tiles_by_zoom == expected
        assert result.file_size == destination.stat().st_size
        assert len(stub_engine.calls) == sum(expected.values())
        assert stub_engine.calls[0].pixel_width == 64

        with MBTilesStore(destination) as store:
            meta = store.get_metadata()
            assert meta['minzoom'] == '0'
            assert meta['maxzoom'] == '4'
            assert meta['format'] == 'png'
            assert meta['name'] == 'va'
            tile = store.get_tile(0, 0, 0)
        assert tile.startswith(b'\x89PNG')
        # temporary archive is gone
        assert list((tmp_path / 'work').iterdir()) == []

    @pytest.mark.asyncio
    async def test_source_metadata_overrides_defaults(self, tmp_path, stub_engine):
        sources = tmp_path / 'sources'
        sources.mkdir()
        (sources / 'metadata.json').write_text(json.dumps({'name': 'Esri Maps', 'format': 'jpg'}))
        destination = tmp_path / 'va.mbtiles'
        await _assembler(stub_engine, tmp_path).assemble(
            {}, sources, BOUNDS, ZoomRange.parse(0, 0), 1, 'jpg', destination
        )
        with MBTilesStore(destination) as store:
            meta = store.get_metadata()
        assert meta['name'] == 'Esri Maps'
        assert meta['bounds'] == '-79.0,37.0,-77.0,38.0'

    @pytest.mark.asyncio
    async def test_format_describes_rendered_tiles(self, tmp_path, stub_engine):
        sources = tmp_path / 'sources'
        sources.mkdir()
        (sources / 'metadata.json').write_text(json.dumps({'format': 'pbf'}))
        destination = tmp_path / 'va.mbtiles'
        await _assembler(stub_engine, tmp_path).assemble(
            {}, sources, BOUNDS, ZoomRange.parse(0, 0), 1, 'png', destination
        )
        with MBTilesStore(destination) as store:
            assert store.get_metadata()['format'] == 'png'

    @pytest.mark.asyncio
    async def test_skipped_zooms_are_not_rendered(self, tmp_path, stub_engine):
        zoom = ZoomRange.parse(0, 3)
        result = await _assembler(stub_engine, tmp_path).assemble(
            {}, None, BOUNDS, zoom, 1, 'jpg', tmp_path / 'va.mbtiles', skip_zooms={3}
        )
        expected = count_tiles(BOUNDS, zoom)
        del expected[3]
        assert result.ok
        assert result.tiles_by_zoom == expected
        assert result.tile_count == sum(expected.values())
        assert all(options.zoom != 3 for options in stub_engine.calls)

    @pytest.mark.asyncio
    async def test_failed_tiles_are_skipped(self, tmp_path, engine_factory):
        engine = engine_factory(fail_zooms={3})
        zoom = ZoomRange.parse(2, 3)
        result = await _assembler(engine, tmp_path).assemble(
            {}, None, BOUNDS, zoom, 1, 'jpg', tmp_path / 'va.mbtiles'
        )
        failed = count_tiles(BOUNDS, zoom)[3]
        assert result.ok
        assert 3 not in result.tiles_by_zoom
        assert result.warnings == (f'{failed} tiles failed to render and were skipped',)

    @pytest.mark.asyncio
    async def test_thumbnail(self, tmp_path, stub_engine):
        destination = tmp_path / 'va.mbtiles'
        result = await _assembler(stub_engine, tmp_path, thumbnail=True).assemble(
            {'sources': {}, 'layers': []}, None, BOUNDS, ZoomRange.parse(0, 0), 1, 'jpg',
            destination,
        )
        thumb = tmp_path / 'va.jpg'
        assert result.thumbnail_path == str(thumb)
        options = stub_engine.calls[-1]
        assert options.mode == 'static'
        with Image.open(thumb) as img:
            assert img.size == (options.pixel_width, options.pixel_height)


def test_default_metadata_center():
    meta = default_metadata('x', ImageFormat.WEBP, BOUNDS, ZoomRange.parse(2, 10))
    assert meta['center'] == [-78.0, 37.5, 6]
    assert meta['format'] == 'webp'
    assert meta['type'] == 'overlay'
