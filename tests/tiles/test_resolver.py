"""Tests for SourceResolver."""

import asyncio
import gzip
import json
import threading

import pytest

from domain.errors import UnsupportedSource
from shared.constants import ResourceKind
from tiles.mbtiles import MBTilesStore
from tiles.resolver import SourceResolver
from tiles.sources import ResourceRequest


@pytest.fixture
def workspace(tmp_path):
    sources = tmp_path / 'sources'
    sources.mkdir()
    with MBTilesStore(sources / 'roads.mbtiles', create=True) as store:
        store.put_metadata({'name': 'roads', 'format': 'pbf', 'minzoom': 0, 'maxzoom': 4})
        store.put_tile(2, 1, 1, gzip.compress(b'vector'))
    with MBTilesStore(sources / 'imagery.mbtiles', create=True) as store:
        store.put_metadata({'format': 'png', 'minzoom': 0, 'maxzoom': 2})
        store.put_tile(1, 0, 0, b'\x89PNG')
    (tmp_path / 'overlay.geojson').write_text('{"type": "FeatureCollection"}')
    tile = tmp_path / 'tiles' / '3' / '2'
    tile.mkdir(parents=True)
    (tile / '1.jpg').write_bytes(b'jpeg')
    glyphs = tmp_path / 'fonts' / 'Noto Sans'
    glyphs.mkdir(parents=True)
    (glyphs / '0-255.pbf').write_bytes(b'glyphs')
    return tmp_path


@pytest.fixture
def resolver(workspace):
    return SourceResolver(source_dir=workspace / 'sources', style_dir=workspace)


def _req(url, kind):
    return ResourceRequest(url=url, kind=kind)


class TestResolve:
    @pytest.mark.asyncio
    async def test_container_source(self, resolver):
        response = await resolver.resolve(_req('mbtiles://roads', ResourceKind.SOURCE))
        tilejson = json.loads(response.data)
        assert tilejson['tiles'] == ['mbtiles://roads/{z}/{x}/{y}.pbf']
        assert tilejson['maxzoom'] == 4

    @pytest.mark.asyncio
    async def test_container_vector_tile_is_inflated(self, resolver):
        response = await resolver.resolve(_req('mbtiles://roads/2/1/1.pbf', ResourceKind.TILE))
        assert response.data == b'vector'

    @pytest.mark.asyncio
    async def test_container_raster_tile(self, resolver):
        response = await resolver.resolve(_req('mbtiles://imagery/1/0/0', ResourceKind.TILE))
        assert response.data == b'\x89PNG'

    @pytest.mark.asyncio
    async def test_missing_tile_is_empty(self, resolver):
        response = await resolver.resolve(_req('mbtiles://roads/4/0/0.pbf', ResourceKind.TILE))
        assert response.is_empty

    @pytest.mark.asyncio
    async def test_missing_container_fails(self, resolver):
        with pytest.raises(FileNotFoundError):
            await resolver.resolve(_req('mbtiles://absent', ResourceKind.SOURCE))

    @pytest.mark.asyncio
    async def test_geojson_serves_source_and_tiles(self, resolver):
        source = await resolver.resolve(_req('overlay.geojson', ResourceKind.SOURCE))
        tile = await resolver.resolve(_req('overlay.geojson', ResourceKind.TILE))
        assert source.data == tile.data == b'{"type": "FeatureCollection"}'

    @pytest.mark.asyncio
    async def test_directory_tile(self, resolver):
        response = await resolver.resolve(_req('tiles/3/2/1.jpg', ResourceKind.TILE))
        assert response.data == b'jpeg'
        missing = await resolver.resolve(_req('tiles/3/2/9.jpg', ResourceKind.TILE))
        assert missing.is_empty

    @pytest.mark.asyncio
    async def test_local_glyphs_are_url_decoded(self, resolver):
        response = await resolver.resolve(
            _req('fonts/Noto%20Sans/0-255.pbf', ResourceKind.GLYPHS)
        )
        assert response.data == b'glyphs'

    @pytest.mark.asyncio
    async def test_remote_tiles_are_rejected(self, resolver):
        with pytest.raises(UnsupportedSource, match='Only local tiles'):
            await resolver.resolve(_req('https://host/1/2/3.png', ResourceKind.TILE))
        with pytest.raises(UnsupportedSource, match='Only local sources'):
            await resolver.resolve(_req('https://host/tiles.json', ResourceKind.SOURCE))

    @pytest.mark.asyncio
    async def test_remote_sprite_passthrough(self, workspace, fake_session):
        resolver = SourceResolver(
            source_dir=workspace / 'sources', style_dir=workspace, session=fake_session
        )
        response = await resolver.resolve(
            _req('https://host/sprite.png?access_token=secret', ResourceKind.SPRITE_IMAGE)
        )
        assert response.data == b'tile'
        assert fake_session.calls[0][0] == 'https://host/sprite.png?access_token=secret'

    @pytest.mark.asyncio
    async def test_remote_not_found_is_empty(
        self, workspace, session_factory, response_factory
    ):
        session = session_factory(lambda url, kw: response_factory(404))
        resolver = SourceResolver(source_dir=None, style_dir=workspace, session=session)
        response = await resolver.resolve(_req('https://host/font.pbf', ResourceKind.GLYPHS))
        assert response.is_empty

    @pytest.mark.asyncio
    async def test_unhandled_kind(self, resolver):
        with pytest.raises(UnsupportedSource):
            await resolver.resolve(_req('style.json', ResourceKind.STYLE))


class TestRequestHandler:
    @pytest.mark.asyncio
    async def test_callback_receives_response(self, resolver):
        handler = resolver.request_handler()
        results = []
        handler({'url': 'mbtiles://imagery/1/0/0', 'kind': 3}, lambda e, r: results.append((e, r)))
        await resolver.drain()
        assert len(results) == 1
        err, response = results[0]
        assert err is None
        assert response.data == b'\x89PNG'

    @pytest.mark.asyncio
    async def test_callback_receives_error(self, resolver):
        handler = resolver.request_handler()
        results = []
        handler({'url': 's3://nowhere', 'kind': 2}, lambda e, r: results.append((e, r)))
        await resolver.drain()
        err, response = results[0]
        assert isinstance(err, UnsupportedSource)
        assert response is None

    @pytest.mark.asyncio
    async def test_handler_from_engine_thread(self, resolver):
        handler = resolver.request_handler()
        loop = asyncio.get_running_loop()
        done = loop.create_future()

        def callback(err, response):
            loop.call_soon_threadsafe(done.set_result, (err, response))

        thread = threading.Thread(
            target=handler, args=(_req('tiles/3/2/1.jpg', ResourceKind.TILE), callback)
        )
        thread.start()
        err, response = await asyncio.wait_for(done, timeout=5)
        thread.join()
        assert err is None
        assert response.data == b'jpeg'
