"""Pytest configuration and shared fixtures for mappacker tests."""

import asyncio
import sys
from pathlib import Path

import pytest

# Add src directory to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

from render.engine import RenderedImage  # noqa: E402


class StubEngine:
    """Rendering engine double producing a solid premultiplied RGBA frame.

    ``requests`` are (url, kind) pairs fetched through the request handler
    before every render; their (error, response) pairs land in
    ``responses``.
    """

    def __init__(self, color=(40, 80, 120, 255), fail_zooms=(), requests=()):
        self.color = bytes(color)
        self.fail_zooms = set(fail_zooms)
        self.requests = list(requests)
        self.calls = []
        self.responses = []

    async def render(self, style, request_handler, options):
        self.calls.append(options)
        loop = asyncio.get_running_loop()
        for url, kind in self.requests:
            fut = loop.create_future()
            request_handler(
                {'url': url, 'kind': kind},
                lambda err, resp, fut=fut: fut.set_result((err, resp)),
            )
            self.responses.append(await fut)
        if options.zoom in self.fail_zooms:
            msg = f'cannot render zoom {options.zoom}'
            raise RuntimeError(msg)
        w, h = options.pixel_width, options.pixel_height
        return RenderedImage(self.color * (w * h), w, h)


class FakeResponse:
    def __init__(self, status=200, body=b''):
        self.status = status
        self._body = body
        self.released = False

    async def read(self):
        return self._body

    def release(self):
        self.released = True


class FakeSession:
    """aiohttp session double; ``handler(url, kwargs)`` returns a FakeResponse."""

    def __init__(self, handler=None):
        self.handler = handler or (lambda url, kwargs: FakeResponse(200, b'tile'))
        self.calls = []

    async def get(self, url, **kwargs):
        self.calls.append((url, kwargs))
        result = self.handler(url, kwargs)
        if isinstance(result, BaseException):
            raise result
        return result


@pytest.fixture
def stub_engine():
    return StubEngine()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def engine_factory():
    return StubEngine


@pytest.fixture
def session_factory():
    return FakeSession


@pytest.fixture
def response_factory():
    return FakeResponse
