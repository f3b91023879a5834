"""Tests for the HTTP helpers."""

import aiohttp
import pytest

from infrastructure.http import HttpStatusError, fetch_bytes, fetch_range, redact_url


def test_redact_url_drops_query():
    assert (
        redact_url('https://api.mapbox.com/v4/a/1/2/3.jpg?access_token=secret')
        == 'https://api.mapbox.com/v4/a/1/2/3.jpg'
    )


class TestFetchBytes:
    @pytest.mark.asyncio
    async def test_ok(self, fake_session):
        assert await fetch_bytes(fake_session, 'https://h/t') == b'tile'
        url, kwargs = fake_session.calls[0]
        assert url == 'https://h/t'
        assert kwargs['timeout'].total == 30.0

    @pytest.mark.asyncio
    async def test_not_found_is_terminal(self, session_factory, response_factory):
        session = session_factory(lambda url, kw: response_factory(404))
        with pytest.raises(HttpStatusError) as info:
            await fetch_bytes(session, 'https://h/t?key=secret', retries=3, backoff=0)
        assert info.value.is_not_found
        assert 'secret' not in str(info.value)
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self, session_factory, response_factory):
        responses = [response_factory(503), response_factory(429), response_factory(200, b'ok')]
        session = session_factory(lambda url, kw: responses.pop(0))
        assert await fetch_bytes(session, 'https://h/t', retries=3, backoff=0) == b'ok'
        assert len(session.calls) == 3

    @pytest.mark.asyncio
    async def test_backoff_delays(self, session_factory, response_factory, monkeypatch):
        delays = []

        async def fake_sleep(delay):
            delays.append(delay)

        monkeypatch.setattr('infrastructure.http.client.asyncio.sleep', fake_sleep)
        session = session_factory(lambda url, kw: response_factory(500))
        with pytest.raises(HttpStatusError):
            await fetch_bytes(session, 'https://h/t', retries=4, backoff=3.0)
        assert delays == [1.0, 3.0, 9.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, session_factory, response_factory):
        session = session_factory(lambda url, kw: response_factory(500))
        with pytest.raises(HttpStatusError) as info:
            await fetch_bytes(session, 'https://h/t', retries=2, backoff=0)
        assert info.value.status == 500
        assert len(session.calls) == 2

    @pytest.mark.asyncio
    async def test_transport_error(self, session_factory):
        session = session_factory(lambda url, kw: aiohttp.ClientConnectionError('reset'))
        with pytest.raises(ConnectionError, match='reset'):
            await fetch_bytes(session, 'https://h/t', retries=1)

    @pytest.mark.asyncio
    async def test_response_released(self, session_factory, response_factory):
        response = response_factory(200, b'x')
        await fetch_bytes(session_factory(lambda url, kw: response), 'https://h/t')
        assert response.released


class TestFetchRange:
    @pytest.mark.asyncio
    async def test_range_header(self, session_factory, response_factory):
        session = session_factory(lambda url, kw: response_factory(206, b'cdef'))
        assert await fetch_range(session, 'https://h/a.pmtiles', 2, 4) == b'cdef'
        assert session.calls[0][1]['headers'] == {'Range': 'bytes=2-5'}

    @pytest.mark.asyncio
    async def test_range_ignored_by_server(self, session_factory, response_factory):
        session = session_factory(lambda url, kw: response_factory(200, b'abcdefgh'))
        assert await fetch_range(session, 'https://h/a.pmtiles', 2, 4) == b'cdef'
