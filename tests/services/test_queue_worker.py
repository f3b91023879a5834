"""Tests for the queue worker."""

import base64
import json

import pytest

from domain.errors import InvalidInput, MissingSource
from domain.results import JobResult
from services.queue_worker import (
    DirectoryQueue,
    JsonStatusStore,
    QueueMessage,
    QueueWorker,
    decode_message,
    encode_message,
)


class MemoryTransport:
    def __init__(self, payloads=()):
        self.pending = [
            QueueMessage(id=str(i), text=p if isinstance(p, str) else encode_message(p))
            for i, p in enumerate(payloads)
        ]
        self.deleted = []
        self.sent = []

    async def receive(self):
        if not self.pending:
            return None
        return self.pending.pop(0)

    async def delete(self, message):
        self.deleted.append(message.id)

    async def send(self, text):
        self.sent.append(decode_message(text))


class RecordingRunner:
    def __init__(self, outcome=None):
        self.jobs = []
        self.outcome = outcome

    async def __call__(self, job):
        self.jobs.append(job)
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        if self.outcome is not None:
            return self.outcome
        return JobResult.success(
            output_path=str(job.output_path), file_size=10, tile_count=2, tiles_by_zoom={0: 2}
        )


REQUEST = {
    'type': 'new_request',
    'requestId': 'r1',
    'style': 'esri',
    'bounds': '-79,37,-77,38',
    'maxZoom': 3,
}


def _worker(tmp_path, transport, runner):
    return QueueWorker(
        transport,
        JsonStatusStore(tmp_path / 'status'),
        runner,
        output_dir=tmp_path / 'maps',
        poll_interval=0,
    )


class TestQueueWorker:
    @pytest.mark.asyncio
    async def test_new_request(self, tmp_path):
        transport = MemoryTransport([REQUEST])
        runner = RecordingRunner()
        handled = await _worker(tmp_path, transport, runner).run(max_messages=1)

        assert handled == 1
        assert transport.deleted == ['0']
        job = runner.jobs[0]
        assert job.zoom.min_zoom == 0
        assert job.ratio == 1
        assert job.image_format.value == 'jpg'
        assert job.output_path == tmp_path / 'maps' / 'output.mbtiles'

        record = JsonStatusStore(tmp_path / 'status').read('r1')
        assert record['id'] == 'r1'
        assert record['status'] == 'SUCCESS'
        assert record['tile_count'] == 2
        message = transport.sent[0]
        assert message['type'] == 'render_result'
        assert message['requestId'] == 'r1'
        assert message['tileCount'] == 2

    @pytest.mark.asyncio
    async def test_style_object_is_ignored(self, tmp_path):
        payload = {**REQUEST, 'style': 'self', 'styleObject': {'sources': {}},
                   'styleDir': '/x', 'sourceDir': '/y'}
        transport = MemoryTransport([payload])
        runner = RecordingRunner()
        result = await _worker(tmp_path, transport, runner).process_message(
            transport.pending.pop(0)
        )
        assert runner.jobs == []
        assert result.status.value == 'BadRequest'
        assert transport.deleted == ['0']

    @pytest.mark.asyncio
    async def test_bad_request_is_recorded(self, tmp_path):
        payload = {k: v for k, v in REQUEST.items() if k != 'bounds'}
        transport = MemoryTransport([payload])
        await _worker(tmp_path, transport, RecordingRunner()).run(max_messages=1)
        record = JsonStatusStore(tmp_path / 'status').read('r1')
        assert record['status'] == 'BadRequest'
        assert 'bounds' in record['error_message']
        assert transport.deleted == ['0']

    @pytest.mark.asyncio
    async def test_failed_job_still_deletes_message(self, tmp_path):
        transport = MemoryTransport([REQUEST])
        runner = RecordingRunner(MissingSource('roads.mbtiles is missing'))
        await _worker(tmp_path, transport, runner).run(max_messages=1)
        record = JsonStatusStore(tmp_path / 'status').read('r1')
        assert record['status'] == 'BadRequest'
        assert transport.deleted == ['0']

    @pytest.mark.asyncio
    async def test_unexpected_runner_error(self, tmp_path):
        transport = MemoryTransport([REQUEST])
        await _worker(tmp_path, transport, RecordingRunner(RuntimeError('boom'))).run(
            max_messages=1
        )
        record = JsonStatusStore(tmp_path / 'status').read('r1')
        assert record['status'] == 'InternalServerError'
        assert record['error_message'] == 'boom'

    @pytest.mark.asyncio
    async def test_garbage_message_is_discarded(self, tmp_path):
        transport = MemoryTransport(['%%% not base64 %%%'])
        runner = RecordingRunner()
        await _worker(tmp_path, transport, runner).run(max_messages=1)
        assert transport.deleted == ['0']
        assert transport.sent == []
        assert runner.jobs == []

    @pytest.mark.asyncio
    async def test_unknown_type(self, tmp_path):
        transport = MemoryTransport([{'type': 'resize', 'requestId': 'r9'}])
        await _worker(tmp_path, transport, RecordingRunner()).run(max_messages=1)
        record = JsonStatusStore(tmp_path / 'status').read('r9')
        assert "Unknown request type: 'resize'" in record['error_message']

    @pytest.mark.asyncio
    async def test_delete_request(self, tmp_path):
        maps = tmp_path / 'maps'
        maps.mkdir()
        (maps / 'old.mbtiles').write_bytes(b'x')
        store = JsonStatusStore(tmp_path / 'status')
        await store.write_result('r2', {'status': 'SUCCESS'})

        transport = MemoryTransport(
            [{'type': 'delete_request', 'requestId': 'r2', 'outputFilename': 'old.mbtiles'}]
        )
        await _worker(tmp_path, transport, RecordingRunner()).run(max_messages=1)
        assert not (maps / 'old.mbtiles').exists()
        assert store.read('r2') is None
        assert transport.deleted == ['0']

    @pytest.mark.asyncio
    async def test_resubmit_overwrites_record(self, tmp_path):
        transport = MemoryTransport([REQUEST, {**REQUEST, 'type': 'resubmit_request'}])
        runner = RecordingRunner()
        await _worker(tmp_path, transport, runner).run(max_messages=2)
        assert len(runner.jobs) == 2
        assert JsonStatusStore(tmp_path / 'status').read('r1')['status'] == 'SUCCESS'


class TestDirectoryQueue:
    @pytest.mark.asyncio
    async def test_spool_round_trip(self, tmp_path):
        queue = DirectoryQueue(tmp_path)
        queue.inbox.mkdir(parents=True)
        (queue.inbox / '002.msg').write_text(encode_message({'type': 'b'}))
        (queue.inbox / '001.msg').write_text(encode_message({'type': 'a'}) + '\n')

        first = await queue.receive()
        assert first.id == '001'
        assert decode_message(first.text) == {'type': 'a'}
        await queue.delete(first)
        assert (await queue.receive()).id == '002'

        await queue.send(encode_message({'type': 'render_result'}))
        sent = list(queue.outbox.glob('*.msg'))
        assert len(sent) == 1

    @pytest.mark.asyncio
    async def test_empty_inbox(self, tmp_path):
        assert await DirectoryQueue(tmp_path).receive() is None


def test_decode_rejects_non_objects():
    with pytest.raises(InvalidInput, match='JSON object'):
        decode_message(base64.b64encode(json.dumps([1, 2]).encode()).decode())
