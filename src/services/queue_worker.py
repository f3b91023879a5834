"""Queue worker: drains archive requests and records their outcome.

Messages are base64-encoded JSON objects whose ``type`` is one of
``new_request``, ``resubmit_request`` or ``delete_request``. Every received
message is deleted exactly once, whatever happens while processing it; a
failed job is reported through the status store, not by redelivery.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from domain.errors import InvalidInput, MapPackerError
from domain.models import ArchiveJob
from domain.results import JobResult, utcnow

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    JobRunner = Callable[[ArchiveJob], Awaitable[JobResult]]

logger = logging.getLogger(__name__)

NEW_REQUEST = 'new_request'
RESUBMIT_REQUEST = 'resubmit_request'
DELETE_REQUEST = 'delete_request'
RESULT_MESSAGE = 'render_result'

PROCESSING = 'PROCESSING'

# Queue payloads fill these in when absent
QUEUE_DEFAULTS: dict[str, Any] = {
    'minZoom': 0,
    'ratio': 1,
    'tiletype': 'jpg',
    'outputFilename': 'output',
}


@dataclass(frozen=True)
class QueueMessage:
    id: str
    text: str
    receipt: Any = None


class QueueTransport(Protocol):
    async def receive(self) -> QueueMessage | None: ...

    async def delete(self, message: QueueMessage) -> None: ...

    async def send(self, text: str) -> None: ...


class StatusStore(Protocol):
    async def mark_processing(self, request_id: str) -> None: ...

    async def write_result(self, request_id: str, record: dict[str, Any]) -> None: ...

    async def delete(self, request_id: str) -> None: ...


def encode_message(payload: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(payload).encode('utf-8')).decode('ascii')


def decode_message(text: str) -> dict[str, Any]:
    """Decode a base64 JSON object; raises InvalidInput."""
    try:
        decoded = base64.b64decode(text, validate=True).decode('utf-8')
        payload = json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        msg = f'Queue message is not base64-encoded JSON: {e}'
        raise InvalidInput(msg) from None
    if not isinstance(payload, dict):
        msg = 'Queue message must be a JSON object'
        raise InvalidInput(msg)
    return payload


def _write_json_atomic(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix='.part')
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        Path(tmp).replace(path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class JsonStatusStore:
    """One ``<request_id>.json`` status record per request."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, request_id: str) -> Path:
        safe = Path(str(request_id)).name
        return self.directory / f'{safe}.json'

    def read(self, request_id: str) -> dict[str, Any] | None:
        path = self.path_for(request_id)
        if not path.exists():
            return None
        return json.loads(path.read_text(encoding='utf-8'))

    def _merge(self, request_id: str, update: dict[str, Any]) -> None:
        record = self.read(request_id) or {'id': str(request_id)}
        record.update(update)
        _write_json_atomic(self.path_for(request_id), record)

    async def mark_processing(self, request_id: str) -> None:
        await asyncio.to_thread(self._merge, request_id, {'status': PROCESSING})

    async def write_result(self, request_id: str, record: dict[str, Any]) -> None:
        await asyncio.to_thread(self._merge, request_id, record)

    async def delete(self, request_id: str) -> None:
        await asyncio.to_thread(self.path_for(request_id).unlink, missing_ok=True)


class DirectoryQueue:
    """File-spool transport: one message per ``*.msg`` file in ``inbox``.

    Completion messages are written to ``outbox``. Messages are taken in
    name order.
    """

    def __init__(self, directory: str | Path) -> None:
        self.inbox = Path(directory) / 'inbox'
        self.outbox = Path(directory) / 'outbox'

    async def receive(self) -> QueueMessage | None:
        def _next() -> QueueMessage | None:
            if not self.inbox.is_dir():
                return None
            for path in sorted(self.inbox.glob('*.msg')):
                return QueueMessage(
                    id=path.stem, text=path.read_text(encoding='utf-8').strip(), receipt=path
                )
            return None

        return await asyncio.to_thread(_next)

    async def delete(self, message: QueueMessage) -> None:
        path = message.receipt or self.inbox / f'{message.id}.msg'
        await asyncio.to_thread(Path(path).unlink, missing_ok=True)

    async def send(self, text: str) -> None:
        def _write() -> None:
            self.outbox.mkdir(parents=True, exist_ok=True)
            name = f'{time.time_ns()}.msg'
            (self.outbox / name).write_text(text, encoding='utf-8')

        await asyncio.to_thread(_write)


class QueueWorker:
    """Processes queue messages one at a time."""

    def __init__(
        self,
        transport: QueueTransport,
        status_store: StatusStore,
        run_job: JobRunner,
        *,
        output_dir: Path,
        poll_interval: float,
    ) -> None:
        self.transport = transport
        self.status_store = status_store
        self.run_job = run_job
        self.output_dir = Path(output_dir)
        self.poll_interval = poll_interval

    async def run(self, *, max_messages: int | None = None) -> int:
        """Poll forever (or until ``max_messages`` are handled)."""
        handled = 0
        while max_messages is None or handled < max_messages:
            message = await self.transport.receive()
            if message is None:
                logger.info('No message found. Retrying in %s seconds...', self.poll_interval)
                await asyncio.sleep(self.poll_interval)
                continue
            await self.process_message(message)
            handled += 1
        return handled

    async def process_message(self, message: QueueMessage) -> JobResult | None:
        """Handle one message; it is deleted from the queue in every case."""
        try:
            return await self._dispatch(message)
        except Exception:
            logger.exception('Unexpected error while processing message %s', message.id)
            return None
        finally:
            try:
                await self.transport.delete(message)
            except Exception:
                logger.exception('Could not delete queue message %s', message.id)

    async def _dispatch(self, message: QueueMessage) -> JobResult | None:
        started_at = utcnow()
        try:
            options = decode_message(message.text)
        except InvalidInput as e:
            logger.error('Discarding message %s: %s', message.id, e)
            return JobResult.from_error(e, started_at=started_at)

        request_id = options.get('requestId') or options.get('request_id')
        kind = options.get('type')
        logger.info('Received queue message %s: type=%s request=%s', message.id, kind, request_id)

        if kind in (NEW_REQUEST, RESUBMIT_REQUEST):
            return await self._handle_new(options, request_id, started_at)
        if kind == DELETE_REQUEST:
            await self._handle_delete(options, request_id)
            return None

        msg = f"Unknown request type: '{kind}'"
        result = JobResult.from_error(InvalidInput(msg), started_at=started_at)
        await self._record(request_id, result)
        return result

    async def _handle_new(
        self,
        options: dict[str, Any],
        request_id: str | None,
        started_at,
    ) -> JobResult:
        data = {**QUEUE_DEFAULTS, 'outputDir': str(self.output_dir), **options}
        data = {k: v for k, v in data.items() if k != 'type'}
        # queue requests never carry a style document
        data.pop('styleObject', None)
        data.pop('style_object', None)
        try:
            job = ArchiveJob.from_options(data)
            if request_id:
                await self.status_store.mark_processing(request_id)
        except MapPackerError as e:
            logger.error('Bad request %s: %s', request_id, e)
            result = JobResult.from_error(e, started_at=started_at)
            await self._record(request_id, result)
            return result

        try:
            result = await self.run_job(job)
        except Exception as e:
            logger.exception('Job %s failed', request_id)
            result = JobResult.from_error(e, started_at=started_at)
        await self._record(request_id, result)
        return result

    async def _handle_delete(self, options: dict[str, Any], request_id: str | None) -> None:
        output_dir = Path(options.get('outputDir') or options.get('output_dir') or self.output_dir)
        filename = options.get('outputFilename') or options.get('output_filename')
        if filename:
            path = output_dir / filename
            try:
                await asyncio.to_thread(path.unlink)
                logger.info('File %s has been deleted', path)
            except OSError as e:
                logger.error('Error deleting file %s: %s', path, e)
        if request_id:
            try:
                await self.status_store.delete(request_id)
                logger.info('Request %s deleted from the status store', request_id)
            except Exception:
                logger.exception('Error deleting request %s from the status store', request_id)

    async def _record(self, request_id: str | None, result: JobResult) -> None:
        if not request_id:
            logger.warning('Result has no request id, not recorded: %s', result.status.value)
            return
        await self.status_store.write_result(request_id, result.to_record())
        payload = {'type': RESULT_MESSAGE, 'requestId': request_id, **result.to_message()}
        try:
            await self.transport.send(encode_message(payload))
        except Exception:
            logger.exception('Could not publish result for request %s', request_id)
        logger.info('Render result for %s written: %s', request_id, result.status.value)
