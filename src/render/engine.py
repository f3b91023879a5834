"""Rendering engine interface.

The engine turns a style document into pixels for one frame. It is not
part of this package: any object with a matching ``render`` coroutine can
be plugged in through the ``render.engine`` setting.
"""

from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from domain.errors import EngineUnavailable
from shared.constants import RENDER_TILE_SIZE

if TYPE_CHECKING:
    from tiles.resolver import RequestHandler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderOptions:
    zoom: float
    center: tuple[float, float]
    width: int = RENDER_TILE_SIZE
    height: int = RENDER_TILE_SIZE
    ratio: int = 1
    # 'tile' for archive tiles, 'static' for free-form frames (thumbnails)
    mode: str = 'tile'

    @property
    def pixel_width(self) -> int:
        return self.width * self.ratio

    @property
    def pixel_height(self) -> int:
        return self.height * self.ratio


@dataclass(frozen=True)
class RenderedImage:
    """Premultiplied 8-bit RGBA pixels."""

    data: bytes
    width: int
    height: int


@runtime_checkable
class RenderEngine(Protocol):
    async def render(
        self,
        style: dict[str, Any],
        request_handler: RequestHandler,
        options: RenderOptions,
    ) -> RenderedImage: ...


def load_engine(path: str, **kwargs: Any) -> RenderEngine:
    """Build an engine from a ``package.module:factory`` path.

    The factory is called with ``kwargs``; a class works as a factory.
    """
    if not path or ':' not in path:
        msg = (
            'No rendering engine configured; set render.engine to '
            f'"module:factory" (got {path!r})'
        )
        raise EngineUnavailable(msg)
    module_name, _, attr = path.partition(':')
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        msg = f'Cannot load rendering engine {path}: {e}'
        raise EngineUnavailable(msg) from e
    engine = factory(**kwargs)
    if not isinstance(engine, RenderEngine):
        msg = f'{path} did not produce an object with an async render() method'
        raise EngineUnavailable(msg)
    logger.info('Rendering engine loaded: %s', path)
    return engine
