"""Style documents: generated provider styles and checks on supplied ones."""

from __future__ import annotations

import copy
import json
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

from domain.errors import InvalidInput, MissingSource
from shared.constants import (
    ARCHIVE_SUFFIX,
    OVERLAY_FILENAME,
    PMTILES_SUFFIX,
    SOURCES_DIRNAME,
    TILE_INDEX_FILENAME,
)

if TYPE_CHECKING:
    from domain.models import BoundingBox
    from services.providers import Provider

logger = logging.getLogger(__name__)

_CONTAINER_REF = re.compile(r'(mbtiles|pmtiles)://([^/"\s]+)')

BACKGROUND_COLOR = '#f9f9f9'
OVERLAY_COLOR = '#FF0000'
BOUNDS_COLOR = '#3BB2D0'


def load_style(path: Path) -> dict[str, Any]:
    """Read a style JSON file; raises InvalidInput if it cannot be used."""
    try:
        style = json.loads(Path(path).read_text(encoding='utf-8'))
    except FileNotFoundError:
        msg = f'Style file not found: {path}'
        raise InvalidInput(msg) from None
    except ValueError as e:
        msg = f'Style file {path} is not valid JSON: {e}'
        raise InvalidInput(msg) from None
    if not isinstance(style, dict) or not isinstance(style.get('sources'), dict):
        msg = f'Style file {path} has no sources'
        raise InvalidInput(msg)
    style.setdefault('layers', [])
    return style


def generate_style(provider: Provider, *, overlay: bool = False) -> dict[str, Any]:
    """Style for a freshly acquired provider directory under ``sources/``.

    Raster providers get a single raster layer over a light background.
    Vector providers (protomaps) get a minimal land/water/roads style. An
    overlay adds a translucent red fill and a red outline from
    ``sources/overlay.geojson``.
    """
    tiles_url = f'{SOURCES_DIRNAME}/{{z}}/{{x}}/{{y}}.{provider.tile_format}'
    layers: list[dict[str, Any]] = [
        {
            'id': 'background',
            'type': 'background',
            'paint': {'background-color': BACKGROUND_COLOR},
        },
    ]
    if provider.is_vector:
        source: dict[str, Any] = {
            'type': 'vector',
            'tiles': [tiles_url],
            'minzoom': 0,
            'maxzoom': 15,
            'attribution': provider.attribution,
        }
        layers.extend(_vector_layers(provider.name))
    else:
        source = {
            'type': 'raster',
            'scheme': 'xyz',
            'tilejson': '2.2.0',
            'tiles': [tiles_url],
            'tileSize': provider.tile_size,
            'attribution': provider.attribution,
        }
        layers.append({'id': provider.name, 'type': 'raster', 'source': provider.name, 'paint': {}})

    style: dict[str, Any] = {
        'version': 8,
        'sources': {provider.name: source},
        'layers': layers,
    }
    if overlay:
        style['sources']['overlay'] = {
            'type': 'geojson',
            'data': f'{SOURCES_DIRNAME}/{OVERLAY_FILENAME}',
        }
        style['layers'].extend(
            [
                {
                    'id': 'polygon-layer',
                    'type': 'fill',
                    'source': 'overlay',
                    'filter': ['==', '$type', 'Polygon'],
                    'paint': {'fill-color': OVERLAY_COLOR, 'fill-opacity': 0.5},
                },
                {
                    'id': 'line-layer',
                    'type': 'line',
                    'source': 'overlay',
                    'filter': ['==', '$type', 'LineString'],
                    'paint': {'line-color': OVERLAY_COLOR, 'line-width': 2},
                },
            ]
        )
    return style


def _vector_layers(source: str) -> list[dict[str, Any]]:
    return [
        {
            'id': 'earth',
            'type': 'fill',
            'source': source,
            'source-layer': 'earth',
            'paint': {'fill-color': '#e2dfda'},
        },
        {
            'id': 'water',
            'type': 'fill',
            'source': source,
            'source-layer': 'water',
            'paint': {'fill-color': '#80deea'},
        },
        {
            'id': 'roads',
            'type': 'line',
            'source': source,
            'source-layer': 'roads',
            'paint': {'line-color': '#ffffff', 'line-width': 1},
        },
    ]


def with_bounds_overlay(style: dict[str, Any], bounds: BoundingBox) -> dict[str, Any]:
    """Copy of ``style`` with the bounds drawn as a fill and a dashed outline."""
    w, s, e, n = bounds.as_list()
    out = copy.deepcopy(style)
    out.setdefault('sources', {})['bounding-box'] = {
        'type': 'geojson',
        'data': {
            'type': 'Feature',
            'properties': {},
            'geometry': {
                'type': 'Polygon',
                'coordinates': [[[w, s], [w, n], [e, n], [e, s], [w, s]]],
            },
        },
    }
    out.setdefault('layers', []).extend(
        [
            {
                'id': 'bounding-box',
                'type': 'fill',
                'source': 'bounding-box',
                'paint': {'fill-color': BOUNDS_COLOR, 'fill-opacity': 0.4},
            },
            {
                'id': 'bounding-box-border',
                'type': 'line',
                'source': 'bounding-box',
                'paint': {
                    'line-color': BOUNDS_COLOR,
                    'line-width': 2,
                    'line-dasharray': [2, 2],
                },
            },
        ]
    )
    return out


def find_container_refs(style: dict[str, Any]) -> list[tuple[str, str]]:
    """Local ``(scheme, name)`` container references, in order of appearance.

    Remote PMTiles (``pmtiles://https://...``) are not local and are skipped.
    """
    text = json.dumps(style)
    seen: list[tuple[str, str]] = []
    for scheme, name in _CONTAINER_REF.findall(text):
        if name.startswith(('http:', 'https:')):
            continue
        if (scheme, name) not in seen:
            seen.append((scheme, name))
    return seen


def check_local_sources(style: dict[str, Any], source_dir: Path | None) -> None:
    """Every local container the style references must exist in ``source_dir``.

    Raises:
        InvalidInput: containers are referenced but no source directory is set.
        MissingSource: a referenced container file is not on disk.
    """
    refs = find_container_refs(style)
    if not refs:
        return
    if source_dir is None:
        msg = 'Style has local mbtiles file sources, but no sourceDir is set'
        raise InvalidInput(msg)
    for scheme, name in refs:
        suffix = ARCHIVE_SUFFIX if scheme == 'mbtiles' else PMTILES_SUFFIX
        path = Path(source_dir) / f'{name}{suffix}'
        if not path.is_file():
            msg = (
                f'Mbtiles file {name}{suffix} in style file is not found in: '
                f'{Path(source_dir).resolve()}'
            )
            raise MissingSource(msg)


def companion_tilejson(source_dir: Path) -> dict[str, Any] | None:
    """Provider TileJSON saved next to acquired tiles, if any."""
    path = Path(source_dir) / TILE_INDEX_FILENAME
    if not path.is_file():
        return None
    try:
        return json.loads(path.read_text(encoding='utf-8'))
    except ValueError:
        logger.warning('Ignoring malformed %s', path)
        return None
