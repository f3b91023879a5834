"""Classification and parsing of the resource URLs a style refers to."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from urllib.parse import unquote

from domain.errors import UnsupportedSource
from shared.constants import ResourceKind

MBTILES_SCHEME = 'mbtiles://'
PMTILES_SCHEME = 'pmtiles://'
FILE_SCHEME = 'file://'

_XYZ_SUFFIX = re.compile(r'/(\d+)/(\d+)/(\d+)(?:\.(\w+))?$')


class SourceKind(Enum):
    CONTAINER = 'container'
    RANGE_FILE = 'range_file'
    DIRECTORY = 'directory'
    SINGLE_DOCUMENT = 'single_document'
    REMOTE = 'remote'


@dataclass(frozen=True)
class ResourceRequest:
    """One engine resource request."""

    url: str
    kind: ResourceKind

    @classmethod
    def of(cls, url: str, kind: int) -> ResourceRequest:
        try:
            return cls(url=url, kind=ResourceKind(kind))
        except ValueError:
            return cls(url=url, kind=ResourceKind.UNKNOWN)


@dataclass(frozen=True)
class ResourceResponse:
    """Resolved payload; ``data=None`` means the resource is absent."""

    data: bytes | None = None

    @property
    def is_empty(self) -> bool:
        return self.data is None


@dataclass(frozen=True)
class TileAddress:
    """A parsed ``<prefix>/z/x/y[.ext]`` URL."""

    prefix: str
    zoom: int
    x: int
    y: int
    ext: str | None

    @property
    def is_vector(self) -> bool:
        return self.ext == 'pbf'


def is_network_url(url: str) -> bool:
    return url.startswith(('http://', 'https://'))


def classify_url(url: str) -> SourceKind:
    """Map a source/tile URL to the store that can serve it.

    Raises:
        UnsupportedSource: no store matches.
    """
    if url.startswith(MBTILES_SCHEME):
        return SourceKind.CONTAINER
    if url.startswith(PMTILES_SCHEME):
        return SourceKind.RANGE_FILE
    if is_network_url(url):
        return SourceKind.REMOTE
    path = url.split('?', 1)[0]
    if path.endswith('.geojson'):
        return SourceKind.SINGLE_DOCUMENT
    if _XYZ_SUFFIX.search(path):
        return SourceKind.DIRECTORY
    msg = f'Unsupported source URL: {url}'
    raise UnsupportedSource(msg)


def parse_tile_address(url: str) -> TileAddress | None:
    """Split a trailing ``/z/x/y[.ext]`` off ``url``, or None if absent."""
    path = url.split('?', 1)[0]
    match = _XYZ_SUFFIX.search(path)
    if match is None:
        return None
    z, x, y, ext = match.groups()
    return TileAddress(
        prefix=path[: match.start()],
        zoom=int(z),
        x=int(x),
        y=int(y),
        ext=ext.lower() if ext else None,
    )


def container_name(url: str) -> str:
    """Service name of an ``mbtiles://`` URL (``mbtiles://name/...``)."""
    rest = url.split('://', 1)[1]
    return rest.split('/', 1)[0]


def range_file_target(url: str) -> str:
    """Archive part of a ``pmtiles://`` URL, without any tile suffix.

    Either a bare name (``pmtiles://name/z/x/y``) or a full remote URL
    (``pmtiles://https://host/a.pmtiles/z/x/y``).
    """
    rest = url[len(PMTILES_SCHEME) :]
    address = parse_tile_address(rest)
    if address is not None:
        rest = address.prefix
    if is_network_url(rest):
        return rest
    return rest.split('/', 1)[0]


def strip_file_scheme(url: str) -> str:
    if url.startswith(FILE_SCHEME):
        return url[len(FILE_SCHEME) :]
    return url


def local_path(base_dir: Path | None, url: str, *, decode: bool = False) -> Path:
    """Resolve a local resource URL; relative paths hang off ``base_dir``."""
    raw = strip_file_scheme(url).split('?', 1)[0]
    if decode:
        raw = unquote(raw)
    path = Path(raw)
    if path.is_absolute() or base_dir is None:
        return path
    return base_dir / path
