"""Online imagery providers.

Each provider declares how its tile URLs are built, how requests are
authenticated and what ends up in the acquisition ``metadata.json``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import aiohttp

from domain.errors import InvalidInput
from geo.tilemath import quad_key
from shared.constants import RENDER_TILE_SIZE, SOURCE_TILE_SIZE

if TYPE_CHECKING:
    from domain.models import Credentials


class AuthMode(str, Enum):
    NONE = 'none'
    # Authorization: Bearer <key>
    BEARER = 'bearer'
    # HTTP basic, key as user name, empty password
    BASIC = 'basic'
    # key substituted into the URL template
    QUERY = 'query'


@dataclass(frozen=True)
class Provider:
    name: str
    label: str
    url_template: str
    attribution: str
    auth: AuthMode = AuthMode.NONE
    tile_format: str = 'jpg'
    tile_size: int = SOURCE_TILE_SIZE
    requires_key: bool = False
    requires_mapbox_style: bool = False
    requires_month_year: bool = False
    requires_tile_url: bool = False
    tilejson_url: str | None = None

    @property
    def is_vector(self) -> bool:
        return self.tile_format == 'pbf'

    @property
    def uses_quadkey(self) -> bool:
        return '{q}' in self.url_template

    def template_for(self, credentials: Credentials) -> str:
        if self.requires_tile_url:
            return credentials.tile_url or ''
        return self.url_template

    def tile_url(self, credentials: Credentials, zoom: int, x: int, y: int) -> str:
        """Concrete URL of one tile (quadkey providers treat zoom 0 as 1)."""
        url = self.template_for(credentials)
        if '{q}' in url:
            url = url.replace('{q}', quad_key(x, y, zoom))
        url = url.replace('{z}', str(zoom)).replace('{x}', str(x)).replace('{y}', str(y))
        return _fill_credentials(url, credentials)

    def companion_url(self, credentials: Credentials) -> str | None:
        if self.tilejson_url is None:
            return None
        return _fill_credentials(self.tilejson_url, credentials)

    def request_headers(self, credentials: Credentials) -> dict[str, str] | None:
        if self.auth is AuthMode.BEARER and credentials.api_key:
            return {'Authorization': f'Bearer {credentials.api_key}'}
        return None

    def request_auth(self, credentials: Credentials) -> aiohttp.BasicAuth | None:
        if self.auth is AuthMode.BASIC and credentials.api_key:
            return aiohttp.BasicAuth(credentials.api_key, '')
        return None

    def metadata(self) -> dict[str, str]:
        """Contents of the acquisition ``metadata.json``."""
        return {
            'name': f'{self.label} Maps',
            'description': f'Satellite imagery from {self.label} Maps',
            'version': '1.0.0',
            'attribution': self.attribution,
            'format': self.tile_format,
            'type': 'overlay',
        }


def _fill_credentials(url: str, credentials: Credentials) -> str:
    return (
        url.replace('{key}', credentials.api_key or '')
        .replace('{style}', credentials.mapbox_style or '')
        .replace('{month}', credentials.month_year or '')
    )


PROVIDERS: dict[str, Provider] = {
    p.name: p
    for p in (
        Provider(
            name='google',
            label='Google',
            url_template='https://mt0.google.com/vt?lyrs=s&x={x}&y={y}&z={z}',
            attribution='© Google',
        ),
        Provider(
            name='esri',
            label='Esri',
            url_template=(
                'https://services.arcgisonline.com/arcgis/rest/services/'
                'World_Imagery/MapServer/tile/{z}/{y}/{x}'
            ),
            attribution='© ESRI',
        ),
        Provider(
            name='bing',
            label='Bing',
            url_template='http://ecn.t3.tiles.virtualearth.net/tiles/a{q}.jpeg?g=1',
            attribution='© Microsoft (Bing Maps)',
        ),
        Provider(
            name='mapbox-satellite',
            label='Mapbox',
            url_template=(
                'https://api.mapbox.com/v4/mapbox.satellite/{z}/{x}/{y}.jpg'
                '?access_token={key}'
            ),
            attribution='© Mapbox © OpenStreetMap',
            auth=AuthMode.QUERY,
            requires_key=True,
        ),
        Provider(
            name='mapbox',
            label='Mapbox',
            url_template=(
                'https://api.mapbox.com/styles/v1/{style}/tiles/{z}/{x}/{y}'
                '?access_token={key}'
            ),
            attribution='© Mapbox © OpenStreetMap',
            auth=AuthMode.QUERY,
            tile_size=RENDER_TILE_SIZE,
            requires_key=True,
            requires_mapbox_style=True,
        ),
        Provider(
            name='planet',
            label='Planet',
            url_template=(
                'https://tiles.planet.com/basemaps/v1/planet-tiles/'
                'planet_medres_visual_{month}_mosaic/gmap/{z}/{x}/{y}.png'
            ),
            attribution='© Planet Labs PBC',
            auth=AuthMode.BASIC,
            tile_format='png',
            requires_key=True,
            requires_month_year=True,
        ),
        Provider(
            name='protomaps',
            label='Protomaps',
            url_template='https://api.protomaps.com/tiles/v3/{z}/{x}/{y}.mvt?key={key}',
            attribution='© Protomaps © OpenStreetMap',
            auth=AuthMode.QUERY,
            tile_format='pbf',
            requires_key=True,
            tilejson_url='https://api.protomaps.com/tiles/v3.json?key={key}',
        ),
        Provider(
            name='xyz',
            label='Custom',
            url_template='',
            attribution='',
            auth=AuthMode.BEARER,
            requires_tile_url=True,
        ),
    )
}


def get_provider(name: str) -> Provider:
    try:
        return PROVIDERS[name]
    except KeyError:
        supported = ', '.join(PROVIDERS)
        msg = f'Invalid style. Supported styles: {supported}, self'
        raise InvalidInput(msg) from None


def check_credentials(provider: Provider, credentials: Credentials) -> None:
    """Raise InvalidInput when a credential the provider needs is missing."""
    if provider.requires_key and not credentials.api_key:
        msg = f'You must provide an API key for {provider.name}'
        raise InvalidInput(msg)
    if provider.requires_month_year and not credentials.month_year:
        msg = (
            'If you are using Planet as your online source, you must provide '
            'a month and year (YYYY-MM)'
        )
        raise InvalidInput(msg)
    if provider.requires_mapbox_style and not credentials.mapbox_style:
        msg = (
            'If you are using Mapbox as your online source, you must provide '
            'a Mapbox style URL'
        )
        raise InvalidInput(msg)
    if provider.requires_tile_url:
        template = credentials.tile_url or ''
        if not template.startswith(('http://', 'https://')):
            msg = 'A custom xyz source needs an http(s) tile URL template'
            raise InvalidInput(msg)
        if '{q}' not in template and not all(p in template for p in ('{z}', '{x}', '{y}')):
            msg = 'Tile URL template must contain {z}, {x} and {y} (or {q})'
            raise InvalidInput(msg)
