from __future__ import annotations

import json
import math
import re
from collections.abc import Sequence
from pathlib import Path
from typing import Any, NamedTuple

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from domain.errors import InvalidInput
from shared.constants import (
    MAPBOX_STYLE_PATTERN,
    MAX_PIXEL_RATIO,
    MAX_ZOOM,
    MIN_ZOOM,
    MONTH_YEAR_PATTERN,
    ImageFormat,
)

SELF_STYLE = 'self'


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = '.'.join(str(p) for p in err.get('loc', ()))
        msg = str(err.get('msg', '')).removeprefix('Value error, ')
        parts.append(f'{loc}: {msg}' if loc else msg)
    return '; '.join(parts)


class TileCoordinate(NamedTuple):
    zoom: int
    x: int
    y: int


class BoundingBox(BaseModel):
    """Geographic bounds in degrees (west, south, east, north)."""

    model_config = ConfigDict(frozen=True)

    west: float
    south: float
    east: float
    north: float

    @model_validator(mode='after')
    def _check(self) -> BoundingBox:
        values = (self.west, self.south, self.east, self.north)
        if not all(math.isfinite(v) for v in values):
            msg = (
                'Bounds must be valid floating point values. '
                f'Invalid value found: {list(values)}'
            )
            raise ValueError(msg)
        if self.west == self.east:
            msg = 'Bounds west and east coordinate are the same value'
            raise ValueError(msg)
        if self.south == self.north:
            msg = 'Bounds south and north coordinate are the same value'
            raise ValueError(msg)
        if not (-180.0 <= self.west <= 180.0 and -180.0 <= self.east <= 180.0):
            msg = f'Bounds longitudes must be within [-180, 180]: {list(values)}'
            raise ValueError(msg)
        if not (-90.0 <= self.south <= 90.0 and -90.0 <= self.north <= 90.0):
            msg = f'Bounds latitudes must be within [-90, 90]: {list(values)}'
            raise ValueError(msg)
        return self

    @classmethod
    def parse(cls, value: str | Sequence[float] | BoundingBox) -> BoundingBox:
        """Build from ``"w,s,e,n"`` or a 4-item sequence; raises InvalidInput."""
        if isinstance(value, BoundingBox):
            return value
        if isinstance(value, str):
            try:
                items = [float(part) for part in value.split(',')]
            except ValueError:
                msg = f'Bounds must be west,south,east,north. Invalid value found: {value}'
                raise InvalidInput(msg) from None
        else:
            items = list(value)
        if len(items) != 4:
            msg = f'Bounds must be west,south,east,north. Invalid value found: {items}'
            raise InvalidInput(msg)
        try:
            return cls(west=items[0], south=items[1], east=items[2], north=items[3])
        except ValidationError as e:
            raise InvalidInput(_validation_message(e)) from None

    def as_list(self) -> list[float]:
        return [self.west, self.south, self.east, self.north]

    @property
    def center(self) -> tuple[float, float]:
        return (self.west + self.east) / 2.0, (self.south + self.north) / 2.0


class ZoomRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min_zoom: int = MIN_ZOOM
    max_zoom: int

    @field_validator('min_zoom', 'max_zoom')
    @classmethod
    def _in_range(cls, v: int, info) -> int:
        if not (MIN_ZOOM <= v <= MAX_ZOOM):
            msg = (
                f'{info.field_name} level is outside supported range '
                f'({MIN_ZOOM}-{MAX_ZOOM}): {v}'
            )
            raise ValueError(msg)
        return v

    @model_validator(mode='after')
    def _ordered(self) -> ZoomRange:
        if self.min_zoom > self.max_zoom:
            msg = f'min_zoom ({self.min_zoom}) is greater than max_zoom ({self.max_zoom})'
            raise ValueError(msg)
        return self

    @classmethod
    def parse(cls, min_zoom: int | None, max_zoom: int | None) -> ZoomRange:
        if max_zoom is None:
            msg = 'You must provide a max zoom level'
            raise InvalidInput(msg)
        try:
            return cls(min_zoom=MIN_ZOOM if min_zoom is None else min_zoom, max_zoom=max_zoom)
        except ValidationError as e:
            raise InvalidInput(_validation_message(e)) from None

    def levels(self) -> range:
        return range(self.min_zoom, self.max_zoom + 1)


class TileJSON(BaseModel):
    """TileJSON-like descriptor handed to the rendering engine for a source."""

    tilejson: str = '2.2.0'
    tiles: list[str]
    minzoom: int = MIN_ZOOM
    maxzoom: int = MAX_ZOOM
    center: list[float] | None = None
    bounds: list[float] | None = None
    format: str | None = None
    name: str | None = None
    attribution: str | None = None

    def to_bytes(self) -> bytes:
        return self.model_dump_json(exclude_none=True).encode('utf-8')


class Credentials(BaseModel):
    """Provider credentials and provider-specific selectors."""

    model_config = ConfigDict(frozen=True)

    api_key: str | None = None
    mapbox_style: str | None = None
    month_year: str | None = None
    tile_url: str | None = None

    @field_validator('month_year')
    @classmethod
    def _month_year(cls, v: str | None) -> str | None:
        if v and not re.match(MONTH_YEAR_PATTERN, v):
            msg = 'Month and year must be in YYYY-MM format'
            raise ValueError(msg)
        return v

    @field_validator('mapbox_style')
    @classmethod
    def _mapbox_style(cls, v: str | None) -> str | None:
        if v and not re.match(MAPBOX_STYLE_PATTERN, v):
            msg = 'Mapbox style URL must be in a valid format: <yourusername>/<styleid>'
            raise ValueError(msg)
        return v

    def masked_key(self) -> str:
        if not self.api_key:
            return '<none>'
        return self.api_key[:4] + '…'


class AcquisitionJob(BaseModel):
    model_config = ConfigDict(frozen=True)

    provider: str
    credentials: Credentials = Credentials()
    bounds: BoundingBox
    zoom: ZoomRange
    destination: Path


class ArchiveJob(BaseModel):
    """One archive to produce; built from CLI options or a queue payload."""

    model_config = ConfigDict(
        frozen=True,
        extra='ignore',
        populate_by_name=True,
        alias_generator=to_camel,
    )

    style: str
    style_object: dict[str, Any] | None = None
    style_dir: Path | None = None
    source_dir: Path | None = None
    credentials: Credentials = Credentials()
    overlay: str | None = None
    bounds: BoundingBox
    zoom: ZoomRange
    ratio: int = 1
    image_format: ImageFormat = Field(
        default=ImageFormat.JPG,
        validation_alias=AliasChoices('tiletype', 'tileType', 'image_format', 'imageFormat'),
    )
    output_dir: Path = Path('outputs')
    output_filename: str = 'output'
    request_id: str | None = None

    @field_validator('style')
    @classmethod
    def _style(cls, v: str) -> str:
        v = (v or '').strip().lower()
        if not v:
            msg = 'You must provide a style'
            raise ValueError(msg)
        return v

    @field_validator('overlay')
    @classmethod
    def _overlay(cls, v: str | None) -> str | None:
        if v is None or v == '':
            return None
        try:
            json.loads(v)
        except ValueError:
            msg = 'Overlay must be a valid JSON object'
            raise ValueError(msg) from None
        return v

    @field_validator('ratio')
    @classmethod
    def _ratio(cls, v: int) -> int:
        if not (1 <= v <= MAX_PIXEL_RATIO):
            msg = f'ratio must be between 1 and {MAX_PIXEL_RATIO}: {v}'
            raise ValueError(msg)
        return v

    @field_validator('image_format', mode='before')
    @classmethod
    def _image_format(cls, v: Any) -> ImageFormat:
        try:
            return ImageFormat.parse(v)
        except ValueError:
            msg = f'Unsupported tile type: {v}'
            raise ValueError(msg) from None

    @model_validator(mode='after')
    def _self_style(self) -> ArchiveJob:
        if self.style == SELF_STYLE and (
            self.style_object is None or self.style_dir is None or self.source_dir is None
        ):
            msg = (
                'If you are providing your own style, you must provide a style '
                'location and a source directory'
            )
            raise ValueError(msg)
        return self

    @property
    def uses_provider(self) -> bool:
        return self.style != SELF_STYLE

    @property
    def output_path(self) -> Path:
        name = self.output_filename
        if not name.endswith('.mbtiles'):
            name = f'{name}.mbtiles'
        return self.output_dir / name

    @classmethod
    def from_options(cls, options: dict[str, Any]) -> ArchiveJob:
        """Build a job from flat options (camelCase or snake_case keys).

        ``bounds`` may be a ``"w,s,e,n"`` string or a list; zoom keys are
        ``minZoom``/``maxZoom``; credential keys sit at the top level.
        """
        data = dict(options)
        bounds = data.pop('bounds', None)
        if bounds is None:
            msg = 'You must provide bounds'
            raise InvalidInput(msg)
        min_zoom = _first(data, 'minZoom', 'min_zoom', 'minzoom')
        max_zoom = _first(data, 'maxZoom', 'max_zoom', 'maxzoom')
        creds = {
            'api_key': _first(data, 'apiKey', 'api_key', 'apikey'),
            'mapbox_style': _first(data, 'mapboxStyle', 'mapbox_style'),
            'month_year': _first(data, 'monthYear', 'month_year'),
            'tile_url': _first(data, 'tileUrl', 'tile_url'),
        }
        try:
            data['credentials'] = Credentials(**creds)
            data['bounds'] = BoundingBox.parse(bounds)
            data['zoom'] = ZoomRange.parse(_as_int(min_zoom), _as_int(max_zoom))
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidInput(_validation_message(e)) from None

    def acquisition_job(self, destination: Path) -> AcquisitionJob:
        return AcquisitionJob(
            provider=self.style,
            credentials=self.credentials,
            bounds=self.bounds,
            zoom=self.zoom,
            destination=destination,
        )


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            value = data.pop(key)
            if value is not None:
                return value
    return None


def _as_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        msg = f'Zoom level must be an integer: {value!r}'
        raise InvalidInput(msg) from None
