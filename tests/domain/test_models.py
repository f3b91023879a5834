"""Tests for domain models."""

from pathlib import Path

import pytest

from domain.errors import InvalidInput
from domain.models import ArchiveJob, BoundingBox, Credentials, ZoomRange
from shared.constants import ImageFormat


class TestBoundingBox:
    def test_parse_string(self):
        bb = BoundingBox.parse('-79,37,-77,38')
        assert bb.as_list() == [-79.0, 37.0, -77.0, 38.0]
        assert bb.center == (-78.0, 37.5)

    def test_parse_sequence(self):
        assert BoundingBox.parse([1, 2, 3, 4]).north == 4.0

    @pytest.mark.parametrize(
        'value',
        ['1,2,3', 'a,b,c,d', '1,2,1,4', '1,2,3,2', '1,2,3,nan', '-200,0,10,10', '0,-95,10,10'],
    )
    def test_invalid(self, value):
        with pytest.raises(InvalidInput):
            BoundingBox.parse(value)

    def test_same_west_east_message(self):
        with pytest.raises(InvalidInput, match='west and east'):
            BoundingBox.parse('5,1,5,2')


class TestZoomRange:
    def test_levels(self):
        assert list(ZoomRange.parse(2, 4).levels()) == [2, 3, 4]

    def test_min_defaults_to_zero(self):
        assert ZoomRange.parse(None, 3).min_zoom == 0

    def test_max_required(self):
        with pytest.raises(InvalidInput, match='max zoom'):
            ZoomRange.parse(0, None)

    @pytest.mark.parametrize(('lo', 'hi'), [(-1, 3), (0, 23), (5, 4)])
    def test_invalid(self, lo, hi):
        with pytest.raises(InvalidInput):
            ZoomRange.parse(lo, hi)


class TestCredentials:
    def test_month_year_format(self):
        with pytest.raises(ValueError, match='YYYY-MM'):
            Credentials(month_year='2024/01')

    def test_mapbox_style_format(self):
        with pytest.raises(ValueError, match='username'):
            Credentials(mapbox_style='not a style')

    def test_masked_key(self):
        assert Credentials(api_key='abcdef123').masked_key() == 'abcd…'
        assert Credentials().masked_key() == '<none>'


class TestArchiveJob:
    def test_from_camel_case_options(self):
        job = ArchiveJob.from_options(
            {
                'style': 'Bing',
                'bounds': '-79,37,-77,38',
                'minZoom': 0,
                'maxZoom': '5',
                'tiletype': 'jpeg',
                'outputDir': '/maps',
                'outputFilename': 'area',
                'requestId': 'r-1',
                'apiKey': 'k',
            }
        )
        assert job.style == 'bing'
        assert job.uses_provider
        assert job.zoom.max_zoom == 5
        assert job.image_format is ImageFormat.JPG
        assert job.output_path == Path('/maps/area.mbtiles')
        assert job.request_id == 'r-1'
        assert job.credentials.api_key == 'k'

    def test_snake_case_options(self):
        job = ArchiveJob.from_options(
            {'style': 'esri', 'bounds': [0, 0, 1, 1], 'max_zoom': 2, 'image_format': 'png'}
        )
        assert job.image_format is ImageFormat.PNG
        assert job.output_path == Path('outputs/output.mbtiles')

    def test_self_style_requires_dirs(self):
        with pytest.raises(InvalidInput, match='style location'):
            ArchiveJob.from_options({'style': 'self', 'bounds': '0,0,1,1', 'maxZoom': 1})

    def test_bad_overlay(self):
        with pytest.raises(InvalidInput, match='Overlay'):
            ArchiveJob.from_options(
                {'style': 'esri', 'bounds': '0,0,1,1', 'maxZoom': 1, 'overlay': '{nope'}
            )

    def test_bad_ratio_and_tiletype(self):
        with pytest.raises(InvalidInput, match='ratio'):
            ArchiveJob.from_options(
                {'style': 'esri', 'bounds': '0,0,1,1', 'maxZoom': 1, 'ratio': 9}
            )
        with pytest.raises(InvalidInput, match='tile type'):
            ArchiveJob.from_options(
                {'style': 'esri', 'bounds': '0,0,1,1', 'maxZoom': 1, 'tiletype': 'gif'}
            )

    def test_missing_bounds(self):
        with pytest.raises(InvalidInput, match='bounds'):
            ArchiveJob.from_options({'style': 'esri', 'maxZoom': 1})

    def test_acquisition_job(self, tmp_path):
        job = ArchiveJob.from_options({'style': 'google', 'bounds': '0,0,1,1', 'maxZoom': 1})
        acq = job.acquisition_job(tmp_path)
        assert acq.provider == 'google'
        assert acq.destination == tmp_path
        assert acq.zoom == job.zoom
