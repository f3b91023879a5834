from enum import Enum, IntEnum

# Web Mercator latitude limit (degrees); tan() of anything beyond diverges
MERCATOR_MAX_LAT_DEG = 85.0511287798066

# Whole-world bounds used when a source declares degenerate bounds
WORLD_BOUNDS = (-180.0, -MERCATOR_MAX_LAT_DEG, 180.0, MERCATOR_MAX_LAT_DEG)

# Supported zoom range
MIN_ZOOM = 0
MAX_ZOOM = 22

# Rendered tile edge (px) before pixel ratio is applied
RENDER_TILE_SIZE = 512

# Source tile edge (px) for conventional raster providers
SOURCE_TILE_SIZE = 256

# Maximum pixel ratio accepted by the renderer
MAX_PIXEL_RATIO = 4

# Thumbnail size (px) and zoom
THUMBNAIL_WIDTH = 512
THUMBNAIL_HEIGHT = 256
THUMBNAIL_ZOOM = 4

# Fixed fan-out for provider downloads (upstream rate limits)
DOWNLOAD_CONCURRENCY = 5

# HTTP
HTTP_TIMEOUT_DEFAULT = 30.0
HTTP_RETRIES_DEFAULT = 1
HTTP_BACKOFF_FACTOR = 2.0
HTTP_5XX_MIN = 500
HTTP_5XX_MAX = 600
HTTP_CACHE_EXPIRE_HOURS = 24

# Container writer batching
WRITER_BATCH_SIZE = 50
WRITER_BATCH_TIMEOUT = 1.0
WRITER_QUEUE_SIZE = 256

# File names inside a job workspace
METADATA_FILENAME = 'metadata.json'
TILE_INDEX_FILENAME = 'tiles.json'
STYLE_FILENAME = 'style.json'
OVERLAY_FILENAME = 'overlay.geojson'
SOURCES_DIRNAME = 'sources'

# Archive naming
ARCHIVE_SUFFIX = '.mbtiles'
PMTILES_SUFFIX = '.pmtiles'
THUMBNAIL_SUFFIX = '.jpg'

# Queue worker
WORKER_POLL_INTERVAL_S = 10.0
WORKER_VISIBILITY_TIMEOUT_S = 2 * 60 * 60

MONTH_YEAR_PATTERN = r'^\d{4}-\d{2}$'
MAPBOX_STYLE_PATTERN = r'^[\w-]+/[\w-]+$'


class ResourceKind(IntEnum):
    """Resource request kinds issued by the rendering engine."""

    UNKNOWN = 0
    STYLE = 1
    SOURCE = 2
    TILE = 3
    GLYPHS = 4
    SPRITE_IMAGE = 5
    SPRITE_JSON = 6


class ImageFormat(str, Enum):
    JPG = 'jpg'
    PNG = 'png'
    WEBP = 'webp'

    @classmethod
    def parse(cls, value: 'str | ImageFormat') -> 'ImageFormat':
        if isinstance(value, cls):
            return value
        v = str(value).strip().lower()
        if v == 'jpeg':
            v = 'jpg'
        return cls(v)


# Pillow encoder names per output format
PIL_FORMAT_NAMES: dict[ImageFormat, str] = {
    ImageFormat.JPG: 'JPEG',
    ImageFormat.PNG: 'PNG',
    ImageFormat.WEBP: 'WEBP',
}

JPEG_QUALITY = 90
