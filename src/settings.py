"""Application settings loaded from TOML.

Lookup order: explicit ``--config`` path, then ``$MAPPACKER_CONFIG``, then
``configs/default.toml`` next to the project root. A missing default file
just means built-in defaults.
"""

import logging
import os
from pathlib import Path

import tomlkit
from pydantic import BaseModel, ConfigDict, field_validator

from shared.constants import (
    DOWNLOAD_CONCURRENCY,
    HTTP_BACKOFF_FACTOR,
    HTTP_CACHE_EXPIRE_HOURS,
    HTTP_RETRIES_DEFAULT,
    HTTP_TIMEOUT_DEFAULT,
    RENDER_TILE_SIZE,
    WORKER_POLL_INTERVAL_S,
)

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = 'MAPPACKER_CONFIG'
DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / 'configs' / 'default.toml'


class _Section(BaseModel):
    model_config = ConfigDict(extra='ignore')


class HttpSettings(_Section):
    # Parallel provider downloads (upstream rate limits)
    concurrency: int = DOWNLOAD_CONCURRENCY
    timeout: float = HTTP_TIMEOUT_DEFAULT
    # Total attempts per request, 1 = no retry
    retries: int = HTTP_RETRIES_DEFAULT
    backoff: float = HTTP_BACKOFF_FACTOR
    # Response cache for glyph/sprite passthrough
    cache_enabled: bool = False
    cache_dir: Path = Path('.cache/http')
    cache_expire_hours: int = HTTP_CACHE_EXPIRE_HOURS

    @field_validator('concurrency', 'retries')
    @classmethod
    def _positive(cls, v: int, info) -> int:
        if v < 1:
            msg = f'http.{info.field_name} must be at least 1'
            raise ValueError(msg)
        return v


class RenderSettings(_Section):
    # "module:factory" building the rendering engine
    engine: str = ''
    tile_size: int = RENDER_TILE_SIZE
    thumbnail: bool = False


class OutputSettings(_Section):
    directory: Path = Path('outputs')
    # Job workspaces (downloaded tiles, generated style); None = system temp
    work_dir: Path | None = None


class WorkerSettings(_Section):
    poll_interval: float = WORKER_POLL_INTERVAL_S
    status_dir: Path = Path('outputs/status')
    # Where queued archives are written unless the request says otherwise
    output_dir: Path = Path('/maps')
    # "module:factory" building the queue transport; empty = file spool
    transport: str = ''
    queue_dir: Path = Path('outputs/queue')


class LoggingSettings(_Section):
    level: str = 'INFO'
    file: Path | None = None

    @field_validator('level')
    @classmethod
    def _level(cls, v: str) -> str:
        v = v.upper()
        if v not in logging.getLevelNamesMapping():
            msg = f'Unknown log level: {v}'
            raise ValueError(msg)
        return v


class AppSettings(_Section):
    http: HttpSettings = HttpSettings()
    render: RenderSettings = RenderSettings()
    output: OutputSettings = OutputSettings()
    worker: WorkerSettings = WorkerSettings()
    logging: LoggingSettings = LoggingSettings()


def resolve_config_path(explicit: str | Path | None = None) -> Path | None:
    if explicit:
        return Path(explicit)
    env = os.getenv(CONFIG_ENV_VAR)
    if env:
        return Path(env)
    if DEFAULT_CONFIG_PATH.exists():
        return DEFAULT_CONFIG_PATH
    return None


def load_settings(path: str | Path | None = None) -> AppSettings:
    """Load and validate settings; an explicit path must exist."""
    config_path = resolve_config_path(path)
    if config_path is None:
        return AppSettings()
    if not config_path.exists():
        msg = f'Config file not found: {config_path}'
        raise FileNotFoundError(msg)
    data = tomlkit.parse(config_path.read_text(encoding='utf-8'))
    settings = AppSettings.model_validate(data.unwrap())
    logger.debug('Settings loaded from %s', config_path)
    return settings
