"""Tile stores and resource resolution.

This package provides:
- MBTilesStore / ArchiveWriter: the MBTiles container and its writer thread
- PMTilesFile / RemotePMTiles: range-addressed single-file archives
- DirectoryTileStore: plain z/x/y trees
- SourceResolver: answers rendering engine resource requests
- run_tiles: bounded-concurrency per-zoom tile processing
"""

from tiles.directory import DirectoryTileStore
from tiles.executor import TileOutcome, TileStatus, run_tiles
from tiles.mbtiles import MBTilesStore
from tiles.pmtiles_store import PMTilesFile, RemotePMTiles
from tiles.resolver import SourceResolver
from tiles.sources import ResourceRequest, ResourceResponse, SourceKind, classify_url
from tiles.writer import ArchiveWriter

__all__ = [
    'ArchiveWriter',
    'DirectoryTileStore',
    'MBTilesStore',
    'PMTilesFile',
    'RemotePMTiles',
    'ResourceRequest',
    'ResourceResponse',
    'SourceKind',
    'SourceResolver',
    'TileOutcome',
    'TileStatus',
    'classify_url',
    'run_tiles',
]
