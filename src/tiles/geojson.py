"""Single-document source: one GeoJSON file serves every request."""

from __future__ import annotations

from pathlib import Path


def read_document(path: Path) -> bytes:
    """Return the document verbatim.

    Used for both the source metadata and every tile request; the renderer
    tiles the geometry itself. A missing file raises FileNotFoundError.
    """
    return Path(path).read_bytes()
