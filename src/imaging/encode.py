"""Rendered-buffer to tile-image encoding."""

from __future__ import annotations

import io

import numpy as np
from PIL import Image

from shared.constants import JPEG_QUALITY, PIL_FORMAT_NAMES, ImageFormat


def unpremultiply(rgba: np.ndarray) -> np.ndarray:
    """Divide alpha back out of premultiplied 8-bit RGBA.

    Fully transparent pixels become black.
    """
    arr = rgba.astype(np.float32)
    alpha = arr[..., 3:4]
    with np.errstate(divide='ignore', invalid='ignore'):
        rgb = np.where(alpha > 0, arr[..., :3] * 255.0 / alpha, 0.0)
    out = np.empty_like(rgba, dtype=np.uint8)
    out[..., :3] = np.clip(np.rint(rgb), 0, 255).astype(np.uint8)
    out[..., 3] = rgba[..., 3]
    return out


def encode_image(
    buffer: bytes,
    width: int,
    height: int,
    image_format: ImageFormat | str = ImageFormat.JPG,
    *,
    quality: int = JPEG_QUALITY,
) -> bytes:
    """Encode a premultiplied RGBA buffer of ``width`` x ``height`` pixels.

    JPEG has no alpha channel, so it is flattened to RGB; PNG and WEBP keep
    transparency.
    """
    fmt = ImageFormat.parse(image_format)
    expected = width * height * 4
    if len(buffer) != expected:
        msg = f'Buffer size {len(buffer)} does not match {width}x{height} RGBA ({expected})'
        raise ValueError(msg)
    rgba = np.frombuffer(buffer, dtype=np.uint8).reshape((height, width, 4))
    img = Image.fromarray(unpremultiply(rgba))
    if fmt is ImageFormat.JPG:
        img = img.convert('RGB')

    out = io.BytesIO()
    save_kwargs: dict = {}
    if fmt in (ImageFormat.JPG, ImageFormat.WEBP):
        save_kwargs['quality'] = quality
    img.save(out, format=PIL_FORMAT_NAMES[fmt], **save_kwargs)
    return out.getvalue()
