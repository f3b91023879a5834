"""Imaging package - encoding of rendered tiles."""

from imaging.encode import encode_image, unpremultiply

__all__ = ['encode_image', 'unpremultiply']
