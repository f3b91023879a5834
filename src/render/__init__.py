"""Rendering engine interface."""

from render.engine import RenderedImage, RenderEngine, RenderOptions, load_engine

__all__ = ['RenderEngine', 'RenderOptions', 'RenderedImage', 'load_engine']
