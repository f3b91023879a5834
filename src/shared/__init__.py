"""Shared utilities and helpers."""
from shared.diagnostics import (
    get_file_descriptor_info,
    get_memory_info,
    log_memory_usage,
    log_resource_usage,
)

__all__ = [
    'get_file_descriptor_info',
    'get_memory_info',
    'log_memory_usage',
    'log_resource_usage',
]
