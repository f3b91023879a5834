"""
Diagnostic utilities.

Resource snapshots logged around archive jobs: process memory and the number
of open files. Tile stores are opened per request, so a file count that
keeps climbing across jobs points at a leaked handle.
"""

import logging
from typing import Any

import psutil

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


def _mb(n: int) -> float:
    return round(n / _MB, 2)


def get_memory_info() -> dict[str, Any]:
    """Process RSS/VMS and system memory, in MB."""
    try:
        mem = psutil.Process().memory_info()
        system = psutil.virtual_memory()
    except psutil.Error as e:
        return {'error': f'Failed to get memory info: {e}'}
    return {
        'process_rss_mb': _mb(mem.rss),
        'process_vms_mb': _mb(mem.vms),
        'system_total_mb': _mb(system.total),
        'system_available_mb': _mb(system.available),
        'system_used_percent': system.percent,
    }


def get_file_descriptor_info() -> dict[str, Any]:
    """Regular files currently held open by this process."""
    try:
        process = psutil.Process()
        return {'open_files': len(process.open_files()), 'pid': process.pid}
    except psutil.Error as e:
        return {'error': f'Failed to get file descriptor info: {e}'}


def _label(context: str) -> str:
    return f' ({context})' if context else ''


def log_memory_usage(context: str = '') -> None:
    info = get_memory_info()
    logger.info(
        'Memory usage%s: RSS=%sMB, Available=%sMB',
        _label(context),
        info.get('process_rss_mb', 'N/A'),
        info.get('system_available_mb', 'N/A'),
    )


def log_resource_usage(context: str = '') -> None:
    """Memory at info level, open file count at debug level."""
    log_memory_usage(context)
    files = get_file_descriptor_info()
    logger.debug('Open files%s: %s', _label(context), files.get('open_files', files.get('error')))
