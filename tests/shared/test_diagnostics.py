"""Tests for diagnostic helpers."""

import logging

from shared.diagnostics import get_file_descriptor_info, get_memory_info, log_resource_usage


def test_memory_info():
    info = get_memory_info()
    assert info['process_rss_mb'] > 0
    assert 0 <= info['system_used_percent'] <= 100


def test_file_descriptor_info(tmp_path):
    before = get_file_descriptor_info()['open_files']
    with (tmp_path / 'f').open('w'):
        assert get_file_descriptor_info()['open_files'] >= before + 1


def test_log_resource_usage(caplog):
    with caplog.at_level(logging.DEBUG, logger='shared.diagnostics'):
        log_resource_usage('after job')
    assert 'Memory usage (after job)' in caplog.text
    assert 'Open files (after job)' in caplog.text
