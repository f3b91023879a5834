"""Job services: acquisition, assembly, orchestration and the queue worker."""

from services.acquisition import AcquisitionReport, acquire
from services.assembler import ArchiveAssembler
from services.job_runner import run_archive_job
from services.providers import PROVIDERS, Provider, check_credentials, get_provider

__all__ = [
    'PROVIDERS',
    'AcquisitionReport',
    'ArchiveAssembler',
    'Provider',
    'acquire',
    'check_credentials',
    'get_provider',
    'run_archive_job',
]
