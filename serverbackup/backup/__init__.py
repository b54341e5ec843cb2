"""
Backup module for serverbackup.

This module handles the core backup functionality including:
- Path and database registration
- Table dumps
- Archive writing
- Uploads (Yandex Disk, Dropbox, S3)
- Pipeline orchestration
"""

from .executor import BackupPipeline, BackupResult
from .sources import PathRegistry, PathEntry
from .databases import DatabaseRegistry, ConnectionParams
from .dumps import create_exporter
from .compression import open_archive
from .storage import YandexDiskUploader, DropboxUploader, S3Uploader, create_uploader

__all__ = [
    'BackupPipeline',
    'BackupResult',
    'PathRegistry',
    'PathEntry',
    'DatabaseRegistry',
    'ConnectionParams',
    'create_exporter',
    'open_archive',
    'YandexDiskUploader',
    'DropboxUploader',
    'S3Uploader',
    'create_uploader'
]
