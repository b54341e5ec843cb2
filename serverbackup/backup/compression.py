"""
Archive writers for backup archives.

Supports multiple formats:
- zip: Standard zip compression
- tar.gz: Gzip compressed tar
- tar.bz2: Bzip2 compressed tar
- tar.xz: LZMA compressed tar
- none: No compression (tar only)

A writer is append-only: files go in one at a time under an explicit name,
and close() seals the container.
"""

import os
import tarfile
import zipfile
from datetime import datetime

from ..notifier import BackupError


class CompressionError(BackupError):
    """Raised when a file cannot be added to the archive."""
    pass


class ArchiveOpenError(CompressionError):
    """Raised when the archive container cannot be created."""
    pass


# Format -> file extension
EXTENSIONS = {
    'zip': 'zip',
    'tar.gz': 'tar.gz',
    'tar.bz2': 'tar.bz2',
    'tar.xz': 'tar.xz',
    'none': 'tar'
}

# Format -> tarfile mode
TAR_MODES = {
    'tar.gz': 'w:gz',
    'tar.bz2': 'w:bz2',
    'tar.xz': 'w:xz',
    'none': 'w'
}


class ArchiveWriter:
    """Base class for archive writers."""

    def __init__(self, archive_path: str):
        self.archive_path = archive_path

    def add_file(self, local_path: str, archive_name: str):
        raise NotImplementedError

    def close(self):
        raise NotImplementedError

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class ZipArchiveWriter(ArchiveWriter):
    """Deflated ZIP archive."""

    def __init__(self, archive_path: str):
        super().__init__(archive_path)
        self._zipf = zipfile.ZipFile(archive_path, 'w', zipfile.ZIP_DEFLATED)

    def add_file(self, local_path: str, archive_name: str):
        try:
            self._zipf.write(local_path, archive_name)
        except (OSError, ValueError, zipfile.BadZipFile) as e:
            raise CompressionError(
                f"Failed to add file to archive: {e}",
                {'path': local_path, 'archive_name': archive_name}
            )

    def close(self):
        if self._zipf is not None:
            self._zipf.close()
            self._zipf = None


class TarArchiveWriter(ArchiveWriter):
    """TAR archive with optional compression."""

    def __init__(self, archive_path: str, archive_format: str = 'tar.gz'):
        super().__init__(archive_path)
        mode = TAR_MODES.get(archive_format, 'w:gz')
        self._tar = tarfile.open(archive_path, mode)

    def add_file(self, local_path: str, archive_name: str):
        try:
            self._tar.add(local_path, arcname=archive_name, recursive=False)
        except (OSError, tarfile.TarError) as e:
            raise CompressionError(
                f"Failed to add file to archive: {e}",
                {'path': local_path, 'archive_name': archive_name}
            )

    def close(self):
        if self._tar is not None:
            self._tar.close()
            self._tar = None


def open_archive(archive_path: str, archive_format: str = 'zip') -> ArchiveWriter:
    """
    Create (or truncate) an archive and return a writer for it.

    Args:
        archive_path: Full path of the archive file
        archive_format: Format to use ('zip', 'tar.gz', 'tar.bz2', 'tar.xz', 'none')

    Returns:
        ArchiveWriter instance

    Raises:
        ValueError: If archive_format is invalid
        ArchiveOpenError: If the archive file cannot be created
    """
    if archive_format not in EXTENSIONS:
        raise ValueError(
            f"Invalid archive format: {archive_format}. "
            f"Valid options: {list(EXTENSIONS.keys())}"
        )

    try:
        if archive_format == 'zip':
            return ZipArchiveWriter(archive_path)
        return TarArchiveWriter(archive_path, archive_format)
    except (OSError, tarfile.TarError) as e:
        raise ArchiveOpenError(
            f"Fail on creating archive file: {e}",
            {'filepath': archive_path}
        )


def generate_archive_filename(archive_format: str = 'zip') -> str:
    """
    Generate a standardized archive filename.

    Format: backup-{YYYY-MM-DD_HH-MM-SS}.{ext}

    Args:
        archive_format: Archive format

    Returns:
        Filename (without path)
    """
    timestamp = datetime.now().strftime('%Y-%m-%d_%H-%M-%S')
    extension = EXTENSIONS.get(archive_format, 'zip')
    return f"backup-{timestamp}.{extension}"


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Args:
        archive_path: Path to the archive file

    Returns:
        File size in bytes

    Raises:
        CompressionError: If file doesn't exist or cannot be accessed
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")
    except OSError as e:
        raise CompressionError(f"Failed to get archive size: {e}")
