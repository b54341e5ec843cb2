"""
Backup pipeline - orchestrates the complete backup workflow.

Workflow:
1. Pick the archive path (timestamped name when none is given)
2. Open the archive container (truncate and recreate)
3. Dump every selected database table to a temp file
4. Add registered paths and table dumps to the archive
5. Close the archive
6. Delete temp dump files (failures are ignored)

Uploading the finished archive is a separate call, once per provider.
"""

import os
import shutil
import tempfile
from dataclasses import dataclass, field
from typing import List, Optional, Iterable

from ..notifier import BackupError, Notifier
from .compression import open_archive, generate_archive_filename, get_archive_size, CompressionError
from .databases import ConnectionParams, DatabaseRegistry, DEFAULT_DRIVER, DEFAULT_CHARSET, list_tables
from .dumps import SQLAlchemyDumpExporter, dump_filename
from .sources import PathRegistry, RegistrationResult
from .storage import NoArchiveError, StorageError, UploadResult


@dataclass
class ArchiveJob:
    """State of one create_backup() call."""
    archive_path: str
    files_added: int = 0
    tables_added: int = 0
    temp_files: List[str] = field(default_factory=list)
    temp_dir: Optional[str] = None


@dataclass
class BackupResult:
    """Outcome of one create_backup() call."""
    success: bool
    archive_path: Optional[str] = None
    files_added: int = 0
    tables_added: int = 0
    error: Optional[BackupError] = None

    def __bool__(self):
        return self.success


class BackupPipeline:
    """
    Collects paths and databases and writes them into one archive.

    Not thread-safe: registries and the recorded archive path are plain
    mutable state.
    """

    def __init__(
        self,
        notifier: Optional[Notifier] = None,
        exporter=None,
        archive_format: str = 'zip',
        archive_dir: Optional[str] = None,
        temp_dir: Optional[str] = None,
        exclude_patterns: Optional[List[str]] = None
    ):
        """
        Initialize backup pipeline.

        Args:
            notifier: Log/error channels (console defaults)
            exporter: Table dump exporter (SQLAlchemy-based by default)
            archive_format: Format used for new archives
            archive_dir: Directory for archives created without an explicit path
            temp_dir: Parent directory for table dumps (system temp by default)
            exclude_patterns: Glob patterns skipped while walking directories
        """
        self.notifier = notifier or Notifier()
        self.exporter = exporter or SQLAlchemyDumpExporter()
        self.archive_format = archive_format
        self.archive_dir = archive_dir or os.getcwd()
        self.temp_dir = temp_dir
        self.paths = PathRegistry(self.notifier, exclude_patterns)
        self.databases = DatabaseRegistry(self.notifier)
        self.archive_path = None

    def add_path(self, path: str, relative_path: Optional[str] = None) -> RegistrationResult:
        """
        Add a file or directory for backup.

        Args:
            path: Path to file or directory
            relative_path: Directory inside the archive; defaults to the
                directory portion of path
        """
        return self.paths.register(path, relative_path)

    def add_database(
        self,
        host: Optional[str],
        dbname: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        tables: Optional[Iterable[str]] = None,
        driver: str = DEFAULT_DRIVER,
        charset: Optional[str] = DEFAULT_CHARSET,
        port: Optional[int] = None
    ) -> RegistrationResult:
        """
        Add a database for backup.

        Args:
            host: Database host
            dbname: Database name (file path for SQLite)
            user: User name
            password: Password
            tables: Tables to back up; empty means all tables
            driver: SQLAlchemy drivername (default: mysql+pymysql)
            charset: Connection charset (default: utf8)
            port: Port, driver default when None
        """
        params = ConnectionParams(
            host=host,
            dbname=dbname,
            user=user,
            password=password,
            driver=driver,
            port=port,
            charset=charset
        )
        return self.add_database_params(params, tables)

    def add_database_params(self, params: ConnectionParams, tables: Optional[Iterable[str]] = None) -> RegistrationResult:
        return self.databases.register(params, tables)

    def create_backup(self, target_archive_path: Optional[str] = None) -> BackupResult:
        """
        Build the archive.

        Args:
            target_archive_path: Where to write the archive; a timestamped name
                in archive_dir when None

        Returns:
            BackupResult with per-call counts
        """
        if target_archive_path is None:
            target_archive_path = os.path.join(self.archive_dir, generate_archive_filename(self.archive_format))

        job = ArchiveJob(archive_path=os.path.abspath(target_archive_path))
        self.archive_path = None

        try:
            archive = open_archive(job.archive_path, self.archive_format)
        except CompressionError as e:
            self.notifier.error(e)
            return BackupResult(False, job.archive_path, error=e)

        self.notifier.log(f"Creating backup archive: {job.archive_path}")

        try:
            with archive:
                paths = self.paths.copy()
                self._export_databases(job, paths)
                self._archive_files(job, archive, paths)
        except BackupError as e:
            self.notifier.error(e)
            return BackupResult(False, job.archive_path, job.files_added, job.tables_added, error=e)
        finally:
            self._cleanup(job)

        self.archive_path = job.archive_path
        self.notifier.log(
            f"Backup archive created: {job.archive_path} "
            f"({get_archive_size(job.archive_path) / 1024 / 1024:.2f} MB)"
        )
        return BackupResult(True, job.archive_path, job.files_added, job.tables_added)

    def _export_databases(self, job: ArchiveJob, paths: PathRegistry):
        """Dump every selected table and register the dumps as archive paths."""
        if not len(self.databases):
            return

        self.notifier.log("Backing up databases ...")
        job.temp_dir = tempfile.mkdtemp(prefix='serverbackup_dumps_', dir=self.temp_dir)

        for entry in self.databases:
            params = entry.params
            self.notifier.log(f"Backup database: {params.dsn()}")

            for table in list_tables(entry):
                self.notifier.log(f"Backup table: {table}")
                dump_path = os.path.join(job.temp_dir, dump_filename(job.tables_added + 1, table))
                # Recorded before exporting so a half-written dump is removed too
                job.temp_files.append(dump_path)
                self.exporter.export(params, table, dump_path)
                paths.register(dump_path, params.namespace())
                job.tables_added += 1

        self.notifier.log(f"Dumped {job.tables_added} table(s)")

    def _archive_files(self, job: ArchiveJob, archive, paths: PathRegistry):
        self.notifier.log("Backing up files ...")

        for entry in paths:
            if os.path.isdir(entry.source_path):
                self.notifier.log(f"Backup from directory: {entry.source_path}")

            for local_path, archive_name in paths.iter_archive_members(entry, skip_path=job.archive_path):
                self.notifier.log(f"Backup file: {local_path}")
                archive.add_file(local_path, archive_name)
                job.files_added += 1

        self.notifier.log(f"Backed up {job.files_added} file(s)")

    def _cleanup(self, job: ArchiveJob):
        """Remove temp dump files. Never fails."""
        for temp_file in job.temp_files:
            try:
                os.remove(temp_file)
            except OSError:
                pass

        if job.temp_dir:
            shutil.rmtree(job.temp_dir, ignore_errors=True)

    def get_archive_file(self) -> Optional[str]:
        """Absolute path of the last archive, if it exists on disk."""
        if self.archive_path and os.path.isfile(self.archive_path):
            return self.archive_path
        return None

    def upload(self, uploader, credential, remote_path: str, remove_local: bool = False) -> UploadResult:
        """
        Upload the last archive to one provider.

        Args:
            uploader: Uploader instance (see storage.create_uploader)
            credential: Provider credential (token, or key pair for S3)
            remote_path: Destination on the provider
            remove_local: Delete the local archive after a successful upload

        Returns:
            UploadResult
        """
        archive_file = self.get_archive_file()
        if archive_file is None:
            error = NoArchiveError("No archive to upload, create a backup first", {'remote_path': remote_path})
            self.notifier.error(error)
            return UploadResult(False, error=error.message)

        provider = getattr(uploader, 'provider', type(uploader).__name__)
        self.notifier.log(f"Uploading {archive_file} to {provider}:{remote_path}")

        try:
            result = uploader.upload(archive_file, credential, remote_path)
        except StorageError as e:
            self.notifier.error(e)
            return UploadResult(False, error=e.message)

        self.notifier.log(f"Uploaded to {provider}:{remote_path}")

        if remove_local:
            try:
                os.remove(archive_file)
            except OSError:
                pass

        return result
