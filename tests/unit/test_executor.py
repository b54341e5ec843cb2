"""
Unit tests for the backup pipeline (serverbackup/backup/executor.py).

Tests BackupPipeline for orchestrating complete backup workflows.
"""

import os
import zipfile
from unittest.mock import MagicMock, patch

import pytest
from freezegun import freeze_time

from serverbackup.backup.executor import BackupPipeline, BackupResult
from serverbackup.backup.compression import ArchiveOpenError, CompressionError
from serverbackup.backup.dumps import DumpError
from serverbackup.backup.sources import InvalidPathError
from serverbackup.backup.storage import NoArchiveError, UploadResult, UploadTransferError


def archive_names(path):
    with zipfile.ZipFile(path, 'r') as zipf:
        return sorted(zipf.namelist())


def leftover_dumps(pipeline):
    return [name for name in os.listdir(pipeline.temp_dir)]


class TestBackupPipelineInitialization:

    def test_initialization(self, notifier):
        pipeline = BackupPipeline(notifier=notifier)

        assert pipeline.notifier is notifier
        assert len(pipeline.paths) == 0
        assert len(pipeline.databases) == 0
        assert pipeline.get_archive_file() is None


class TestCreateBackupFiles:
    """File archival phase."""

    def test_directory_structure_preserved(self, pipeline, tmp_path):
        root = tmp_path / 'site'
        (root / 'sub').mkdir(parents=True)
        (root / 'a.txt').write_text('a')
        (root / 'sub' / 'b.txt').write_text('b')
        pipeline.add_path(str(root), 'docs')

        result = pipeline.create_backup(str(tmp_path / 'out.zip'))

        assert result.success
        assert archive_names(tmp_path / 'out.zip') == ['docs/a.txt', 'docs/sub/b.txt']
        assert result.files_added == 2

    def test_archive_inside_registered_directory_is_skipped(self, notifier, tmp_path):
        root = tmp_path / 'site'
        root.mkdir()
        (root / 'a.txt').write_text('a')
        pipeline = BackupPipeline(notifier=notifier, archive_dir=str(root), temp_dir=str(tmp_path))
        pipeline.add_path(str(root), 'site')

        result = pipeline.create_backup()

        assert result.success
        assert archive_names(result.archive_path) == ['site/a.txt']
        assert result.files_added == 1

    def test_single_file(self, pipeline, temp_files, tmp_path):
        pipeline.add_path(str(temp_files / 'test_file1.txt'), 'backup')

        pipeline.create_backup(str(tmp_path / 'out.zip'))

        assert archive_names(tmp_path / 'out.zip') == ['backup/test_file1.txt']

    def test_default_relative_path(self, pipeline, temp_files, tmp_path):
        pipeline.add_path(str(temp_files / 'test_file1.txt'))

        pipeline.create_backup(str(tmp_path / 'out.zip'))

        expected = temp_files.resolve().as_posix().strip('/') + '/test_file1.txt'
        assert archive_names(tmp_path / 'out.zip') == [expected]

    def test_invalid_path_is_skipped(self, pipeline, notifier, temp_files, tmp_path):
        pipeline.add_path(str(tmp_path / 'missing'), 'x')
        pipeline.add_path(str(temp_files / 'test_file1.txt'), 'ok')

        result = pipeline.create_backup(str(tmp_path / 'out.zip'))

        assert result.success
        assert archive_names(tmp_path / 'out.zip') == ['ok/test_file1.txt']
        assert len(notifier.errors) == 1
        assert isinstance(notifier.errors[0], InvalidPathError)

    def test_invalid_path_default_notifier_raises(self, tmp_path):
        pipeline = BackupPipeline(archive_dir=str(tmp_path))

        with pytest.raises(InvalidPathError):
            pipeline.add_path(str(tmp_path / 'missing'))

    @freeze_time("2024-01-15 12:30:45")
    def test_default_archive_name(self, pipeline, temp_files):
        pipeline.add_path(str(temp_files / 'test_file1.txt'), 'backup')

        result = pipeline.create_backup()

        assert os.path.basename(result.archive_path) == 'backup-2024-01-15_12-30-45.zip'
        assert os.path.dirname(result.archive_path) == pipeline.archive_dir

    def test_tar_format(self, notifier, temp_files, tmp_path):
        import tarfile

        pipeline = BackupPipeline(notifier=notifier, archive_format='tar.gz', archive_dir=str(tmp_path))
        pipeline.add_path(str(temp_files / 'test_file1.txt'), 'backup')

        result = pipeline.create_backup()

        assert result.archive_path.endswith('.tar.gz')
        with tarfile.open(result.archive_path, 'r:gz') as tar:
            assert tar.getnames() == ['backup/test_file1.txt']

    def test_counts_are_per_call(self, pipeline, temp_files, tmp_path):
        pipeline.add_path(str(temp_files), 'data')

        first = pipeline.create_backup(str(tmp_path / 'one.zip'))
        second = pipeline.create_backup(str(tmp_path / 'two.zip'))

        assert first.files_added == 4
        assert second.files_added == 4

    def test_logs_progress(self, pipeline, notifier, temp_files, tmp_path):
        pipeline.add_path(str(temp_files / 'test_file1.txt'), 'backup')

        pipeline.create_backup(str(tmp_path / 'out.zip'))

        messages = [message for message, _ in notifier.logs]
        assert any(m.startswith('Creating backup archive') for m in messages)
        assert 'Backed up 1 file(s)' in messages


class TestCreateBackupDatabases:
    """Database export phase."""

    def test_allow_list_exports_only_selected_table(self, pipeline, sqlite_params, tmp_path):
        pipeline.add_database_params(sqlite_params, ['users'])

        result = pipeline.create_backup(str(tmp_path / 'out.zip'))

        assert result.tables_added == 1
        assert archive_names(tmp_path / 'out.zip') == ['.databases/backup@localhost/01-users.sql']

    def test_all_tables_when_no_allow_list(self, pipeline, sqlite_params, tmp_path):
        pipeline.add_database_params(sqlite_params)

        result = pipeline.create_backup(str(tmp_path / 'out.zip'))

        names = archive_names(tmp_path / 'out.zip')
        assert result.tables_added == 2
        assert len(names) == 2
        assert all(name.startswith('.databases/backup@localhost/') for name in names)
        assert {name.split('-', 1)[1] for name in names} == {'users.sql', 'logs.sql'}

    def test_same_table_in_two_databases(self, pipeline, sqlite_params, tmp_path):
        pipeline.add_database_params(sqlite_params, ['users'])
        pipeline.add_database_params(sqlite_params, ['users'])

        pipeline.create_backup(str(tmp_path / 'out.zip'))

        assert archive_names(tmp_path / 'out.zip') == [
            '.databases/backup@localhost/01-users.sql',
            '.databases/backup@localhost/02-users.sql',
        ]

    def test_add_database_keyword_form(self, pipeline, sqlite_db, tmp_path):
        result = pipeline.add_database('localhost', str(sqlite_db), 'backup', 'pw', ['logs'], driver='sqlite')

        assert result.success
        pipeline.create_backup(str(tmp_path / 'out.zip'))
        assert archive_names(tmp_path / 'out.zip') == ['.databases/backup@localhost/01-logs.sql']

    def test_temp_dumps_removed(self, pipeline, sqlite_params, tmp_path):
        pipeline.add_database_params(sqlite_params)

        pipeline.create_backup(str(tmp_path / 'out.zip'))

        assert leftover_dumps(pipeline) == []

    def test_temp_dumps_removed_when_archiving_fails(self, pipeline, notifier, sqlite_params, tmp_path):
        pipeline.add_database_params(sqlite_params, ['users'])
        exported = []
        real_export = pipeline.exporter.export

        def export(params, table, dest_path):
            real_export(params, table, dest_path)
            exported.append(dest_path)

        pipeline.exporter = MagicMock()
        pipeline.exporter.export.side_effect = export

        with patch('serverbackup.backup.compression.ZipArchiveWriter.add_file',
                   side_effect=CompressionError('disk full')):
            result = pipeline.create_backup(str(tmp_path / 'out.zip'))

        assert not result.success
        assert exported
        assert not any(os.path.exists(path) for path in exported)
        assert leftover_dumps(pipeline) == []

    def test_export_failure(self, pipeline, notifier, sqlite_params, tmp_path):
        pipeline.add_database_params(sqlite_params, ['users'])
        pipeline.exporter = MagicMock()
        pipeline.exporter.export.side_effect = DumpError('mysqldump failed', {'table': 'users'})

        result = pipeline.create_backup(str(tmp_path / 'out.zip'))

        assert not result.success
        assert isinstance(result.error, DumpError)
        assert notifier.errors == [result.error]
        assert leftover_dumps(pipeline) == []

    def test_end_to_end(self, pipeline, sqlite_params, tmp_path):
        """One file and one single-table database end up in one archive."""
        source = tmp_path / 'x.txt'
        source.write_text('payload')
        pipeline.add_path(str(source))
        pipeline.add_database_params(sqlite_params, ['users'])
        target = tmp_path / 'out.zip'

        result = pipeline.create_backup(str(target))

        assert result.success
        assert target.exists()
        names = archive_names(target)
        file_name = source.resolve().parent.as_posix().strip('/') + '/x.txt'
        assert file_name in names
        dumps = [n for n in names if n.startswith('.databases/backup@localhost/')]
        assert len(dumps) == 1 and dumps[0].endswith('-users.sql')
        assert pipeline.get_archive_file() == os.path.abspath(str(target))
        assert leftover_dumps(pipeline) == []


class TestCreateBackupFailures:

    def test_archive_open_failure(self, pipeline, notifier, temp_files, tmp_path):
        pipeline.add_path(str(temp_files), 'data')

        result = pipeline.create_backup(str(tmp_path / 'missing_dir' / 'out.zip'))

        assert not result.success
        assert isinstance(result.error, ArchiveOpenError)
        assert len(notifier.errors) == 1
        assert pipeline.get_archive_file() is None

    def test_archive_open_failure_default_notifier_raises(self, temp_files, tmp_path):
        pipeline = BackupPipeline(archive_dir=str(tmp_path))
        pipeline.add_path(str(temp_files), 'data')

        with pytest.raises(ArchiveOpenError):
            pipeline.create_backup(str(tmp_path / 'missing_dir' / 'out.zip'))

    def test_add_file_failure_is_fatal(self, pipeline, notifier, temp_files, tmp_path):
        pipeline.add_path(str(temp_files), 'data')

        with patch('serverbackup.backup.compression.ZipArchiveWriter.add_file',
                   side_effect=CompressionError('Failed to add file to archive', {'path': 'x'})):
            result = pipeline.create_backup(str(tmp_path / 'out.zip'))

        assert not result.success
        assert isinstance(result.error, CompressionError)
        assert result.files_added == 0
        assert pipeline.get_archive_file() is None


class TestUpload:
    """Uploading the finished archive."""

    def test_upload_without_archive_makes_no_call(self, pipeline, notifier):
        uploader = MagicMock()

        result = pipeline.upload(uploader, 'token', '/backups/x.zip')

        assert not result.success
        uploader.upload.assert_not_called()
        assert isinstance(notifier.errors[0], NoArchiveError)

    def test_upload_without_archive_default_notifier_raises(self, tmp_path):
        pipeline = BackupPipeline(archive_dir=str(tmp_path))

        with pytest.raises(NoArchiveError):
            pipeline.upload(MagicMock(), 'token', '/backups/x.zip')

    def test_upload_delegates(self, pipeline, temp_files, tmp_path):
        pipeline.add_path(str(temp_files / 'test_file1.txt'), 'backup')
        pipeline.create_backup(str(tmp_path / 'out.zip'))
        uploader = MagicMock()
        uploader.upload.return_value = UploadResult(True, {'path_display': '/x.zip'})

        result = pipeline.upload(uploader, 'token', '/x.zip')

        assert result.success
        uploader.upload.assert_called_once_with(os.path.abspath(str(tmp_path / 'out.zip')), 'token', '/x.zip')
        assert (tmp_path / 'out.zip').exists()

    def test_upload_remove_local(self, pipeline, temp_files, tmp_path):
        pipeline.add_path(str(temp_files / 'test_file1.txt'), 'backup')
        pipeline.create_backup(str(tmp_path / 'out.zip'))
        uploader = MagicMock()
        uploader.upload.return_value = UploadResult(True, {})

        pipeline.upload(uploader, 'token', '/x.zip', remove_local=True)

        assert not (tmp_path / 'out.zip').exists()
        assert pipeline.get_archive_file() is None

    def test_upload_failure_keeps_local(self, pipeline, notifier, temp_files, tmp_path):
        pipeline.add_path(str(temp_files / 'test_file1.txt'), 'backup')
        pipeline.create_backup(str(tmp_path / 'out.zip'))
        uploader = MagicMock()
        uploader.upload.side_effect = UploadTransferError('Dropbox upload failed (HTTP 409)', {'status_code': 409})

        result = pipeline.upload(uploader, 'token', '/x.zip', remove_local=True)

        assert not result.success
        assert result.error == 'Dropbox upload failed (HTTP 409)'
        assert (tmp_path / 'out.zip').exists()
        assert isinstance(notifier.errors[0], UploadTransferError)


def test_backup_result_truthiness():
    assert BackupResult(True)
    assert not BackupResult(False)
