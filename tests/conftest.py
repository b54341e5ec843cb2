"""
Shared pytest fixtures for serverbackup tests.

This module provides fixtures for:
- Notifiers that record instead of printing/raising
- Pipelines writing into a temporary directory
- SQLite databases with sample tables
- Mock fixtures for external services (S3)
- Temporary file fixtures
"""

import sqlite3

import pytest
import boto3
from moto import mock_aws

from serverbackup.notifier import Notifier
from serverbackup.backup.executor import BackupPipeline


class RecordingNotifier(Notifier):
    """Notifier that keeps every message and never aborts."""

    def __init__(self):
        self.logs = []
        self.errors = []
        super().__init__(log_sink=self._record_log, error_sink=self.errors.append)

    def _record_log(self, message, data):
        self.logs.append((message, data))


@pytest.fixture
def notifier():
    """Non-aborting notifier recording logs and errors."""
    return RecordingNotifier()


@pytest.fixture
def pipeline(notifier, tmp_path):
    """
    BackupPipeline with a recording notifier.

    Archives and dumps land under tmp_path.
    """
    dumps_dir = tmp_path / 'dumps'
    dumps_dir.mkdir()
    archives_dir = tmp_path / 'archives'
    archives_dir.mkdir()

    return BackupPipeline(
        notifier=notifier,
        archive_dir=str(archives_dir),
        temp_dir=str(dumps_dir)
    )


@pytest.fixture
def temp_files(tmp_path):
    """
    Create temporary test files and directories.

    Creates:
    - data/test_file1.txt
    - data/test_file2.log
    - data/nested/test_file3.txt
    - data/test_file.pyc (should be excluded in tests)
    """
    data_dir = tmp_path / 'data'
    data_dir.mkdir()

    # Create files
    (data_dir / 'test_file1.txt').write_text('Test content 1')
    (data_dir / 'test_file2.log').write_text('Test log content')

    # Create nested directory
    nested_dir = data_dir / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    # Create file that should be excluded
    (data_dir / 'test_file.pyc').write_bytes(b'compiled python')

    return data_dir


@pytest.fixture
def sqlite_db(tmp_path):
    """
    SQLite database with two tables.

    - users: 2 rows
    - logs: 1 row
    """
    db_path = tmp_path / 'shop.db'
    conn = sqlite3.connect(str(db_path))
    conn.execute('CREATE TABLE users (id INTEGER PRIMARY KEY, name VARCHAR(50))')
    conn.execute('CREATE TABLE logs (id INTEGER PRIMARY KEY, message TEXT)')
    conn.execute("INSERT INTO users (id, name) VALUES (1, 'alice'), (2, 'bob')")
    conn.execute("INSERT INTO logs (id, message) VALUES (1, 'started')")
    conn.commit()
    conn.close()
    return db_path


@pytest.fixture
def sqlite_params(sqlite_db):
    """ConnectionParams for sqlite_db, with a user/host for the archive namespace."""
    from serverbackup.backup.databases import ConnectionParams

    return ConnectionParams(
        host='localhost',
        dbname=str(sqlite_db),
        user='backup',
        password='s3cret',
        driver='sqlite'
    )


@pytest.fixture
def sample_archive(tmp_path):
    """
    Create a sample archive file for upload tests.
    """
    archive_path = tmp_path / 'backup-2024-01-15_12-00-00.zip'
    archive_path.write_bytes(b'PK\x05\x06' + b'\x00' * 18)
    return archive_path


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        # Create mock S3 resource
        s3 = boto3.resource('s3', region_name='us-east-1')

        # Create test bucket
        s3.create_bucket(Bucket='test-bucket')

        yield s3
