"""
Database sources for backup archives.

DatabaseRegistry holds connection parameters for databases whose tables are
dumped into the archive. Connectivity is probed once, at registration; no
connection is kept open afterwards.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Any

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import URL, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from ..notifier import BackupError, Notifier, REDACTED
from .sources import RegistrationResult

DEFAULT_DRIVER = 'mysql+pymysql'
DEFAULT_CHARSET = 'utf8'


class DatabaseConnectionError(BackupError):
    """Raised when a database cannot be reached."""
    pass


@dataclass(frozen=True)
class ConnectionParams:
    """Connection parameters for one database."""
    host: Optional[str]
    dbname: str
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    driver: str = DEFAULT_DRIVER
    port: Optional[int] = None
    charset: Optional[str] = DEFAULT_CHARSET

    @property
    def is_file_based(self) -> bool:
        return self.driver.split('+')[0] == 'sqlite'

    @property
    def backend(self) -> str:
        return self.driver.split('+')[0]

    def url(self) -> URL:
        """SQLAlchemy URL for these parameters."""
        if self.is_file_based:
            return URL.create(self.driver, database=self.dbname)

        query = {}
        if self.charset and self.backend == 'mysql':
            query['charset'] = self.charset

        return URL.create(
            self.driver,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.dbname,
            query=query
        )

    def dsn(self) -> str:
        """Connection string with the password hidden."""
        return self.url().render_as_string(hide_password=True)

    def redacted(self) -> Dict[str, Any]:
        return {
            'driver': self.driver,
            'host': self.host,
            'port': self.port,
            'dbname': self.dbname,
            'charset': self.charset,
            'user': self.user,
            'password': REDACTED if self.password else self.password,
        }

    def namespace(self) -> str:
        """Archive directory holding this database's table dumps."""
        return f".databases/{self.user or ''}@{self.host or ''}"

    @classmethod
    def from_url(cls, url: str) -> 'ConnectionParams':
        """Build parameters from an SQLAlchemy URL string."""
        parsed = make_url(url)
        return cls(
            host=parsed.host,
            dbname=parsed.database,
            user=parsed.username,
            password=parsed.password,
            driver=parsed.drivername,
            port=parsed.port,
            charset=parsed.query.get('charset', DEFAULT_CHARSET)
        )


@dataclass(frozen=True)
class DatabaseEntry:
    """A registered database and its table allow-list (empty = all tables)."""
    params: ConnectionParams
    tables: FrozenSet[str] = frozenset()


def create_db_engine(params: ConnectionParams) -> Engine:
    return create_engine(params.url())


def probe_connection(params: ConnectionParams):
    """
    Open a connection and run a trivial query.

    Raises:
        SQLAlchemyError: If the database cannot be reached
        FileNotFoundError: If a file-based database does not exist
    """
    # SQLite would silently create a missing file
    if params.is_file_based and params.dbname and params.dbname != ':memory:':
        if not os.path.isfile(params.dbname):
            raise FileNotFoundError(f"Database file not found: {params.dbname}")

    engine = create_db_engine(params)
    try:
        with engine.connect() as conn:
            conn.execute(text('SELECT 1'))
    finally:
        engine.dispose()


def list_tables(entry: DatabaseEntry) -> List[str]:
    """
    Table names selected for backup, in the order the inspector returns them.

    Raises:
        DatabaseConnectionError: If the table list cannot be read
    """
    engine = create_db_engine(entry.params)
    try:
        names = inspect(engine).get_table_names()
    except SQLAlchemyError as e:
        raise DatabaseConnectionError(
            f"Failed to list tables: {e}",
            {'dsn': entry.params.dsn()}
        )
    finally:
        engine.dispose()

    if entry.tables:
        names = [name for name in names if name in entry.tables]
    return names


class DatabaseRegistry:
    """Ordered list of databases to dump."""

    def __init__(self, notifier: Optional[Notifier] = None):
        self.notifier = notifier or Notifier()
        self._entries: List[DatabaseEntry] = []

    @property
    def entries(self) -> List[DatabaseEntry]:
        return list(self._entries)

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    def register(self, params: ConnectionParams, tables: Optional[Iterable[str]] = None) -> RegistrationResult:
        """
        Probe and add a database.

        Args:
            params: Connection parameters
            tables: Tables to back up; empty or None means all tables

        Returns:
            RegistrationResult; failed when the probe failed and the error
            sink did not abort
        """
        tables = sorted(set(tables or []))
        try:
            probe_connection(params)
        except (SQLAlchemyError, ImportError, OSError) as e:
            error = DatabaseConnectionError(
                f"Database connection error: {e}",
                {'dsn': params.dsn(), 'params': params.redacted(), 'tables': tables}
            )
            self.notifier.error(error)
            return RegistrationResult(False, error=error)

        entry = DatabaseEntry(params=params, tables=frozenset(tables))
        self._entries.append(entry)
        return RegistrationResult(True, entry=entry)
