"""
Table dump exporters.

An exporter turns one (connection, table) pair into a standalone SQL dump
file on local disk. Supports:
- SQLAlchemyDumpExporter: DDL and INSERT statements rendered by the dialect
- MysqldumpExporter: the mysqldump binary, one table per run
"""

import os
import shutil
import subprocess
from datetime import datetime

from sqlalchemy import MetaData, Table, insert, literal_column, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import CreateTable, DropTable

from ..notifier import BackupError
from .databases import ConnectionParams, create_db_engine

MYSQLDUMP_BINARY = 'mysqldump'


class DumpError(BackupError):
    """Raised when a table dump cannot be produced."""
    pass


def dump_filename(sequence: int, table: str) -> str:
    """
    Dump file name for a table.

    Format: {NN}-{table}.sql, NN being the job-wide sequence number so that
    same-named tables from different databases do not collide.
    """
    return f"{sequence:02d}-{table}.sql"


def render_binary(value, dialect):
    """
    Binary values as a hex literal column; anything else unchanged.

    SQLAlchemy cannot render bytes with literal_binds, so they are written
    as X'00FF' (or '\\x00ff'::bytea on PostgreSQL).
    """
    if isinstance(value, memoryview):
        value = value.tobytes()
    if not isinstance(value, (bytes, bytearray)):
        return value
    if dialect.name == 'postgresql':
        return literal_column(f"'\\x{value.hex()}'::bytea")
    return literal_column(f"X'{value.hex().upper()}'")


class SQLAlchemyDumpExporter:
    """
    Dump a table through SQLAlchemy reflection.

    Works with any dialect SQLAlchemy can reflect and render literals for.
    """

    def export(self, params: ConnectionParams, table: str, dest_path: str):
        """
        Write one table as SQL statements.

        Args:
            params: Connection parameters
            table: Table name
            dest_path: Dump file to create

        Raises:
            DumpError: If reflection, querying or writing fails
        """
        engine = create_db_engine(params)
        try:
            metadata = MetaData()
            reflected = Table(table, metadata, autoload_with=engine)
            dialect = engine.dialect

            with engine.connect() as conn, open(dest_path, 'w', encoding='utf-8') as f:
                f.write(f"-- Dump of table {table}\n")
                f.write(f"-- Database: {params.dsn()}\n")
                f.write(f"-- Created: {datetime.now().isoformat(timespec='seconds')}\n\n")

                drop_sql = str(DropTable(reflected, if_exists=True).compile(dialect=dialect)).strip()
                f.write(f"{drop_sql};\n")
                create_sql = str(CreateTable(reflected).compile(dialect=dialect)).strip()
                f.write(f"{create_sql};\n\n")

                for row in conn.execute(select(reflected)).mappings():
                    values = {key: render_binary(value, dialect) for key, value in row.items()}
                    statement = insert(reflected).values(values).compile(
                        dialect=dialect,
                        compile_kwargs={'literal_binds': True}
                    )
                    f.write(f"{statement};\n")

        except (SQLAlchemyError, OSError) as e:
            raise DumpError(
                f"Failed to dump table {table}: {e}",
                {'dsn': params.dsn(), 'table': table, 'dest_path': dest_path}
            )
        finally:
            engine.dispose()


class MysqldumpExporter:
    """
    Dump a MySQL table with the mysqldump binary.

    The password is handed over in MYSQL_PWD, never on the command line.
    """

    def __init__(self, binary: str = MYSQLDUMP_BINARY, options: list = None):
        self.binary = binary
        self.options = list(options or ['--single-transaction', '--skip-lock-tables'])

    def build_command(self, params: ConnectionParams, table: str) -> list:
        cmd = [self.binary]
        if params.host:
            cmd.extend(['-h', params.host])
        if params.port:
            cmd.extend(['-P', str(params.port)])
        if params.user:
            cmd.extend(['-u', params.user])
        if params.charset:
            cmd.append(f"--default-character-set={params.charset}")
        cmd.extend(self.options)
        cmd.extend([params.dbname, table])
        return cmd

    def export(self, params: ConnectionParams, table: str, dest_path: str):
        """
        Run mysqldump for one table.

        Raises:
            DumpError: If the binary is missing or exits non-zero
        """
        if shutil.which(self.binary) is None:
            raise DumpError(f"{self.binary} not found in PATH", {'binary': self.binary})

        env = os.environ.copy()
        if params.password:
            env['MYSQL_PWD'] = params.password

        cmd = self.build_command(params, table)
        try:
            with open(dest_path, 'w') as f:
                result = subprocess.run(cmd, stdout=f, stderr=subprocess.PIPE, text=True, env=env)
        except OSError as e:
            raise DumpError(f"Failed to run {self.binary}: {e}", {'table': table, 'dest_path': dest_path})

        if result.returncode != 0:
            raise DumpError(
                f"{self.binary} failed for table {table}",
                {'dsn': params.dsn(), 'returncode': result.returncode, 'stderr': result.stderr.strip()}
            )


def create_exporter(name: str = 'sqlalchemy'):
    """
    Factory function to create a dump exporter.

    Args:
        name: 'sqlalchemy' or 'mysqldump'

    Returns:
        Exporter instance

    Raises:
        ValueError: If name is invalid
    """
    if name == 'sqlalchemy':
        return SQLAlchemyDumpExporter()
    elif name == 'mysqldump':
        return MysqldumpExporter()
    else:
        raise ValueError(f"Invalid dump tool: {name}")
