"""
Filesystem sources for backup archives.

PathRegistry holds the files and directories to include, each mapped to a
relative path inside the archive. Existence is checked once, at registration.
"""

from dataclasses import dataclass
from fnmatch import fnmatch
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

from ..notifier import BackupError, Notifier


class InvalidPathError(BackupError):
    """Raised when a registered path is neither a file nor a directory."""
    pass


@dataclass(frozen=True)
class PathEntry:
    """A source path and its destination directory inside the archive."""
    source_path: str
    relative_path: str


@dataclass
class RegistrationResult:
    """Outcome of a register() call."""
    success: bool
    entry: Optional[object] = None
    error: Optional[BackupError] = None

    def __bool__(self):
        return self.success


def normalize_relative_path(relative_path: str) -> str:
    """Strip leading/trailing separators and use forward slashes."""
    return relative_path.replace('\\', '/').strip('/')


def default_relative_path(source: Path) -> str:
    """
    Archive directory for a source registered without an explicit one.

    Directories use themselves, files use their parent directory.
    """
    directory = source if source.is_dir() else source.parent
    return normalize_relative_path(directory.as_posix())


class PathRegistry:
    """
    Ordered list of paths to archive.

    No duplicate detection: registering the same source twice archives it
    twice.
    """

    def __init__(self, notifier: Optional[Notifier] = None, exclude_patterns: List[str] = None):
        """
        Initialize path registry.

        Args:
            notifier: Notifier receiving InvalidPathError reports
            exclude_patterns: List of glob patterns to skip while walking (e.g., *.pyc, __pycache__)
        """
        self.notifier = notifier or Notifier()
        self.exclude_patterns = list(exclude_patterns or [])
        self._entries: List[PathEntry] = []

    @property
    def entries(self) -> List[PathEntry]:
        return list(self._entries)

    def __len__(self):
        return len(self._entries)

    def __iter__(self):
        return iter(list(self._entries))

    def copy(self) -> 'PathRegistry':
        """Registry with the same entries, sharing notifier and patterns."""
        registry = PathRegistry(self.notifier, self.exclude_patterns)
        registry._entries = list(self._entries)
        return registry

    def register(self, source_path: str, relative_path: Optional[str] = None) -> RegistrationResult:
        """
        Add a file or directory.

        Args:
            source_path: Path to file or directory
            relative_path: Directory inside the archive; defaults to the
                directory portion of source_path

        Returns:
            RegistrationResult; failed when the path does not exist and the
            error sink did not abort
        """
        source = Path(source_path).expanduser()

        if not (source.is_dir() or source.is_file()):
            error = InvalidPathError(f"Invalid path: {source_path}", {'path': str(source_path)})
            self.notifier.error(error)
            return RegistrationResult(False, error=error)

        source = source.resolve()
        if relative_path is None:
            relative = default_relative_path(source)
        else:
            relative = normalize_relative_path(relative_path)

        entry = PathEntry(source_path=str(source), relative_path=relative)
        self._entries.append(entry)
        return RegistrationResult(True, entry=entry)

    def _should_exclude(self, path: Path) -> bool:
        """
        Check if a path should be excluded based on exclude patterns.

        Args:
            path: Path to check

        Returns:
            True if path matches any exclude pattern, False otherwise
        """
        if not self.exclude_patterns:
            return False

        path_str = str(path)
        path_name = path.name

        for pattern in self.exclude_patterns:
            # Match against full path or just the name
            if fnmatch(path_str, pattern) or fnmatch(path_name, pattern):
                return True
            if pattern.startswith('**/') and fnmatch(path_name, pattern[3:]):
                return True

        return False

    def iter_archive_members(self, entry: PathEntry, skip_path: Optional[str] = None) -> Iterator[Tuple[str, str]]:
        """
        Yield (local_path, archive_name) pairs for one entry.

        Directories are walked recursively, files only. Archive names keep the
        subdirectory structure below the registered root.

        Args:
            entry: Registered path
            skip_path: File never yielded, typically the archive being written
        """
        source = Path(entry.source_path)
        skip = Path(skip_path).resolve() if skip_path else None

        if source.is_dir():
            for item in source.rglob('*'):
                if not item.is_file() or item.resolve() == skip:
                    continue
                relative_parts = item.relative_to(source).parts
                if any(self._should_exclude(Path(part)) for part in relative_parts[:-1]):
                    continue
                if self._should_exclude(item):
                    continue
                yield str(item), join_archive_name(entry.relative_path, item.relative_to(source).as_posix())
        elif source.is_file():
            if source.resolve() != skip and not self._should_exclude(source):
                yield str(source), join_archive_name(entry.relative_path, source.name)


def join_archive_name(relative_path: str, name: str) -> str:
    if not relative_path:
        return name
    return f"{relative_path}/{name}"
