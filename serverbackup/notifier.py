"""
Log and error channels for backup operations.

Every component reports progress and failures through a Notifier:
- log(): informational, never halts execution
- error(): hands a BackupError to the error sink; the default sink raises it

Sinks are plain callables chosen once, when the Notifier is built.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger('serverbackup')

# Records already printed by the default log sink; kept out of the console handler
progress_logger = logging.getLogger('serverbackup.progress')

# Context keys whose values never reach a sink in clear text
SECRET_KEY_MARKERS = ('pass', 'pwd', 'token', 'secret', 'credential', 'access_key', 'authorization')
REDACTED = '***'


class BackupError(Exception):
    """Base class for every error reported through the error channel."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def __str__(self):
        if not self.context:
            return self.message
        return f"{self.message} {self.context}"


def _is_secret(key: str) -> bool:
    key = key.lower()
    return any(marker in key for marker in SECRET_KEY_MARKERS)


def redact(data: Any) -> Any:
    """
    Return a copy of data with secret-looking values masked.

    Args:
        data: Mapping, list or scalar (nested structures are walked)

    Returns:
        Redacted copy
    """
    if isinstance(data, dict):
        return {
            k: (REDACTED if isinstance(k, str) and _is_secret(k) and v else redact(v))
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return type(data)(redact(item) for item in data)
    return data


def default_log_sink(message: str, data: Dict[str, Any]):
    """Print the message with a timestamp prefix and mirror it to the log file."""
    timestamp = datetime.now().strftime('[%Y-%b-%d %H:%M:%S]')
    line = f"{timestamp} {message}"
    if data:
        line = f"{line} {data}"
    print(line)
    progress_logger.debug(message)


def default_error_sink(error: BackupError):
    """Abort the current operation."""
    raise error


class Notifier:
    """
    Pluggable log/error sinks with console defaults.

    Args:
        log_sink: Callable (message, data) -> None
        error_sink: Callable (error) -> None; may raise to abort
    """

    def __init__(
        self,
        log_sink: Optional[Callable[[str, Dict[str, Any]], None]] = None,
        error_sink: Optional[Callable[[BackupError], None]] = None
    ):
        self.log_sink = log_sink or default_log_sink
        self.error_sink = error_sink or default_error_sink

    def log(self, message: str, **data):
        self.log_sink(message, redact(data))

    def error(self, error: BackupError):
        """
        Report an error.

        The context is redacted in place before the sink sees it, so a
        raised error never carries credentials either.
        """
        error.context = redact(error.context)
        logger.error(error.message)
        self.error_sink(error)

    def notify(self, level: str, message: str, context: Optional[Dict[str, Any]] = None):
        """Route a message by level ('error' goes to the error channel)."""
        if level == 'error':
            self.error(BackupError(message, context))
        else:
            self.log(message, **(context or {}))
