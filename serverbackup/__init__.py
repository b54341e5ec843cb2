import os
import logging
from logging.handlers import RotatingFileHandler

from serverbackup.notifier import progress_logger

__version__ = '0.1.0'

logger = logging.getLogger('serverbackup')


def load_config(config_name=None):
    """Return the config class for a name (SERVERBACKUP_ENV when None)."""
    if config_name is None:
        config_name = os.environ.get('SERVERBACKUP_ENV', 'production')

    from serverbackup.config import config
    if config_name not in config:
        raise ValueError(f"Unknown configuration: {config_name}. Valid options: {list(config.keys())}")
    return config[config_name]


def configure_logging(cfg):
    """Configure package logging"""

    # Set log level based on environment
    log_level = logging.DEBUG if cfg.DEBUG else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)
    console_handler.addFilter(lambda record: record.name != progress_logger.name)

    handlers = [console_handler]

    # File handler, skipped when the log directory is not writable
    try:
        os.makedirs(cfg.LOG_DIR, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(cfg.LOG_DIR, 'serverbackup.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
    except OSError as e:
        file_handler = None
        logger.warning(f"File logging disabled: {e}")

    if file_handler is not None:
        file_handler.setLevel(log_level)
        file_formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
        )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    logger.setLevel(log_level)
    logger.handlers = handlers
    logger.propagate = False

    logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_pipeline(config_name=None, notifier=None):
    """
    Backup pipeline factory.

    Args:
        config_name: Key of serverbackup.config.config
        notifier: Notifier to use (console defaults when None)

    Returns:
        BackupPipeline configured from the selected config class
    """
    cfg = load_config(config_name)

    # Ensure required directories exist
    os.makedirs(cfg.TEMP_DIR, exist_ok=True)
    os.makedirs(cfg.ARCHIVE_DIR, exist_ok=True)

    from serverbackup.backup.dumps import create_exporter
    from serverbackup.backup.executor import BackupPipeline

    return BackupPipeline(
        notifier=notifier,
        exporter=create_exporter(cfg.DUMP_TOOL),
        archive_format=cfg.ARCHIVE_FORMAT,
        archive_dir=cfg.ARCHIVE_DIR,
        temp_dir=cfg.TEMP_DIR,
        exclude_patterns=cfg.EXCLUDE_PATTERNS
    )
