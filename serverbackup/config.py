import os
import tempfile


def _split_list(value):
    if not value:
        return []
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """Base configuration"""

    DEBUG = False
    TESTING = False

    # Directories
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    TEMP_DIR = os.environ.get('TEMP_DIR') or tempfile.gettempdir()
    LOG_DIR = os.environ.get('LOG_DIR') or '/var/log/serverbackup'
    ARCHIVE_DIR = os.environ.get('ARCHIVE_DIR') or os.getcwd()

    # Archive
    ARCHIVE_FORMAT = os.environ.get('ARCHIVE_FORMAT') or 'zip'
    EXCLUDE_PATTERNS = _split_list(os.environ.get('EXCLUDE_PATTERNS'))

    # Database dumps: 'sqlalchemy' or 'mysqldump'
    DUMP_TOOL = os.environ.get('DUMP_TOOL') or 'sqlalchemy'

    # Upload credentials
    YANDEX_DISK_TOKEN = os.environ.get('YANDEX_DISK_TOKEN')
    DROPBOX_ACCESS_TOKEN = os.environ.get('DROPBOX_ACCESS_TOKEN')
    AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')
    S3_BUCKET = os.environ.get('S3_BUCKET')
    AWS_REGION = os.environ.get('AWS_REGION') or 'us-east-1'


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True

    # Use local data directory for development
    DATA_DIR = os.path.join(Config.BASE_DIR, 'data')
    TEMP_DIR = os.path.join(DATA_DIR, 'temp')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    ARCHIVE_DIR = os.path.join(DATA_DIR, 'archives')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    LOG_DIR = os.path.join(tempfile.gettempdir(), 'serverbackup-test-logs')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}
