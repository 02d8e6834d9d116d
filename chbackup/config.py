import os


def _env_int(name, default):
    value = os.environ.get(name)
    if value is None or value == '':
        return default
    return int(value)


class Config:
    """Base configuration"""

    # General
    REMOTE_STORAGE = os.environ.get('REMOTE_STORAGE', 'none')
    BACKUPS_TO_KEEP_REMOTE = _env_int('BACKUPS_TO_KEEP_REMOTE', 0)
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'info')
    LOG_DIR = os.environ.get('LOG_DIR') or '/var/log/chbackup'
    DEBUG = False

    # Size of the in-memory buffer between archiver and transport
    BUFFER_SIZE = _env_int('BUFFER_SIZE', 4 * 1024 * 1024)

    # S3
    S3_ACCESS_KEY = os.environ.get('S3_ACCESS_KEY', '')
    S3_SECRET_KEY = os.environ.get('S3_SECRET_KEY', '')
    S3_BUCKET = os.environ.get('S3_BUCKET', '')
    S3_REGION = os.environ.get('S3_REGION', 'us-east-1')
    S3_ENDPOINT = os.environ.get('S3_ENDPOINT', '')
    S3_STORAGE_CLASS = os.environ.get('S3_STORAGE_CLASS', 'STANDARD')
    S3_PATH = os.environ.get('S3_PATH', '')
    S3_COMPRESSION_FORMAT = os.environ.get('S3_COMPRESSION_FORMAT', 'gzip')
    S3_COMPRESSION_LEVEL = _env_int('S3_COMPRESSION_LEVEL', 1)

    # Azure Blob
    AZBLOB_CONNECTION_STRING = os.environ.get('AZBLOB_CONNECTION_STRING', '')
    AZBLOB_ACCOUNT_NAME = os.environ.get('AZBLOB_ACCOUNT_NAME', '')
    AZBLOB_ACCOUNT_KEY = os.environ.get('AZBLOB_ACCOUNT_KEY', '')
    AZBLOB_CONTAINER = os.environ.get('AZBLOB_CONTAINER', '')
    AZBLOB_PATH = os.environ.get('AZBLOB_PATH', '')
    AZBLOB_COMPRESSION_FORMAT = os.environ.get('AZBLOB_COMPRESSION_FORMAT', 'gzip')
    AZBLOB_COMPRESSION_LEVEL = _env_int('AZBLOB_COMPRESSION_LEVEL', 1)

    # SFTP
    SFTP_HOST = os.environ.get('SFTP_HOST', '')
    SFTP_PORT = _env_int('SFTP_PORT', 22)
    SFTP_USERNAME = os.environ.get('SFTP_USERNAME', '')
    SFTP_PASSWORD = os.environ.get('SFTP_PASSWORD', '')
    SFTP_PRIVATE_KEY = os.environ.get('SFTP_PRIVATE_KEY', '')
    SFTP_TIMEOUT = _env_int('SFTP_TIMEOUT', 30)
    SFTP_PATH = os.environ.get('SFTP_PATH', '')
    SFTP_COMPRESSION_FORMAT = os.environ.get('SFTP_COMPRESSION_FORMAT', 'gzip')
    SFTP_COMPRESSION_LEVEL = _env_int('SFTP_COMPRESSION_LEVEL', 1)

    # Local directory acting as remote storage
    LOCAL_ROOT = os.environ.get('LOCAL_ROOT') or '/var/backups/chbackup'
    LOCAL_PATH = os.environ.get('LOCAL_PATH', '')
    LOCAL_COMPRESSION_FORMAT = os.environ.get('LOCAL_COMPRESSION_FORMAT', 'gzip')
    LOCAL_COMPRESSION_LEVEL = _env_int('LOCAL_COMPRESSION_LEVEL', 1)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    LOG_LEVEL = 'debug'

    # Use local data directory for development
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    DATA_DIR = os.path.join(BASE_DIR, 'data')
    LOG_DIR = os.path.join(DATA_DIR, 'logs')
    LOCAL_ROOT = os.path.join(DATA_DIR, 'remote')


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False


class TestingConfig(Config):
    """Testing configuration"""
    REMOTE_STORAGE = 'local'
    BACKUPS_TO_KEEP_REMOTE = 0
    BUFFER_SIZE = 64 * 1024


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': ProductionConfig
}


def get_config(config_name=None):
    """
    Look up a configuration class by name.

    Args:
        config_name: Key in the config map; defaults to CHBACKUP_ENV or 'default'

    Returns:
        Configuration class

    Raises:
        ValueError: If the name is unknown
    """
    if config_name is None:
        config_name = os.environ.get('CHBACKUP_ENV', 'default')

    try:
        return config[config_name]
    except KeyError:
        raise ValueError(
            f"Unknown configuration: {config_name}. "
            f"Valid options: {list(config.keys())}"
        )
