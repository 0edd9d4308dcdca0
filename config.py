# AttendAI QR Attendance Service Configuration

import os
from datetime import timedelta
from pathlib import Path

# Base directory
BASE_DIR = Path(__file__).parent.absolute()


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() in ['true', 'on', '1']


class Config:
    """Base configuration class"""

    # Flask Configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'attendai-secret-key-change-me'

    # Database Configuration
    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'attendance.db')
    DATABASE_TIMEOUT = 30.0

    # Attendance credential configuration
    ATTENDANCE_QR_TTL_SECONDS = int(os.environ.get('ATTENDANCE_QR_TTL_SECONDS') or 120)
    ATTENDANCE_QR_PURGE_BATCH = 500
    ATTENDANCE_CHECK_EVENTS = True  # Refuse credentials for unknown or not-today events

    # QR Code rendering
    QR_CODE_BOX_SIZE = 10
    QR_CODE_BORDER = 4
    QR_CODE_ERROR_CORRECT = 'M'  # Medium error correction

    # Session Configuration
    PERMANENT_SESSION_LIFETIME = timedelta(hours=8)
    SESSION_COOKIE_SECURE = False  # Set to True in production with HTTPS
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Security Configuration
    PASSWORD_MIN_LENGTH = 8
    MAX_LOGIN_ATTEMPTS = 5
    LOGIN_LOCKOUT_MINUTES = 15

    # Email Configuration (for notifications)
    MAIL_SERVER = os.environ.get('MAIL_SERVER') or 'localhost'
    MAIL_PORT = int(os.environ.get('MAIL_PORT') or 587)
    MAIL_USE_TLS = _env_flag('MAIL_USE_TLS', 'true')
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_DEFAULT_SENDER = os.environ.get('MAIL_DEFAULT_SENDER') or 'noreply@attendai.local'

    # Notification Configuration
    NOTIFICATIONS_EMAIL_ENABLED = _env_flag('NOTIFICATIONS_EMAIL_ENABLED')
    NOTIFICATIONS_ASYNC = True
    ATTENDANCE_AUTHORITY_EMAIL = os.environ.get('ATTENDANCE_AUTHORITY_EMAIL')
    OPERATOR_EMAIL = os.environ.get('OPERATOR_EMAIL')

    # Logging Configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    LOG_FILE = BASE_DIR / 'logs' / 'attendance.log'
    LOG_MAX_BYTES = 10 * 1024 * 1024  # 10MB
    LOG_BACKUP_COUNT = 5

    DEBUG = _env_flag('DEBUG')
    TESTING = False

    @classmethod
    def init_app(cls, app):
        """Initialize application configuration"""
        Path(app.config['DATABASE_PATH']).parent.mkdir(parents=True, exist_ok=True)


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    TESTING = False

    DATABASE_PATH = Path(os.environ.get('DATABASE_PATH') or BASE_DIR / 'database' / 'attendance_dev.db')

    # More verbose logging
    LOG_LEVEL = 'DEBUG'

    # Email configuration for development (MailHog)
    MAIL_SERVER = 'localhost'
    MAIL_PORT = 1025
    MAIL_USE_TLS = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True

    # Tests override DATABASE_PATH with a temporary file
    DATABASE_PATH = BASE_DIR / 'database' / 'attendance_test.db'

    NOTIFICATIONS_EMAIL_ENABLED = False
    NOTIFICATIONS_ASYNC = False
    PASSWORD_MIN_LENGTH = 6


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    TESTING = False

    # Enhanced security for production
    SESSION_COOKIE_SECURE = True  # Requires HTTPS

    LOG_LEVEL = 'WARNING'
    NOTIFICATIONS_EMAIL_ENABLED = True

    @classmethod
    def init_app(cls, app):
        Config.init_app(app)

        import logging
        from logging.handlers import RotatingFileHandler

        # Setup file logging
        if not app.debug:
            cls.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                cls.LOG_FILE,
                maxBytes=cls.LOG_MAX_BYTES,
                backupCount=cls.LOG_BACKUP_COUNT
            )
            file_handler.setFormatter(logging.Formatter(cls.LOG_FORMAT))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)

            app.logger.setLevel(logging.INFO)
            app.logger.info('AttendAI attendance service startup')


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """Get configuration class by name, falling back to FLASK_ENV"""
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config.get(config_name, DevelopmentConfig)


def validate_config(app_config):
    """Validate configuration settings"""
    errors = []

    if int(app_config.get('ATTENDANCE_QR_TTL_SECONDS', 0)) <= 0:
        errors.append("ATTENDANCE_QR_TTL_SECONDS must be positive")

    if app_config.get('NOTIFICATIONS_EMAIL_ENABLED'):
        if not app_config.get('MAIL_SERVER'):
            errors.append("MAIL_SERVER is required when email notifications are enabled")
        if not app_config.get('ATTENDANCE_AUTHORITY_EMAIL'):
            errors.append("ATTENDANCE_AUTHORITY_EMAIL is required when email notifications are enabled")

    return errors
