import os
from datetime import timedelta
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def env_bool(name: str, default: bool = False) -> bool:
    """Safely parse boolean-like environment variables."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {'1', 'true', 'yes', 'on'}


def env_int(name: str, default: int) -> int:
    """Parse integer environment variables, falling back to the default."""
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return int(value)

"""
Application Configuration Module

This module contains all configuration settings for the CMS, including
configurations for development and production environments.
"""

class Config:
    """
    Base Configuration Class

    This class defines the basic configuration parameters required by the application.
    All environment-specific configuration classes inherit from this class.
    """
    # Basic Flask Configuration
    DEBUG = False
    TESTING = False
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Core Settings
    SECRET_KEY = os.environ.get('SECRET_KEY')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///nightlight.db')
    TIMEZONE = os.environ.get('TIMEZONE', 'UTC')
    LOG_FILE = os.environ.get('LOG_FILE', 'app.log')
    VERSION = os.environ.get('APP_VERSION', '1.0.0')
    PORT = env_int('PORT', 80)

    # CSRF Configuration
    WTF_CSRF_ENABLED = True
    WTF_CSRF_TIME_LIMIT = 3600

    # Session Configuration
    FORCE_HTTPS = env_bool('FORCE_HTTPS', False)
    SESSION_COOKIE_SECURE = env_bool('SESSION_COOKIE_SECURE', FORCE_HTTPS)
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.environ.get('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 3600  # 1 hour

    # Remember-me Configuration
    REMEMBER_COOKIE_SECURE = env_bool('REMEMBER_COOKIE_SECURE', SESSION_COOKIE_SECURE)
    REMEMBER_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_SAMESITE = os.environ.get('REMEMBER_COOKIE_SAMESITE', SESSION_COOKIE_SAMESITE)
    REMEMBER_COOKIE_DURATION = timedelta(days=env_int('REMEMBER_COOKIE_DURATION_DAYS', 14))

    # Security Configuration
    WTF_CSRF_SSL_STRICT = env_bool('WTF_CSRF_SSL_STRICT', FORCE_HTTPS)
    PREFERRED_URL_SCHEME = 'https' if FORCE_HTTPS or SESSION_COOKIE_SECURE else 'http'

    # Flask-Caching Configuration
    CACHE_TYPE = 'SimpleCache'
    CACHE_DEFAULT_TIMEOUT = env_int('CACHE_DEFAULT_TIMEOUT', 300)

    # Registration rules
    PASSWORD_MIN_LENGTH = 8
    PASSWORD_MAX_LENGTH = 100

    # Fixed author recorded on posts; None records the logged-in user's name
    POST_AUTHOR = os.environ.get('POST_AUTHOR') or None

    # Image pipeline
    # IMAGE_ROOT=None resolves to <static folder>/images at startup
    IMAGE_ROOT = os.environ.get('IMAGE_ROOT') or None
    UPLOAD_FIELD = 'images'
    MAX_UPLOAD_FILES = 5
    SMALL_IMAGE_WIDTH = 450
    MEDIUM_IMAGE_WIDTH = 800
    LARGE_IMAGE_WIDTH = 1400
    IMAGE_FORMAT = 'webp'
    IMAGE_QUALITY = env_int('IMAGE_QUALITY', 80)
    IMAGE_WORKERS = env_int('IMAGE_WORKERS', 4)
    MAX_CONTENT_LENGTH = env_int('MAX_CONTENT_LENGTH_MB', 50) * 1024 * 1024

    # Basic Content Security Policy
    CSP = {
        'default-src': ["'self'"],
        'script-src': ["'self'"],
        'style-src': ["'self'"],
        'img-src': ["'self'", "data:"],
        'object-src': ["'none'"],
        'frame-ancestors': ["'none'"]
    }

    @classmethod
    def init_app(cls, app):
        """
        Initialize application configuration

        Called after the application has been created and configured.
        Subclasses may override this to perform environment-specific setup.

        Args:
            app: Flask application instance
        """
        pass


class DevelopmentConfig(Config):
    """Development Environment Configuration"""

    DEBUG = True
    # Use a fixed key for development to maintain sessions across restarts
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    PORT = env_int('PORT', 8080)

    db_url = os.environ.get('DATABASE_URL')
    # Development database - create instance directory if it doesn't exist
    if db_url:
        SQLALCHEMY_DATABASE_URI = db_url
    else:
        instance_dir = os.path.join(os.path.dirname(__file__), 'instance')
        os.makedirs(instance_dir, exist_ok=True)
        SQLALCHEMY_DATABASE_URI = 'sqlite:///' + os.path.join(instance_dir, 'nightlight.db')

    # Relaxed session settings for development
    SESSION_COOKIE_SECURE = False  # Allow HTTP in development
    FORCE_HTTPS = False

    # Development CSP - more permissive
    CSP = {
        'default-src': ["'self'"],
        'script-src': ["'self'", "'unsafe-inline'"],
        'style-src': ["'self'", "'unsafe-inline'"],
        'img-src': ["'self'", "data:", "blob:"],
        'object-src': ["'none'"],
        'font-src': ["'self'", "data:"]
    }

    @classmethod
    def init_app(cls, app):
        """Initialize development-specific settings"""
        super().init_app(app)

        # Enable detailed error pages in development
        app.config['PROPAGATE_EXCEPTIONS'] = True


class ProductionConfig(Config):
    """Production Environment Configuration"""

    DEBUG = False

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')

    HTTPS_ENABLED = env_bool('HTTPS_ENABLED', True)
    SESSION_COOKIE_SECURE = HTTPS_ENABLED
    REMEMBER_COOKIE_SECURE = HTTPS_ENABLED
    FORCE_HTTPS = HTTPS_ENABLED
    WTF_CSRF_SSL_STRICT = HTTPS_ENABLED
    PREFERRED_URL_SCHEME = 'https' if HTTPS_ENABLED else 'http'

    @classmethod
    def _validate_production_config(cls):
        """Validate that all required production settings are present"""
        required_vars = ['SECRET_KEY', 'DATABASE_URL']
        missing_vars = [var for var in required_vars if not os.environ.get(var)]

        if missing_vars:
            raise ValueError(f"Missing required environment variables for production: {', '.join(missing_vars)}")

        # Validate DATABASE_URL format
        from urllib.parse import urlparse
        parsed = urlparse(os.environ.get('DATABASE_URL'))
        if not parsed.scheme or not parsed.path:
            raise ValueError("Invalid DATABASE_URL format")

    @classmethod
    def init_app(cls, app):
        """Initialize production-specific settings"""
        super().init_app(app)

        cls._validate_production_config()

        if not cls.HTTPS_ENABLED:
            app.logger.warning('HTTPS enforcement is disabled in production. Set HTTPS_ENABLED=true once TLS is configured.')
        else:
            app.logger.info('HTTPS enforcement enabled; secure cookies and redirects are active.')

# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """
    Get configuration class based on environment

    Args:
        config_name (str): Configuration name ('development', 'production', etc.)

    Returns:
        Config: Configuration class
    """
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'default')

    config_class = config.get(config_name, config['default'])

    # Validate configuration class
    if not issubclass(config_class, Config):
        raise ValueError(f"Invalid configuration class: {config_class}")

    return config_class
