"""
Application settings and configuration
"""
import os
from datetime import timedelta
from dotenv import load_dotenv

from config.database import get_engine_options, get_sqlalchemy_database_uri

_is_production = os.getenv('FLASK_ENV', 'development') == 'production'
load_dotenv(override=(not _is_production))


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or '').strip().lower()
    if not raw:
        return default
    return raw in {'1', 'true', 'yes', 'on'}


class Config:
    """Base configuration"""
    SECRET_KEY = os.getenv('SECRET_KEY', 'mscan-secret-key-dev')
    JWT_SECRET_KEY = os.getenv('JWT_SECRET_KEY', 'mscan-jwt-secret-key-dev')
    JWT_ACCESS_TOKEN_EXPIRES = timedelta(hours=8)
    JWT_REFRESH_TOKEN_EXPIRES = timedelta(days=30)
    MOBILE_ACCESS_TOKEN_EXPIRES = timedelta(days=30)

    SQLALCHEMY_DATABASE_URI = get_sqlalchemy_database_uri()
    SQLALCHEMY_ENGINE_OPTIONS = get_engine_options(SQLALCHEMY_DATABASE_URI)
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # CORS Settings
    CORS_ORIGINS = os.getenv('CORS_ORIGINS', '*')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # Number of trusted reverse proxies in front of the app (0 = none)
    PROXY_FIX_X_FOR = _env_int('PROXY_FIX_X_FOR', 0)

    # Tenants are addressed as <slug>.<TENANT_BASE_DOMAIN> or via X-Tenant-Slug
    TENANT_BASE_DOMAIN = os.getenv('TENANT_BASE_DOMAIN', '')

    # Scan session / OTP lifecycle
    SCAN_SESSION_TTL_SECONDS = _env_int('SCAN_SESSION_TTL_SECONDS', 10 * 60)
    OTP_TTL_SECONDS = _env_int('OTP_TTL_SECONDS', 5 * 60)
    OTP_MAX_ATTEMPTS = _env_int('OTP_MAX_ATTEMPTS', 3)
    OTP_SEND_RETRIES = _env_int('OTP_SEND_RETRIES', 2)
    OTP_SEND_RETRY_DELAY_SECONDS = float(os.getenv('OTP_SEND_RETRY_DELAY_SECONDS', '0.5'))
    OTP_DEV_ECHO = _env_bool('OTP_DEV_ECHO', not _is_production)

    # Coupon ledger
    COUPON_MAX_BATCH_SIZE = _env_int('COUPON_MAX_BATCH_SIZE', 1000)
    COUPON_REFERENCE_PREFIX = os.getenv('COUPON_REFERENCE_PREFIX', 'CP')

    # scope -> (limit, window_seconds)
    RATE_LIMITS = {
        'public-ip': (_env_int('RATE_LIMIT_PUBLIC_IP', 120), 60),
        'scan-start': (_env_int('RATE_LIMIT_SCAN_START', 60), 10 * 60),
        'otp-send': (_env_int('RATE_LIMIT_OTP_SEND', 10), 24 * 60 * 60),
        'otp-verify': (_env_int('RATE_LIMIT_OTP_VERIFY', 20), 10 * 60),
        'partner-api': (_env_int('RATE_LIMIT_PARTNER_API', 100), 60),
        'login-otp': (_env_int('RATE_LIMIT_LOGIN_OTP', 5), 15 * 60),
    }

    # Application Settings
    APP_NAME = 'MScan Rewards API'
    APP_VERSION = '1.0.0'
    DEBUG = False
    TESTING = False


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_ECHO = _env_bool('SQLALCHEMY_ECHO', False)


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_ECHO = False
    OTP_DEV_ECHO = False


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    OTP_DEV_ECHO = True
    OTP_SEND_RETRIES = 0
    OTP_SEND_RETRY_DELAY_SECONDS = 0
    LOG_LEVEL = 'WARNING'


# Configuration dictionary
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


def get_config():
    """Get configuration based on environment"""
    env = os.getenv('FLASK_ENV', 'development')
    return config.get(env, config['default'])
