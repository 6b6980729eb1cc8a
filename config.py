"""Configuration module for Flask application."""
import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Preferred URL scheme (for url_for with _external=True)
    PREFERRED_URL_SCHEME = os.getenv('PREFERRED_URL_SCHEME', 'http')

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'proposals')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'proposals')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'proposals')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Quotes
    QUOTE_VALID_DAYS = int(os.getenv('QUOTE_VALID_DAYS', '30'))
    QUOTE_NUMBER_PREFIX = os.getenv('QUOTE_NUMBER_PREFIX', 'Q')
    DEFAULT_CURRENCY = os.getenv('DEFAULT_CURRENCY', 'EUR')
    QUOTE_DEFAULT_LAYOUT = os.getenv('QUOTE_DEFAULT_LAYOUT', 'standard')
    FINALIZE_LOCK_TIMEOUT = float(os.getenv('FINALIZE_LOCK_TIMEOUT', '30'))

    # Business Information (for the PDF header/footer)
    BUSINESS_NAME = os.getenv('BUSINESS_NAME', 'Business Solutions')
    BUSINESS_TAGLINE = os.getenv('BUSINESS_TAGLINE', '')
    BUSINESS_LOGO_PATH = os.getenv('BUSINESS_LOGO_PATH')

    # Artifact storage: 's3' (MinIO, AWS S3, DigitalOcean Spaces) or 'local'
    ARTIFACT_BACKEND = os.getenv('ARTIFACT_BACKEND', 's3')
    ARTIFACT_LOCAL_PATH = os.getenv('ARTIFACT_LOCAL_PATH', './storage/generated-pdfs')
    PUBLIC_BASE_URL = os.getenv('PUBLIC_BASE_URL', 'http://localhost:5000')
    DOWNLOAD_LINK_TTL_HOURS = int(os.getenv('DOWNLOAD_LINK_TTL_HOURS', '24'))

    S3_ENDPOINT = os.getenv('S3_ENDPOINT', 'http://minio:9000')
    S3_ACCESS_KEY = os.getenv('S3_ACCESS_KEY', 'minioadmin')
    S3_SECRET_KEY = os.getenv('S3_SECRET_KEY', 'minioadmin')
    S3_BUCKET = os.getenv('S3_BUCKET', 'generated-pdfs')
    S3_REGION = os.getenv('S3_REGION', 'us-east-1')

    # Price import
    PRICE_IMPORT_FOLDER = os.getenv('PRICE_IMPORT_FOLDER', './price-import')
    PRICE_IMPORT_EXTENSIONS = {'.csv'}
    MAX_UPLOAD_SIZE = int(os.getenv('MAX_UPLOAD_SIZE', 5 * 1024 * 1024))  # 5MB

    # Redis Cache Configuration
    REDIS_URL = os.getenv('REDIS_URL', 'redis://redis:6379/0')
    CACHE_ENABLED = os.getenv('CACHE_ENABLED', 'true').lower() == 'true'
    CACHE_PRODUCTS_TTL = int(os.getenv('CACHE_PRODUCTS_TTL', '300'))
    CACHE_KEY_PREFIX = os.getenv('CACHE_KEY_PREFIX', 'proposals')


class TestConfig(Config):
    """Configuration used by the test-suite."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = os.getenv('TEST_DATABASE_URL', 'sqlite:///proposals-test.db')
    SQLALCHEMY_ECHO = False
    ARTIFACT_BACKEND = 'local'
    CACHE_ENABLED = False
    FINALIZE_LOCK_TIMEOUT = 5.0
