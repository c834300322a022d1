import os
from datetime import timedelta
from dotenv import load_dotenv

# Load .env early
load_dotenv()


class Config:
    """Base configuration (shared by all environments)"""

    # Security
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-key-please-change-12345')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    PERMANENT_SESSION_LIFETIME = timedelta(minutes=60)

    # The admin API authenticates with bearer tokens, not cookies
    WTF_CSRF_ENABLED = False

    # Uploads: product images live under <UPLOAD_FOLDER>/products/<product_id>/
    BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', os.path.join(BASE_DIR, 'static', 'uploads'))
    PRODUCT_IMAGE_EXTENSIONS = {'jpeg', 'jpg', 'png', 'gif', 'webp'}
    PRODUCT_IMAGE_MIME_TYPES = {'image/jpeg', 'image/png', 'image/gif', 'image/webp'}
    PRODUCT_IMAGE_MAX_SIZE = 5 * 1024 * 1024  # 5MB per image
    PRODUCT_IMAGE_MAX_FILES = 10
    MAX_CONTENT_LENGTH = 60 * 1024 * 1024

    # Image storage: 'local' (public disk) or 's3'
    IMAGE_STORAGE_BACKEND = os.environ.get('IMAGE_STORAGE_BACKEND', 'local')

    # AWS S3 (optional)
    AWS_ACCESS_KEY_ID = os.environ.get('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY = os.environ.get('AWS_SECRET_ACCESS_KEY')
    AWS_S3_BUCKET = os.environ.get('AWS_S3_BUCKET')
    AWS_S3_REGION = os.environ.get('AWS_S3_REGION', 'us-east-1')
    AWS_S3_CUSTOM_DOMAIN = (
        f"{AWS_S3_BUCKET}.s3.{AWS_S3_REGION}.amazonaws.com"
        if AWS_S3_BUCKET else None
    )

    # i18n
    BABEL_DEFAULT_LOCALE = 'en'
    BABEL_SUPPORTED_LOCALES = ['en', 'uz']

    # Public storefront
    PUBLIC_PRODUCTS_PER_PAGE = 6

    # Default admin seeded by `flask create-admin`
    DEFAULT_ADMIN_EMAIL = os.environ.get('DEFAULT_ADMIN_EMAIL', 'admin@business.com')
    DEFAULT_ADMIN_PASSWORD = os.environ.get('DEFAULT_ADMIN_PASSWORD', 'admin123')

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    def validate(self):
        if not self.SECRET_KEY or len(self.SECRET_KEY) < 16:
            raise ValueError("SECRET_KEY must be set and secure")
        if not hasattr(self, 'SQLALCHEMY_DATABASE_URI') or not self.SQLALCHEMY_DATABASE_URI:
            raise ValueError("SQLALCHEMY_DATABASE_URI must be set")
        if self.IMAGE_STORAGE_BACKEND not in ('local', 's3'):
            raise ValueError(f"Unknown IMAGE_STORAGE_BACKEND: {self.IMAGE_STORAGE_BACKEND}")
        if self.IMAGE_STORAGE_BACKEND == 's3' and not self.AWS_S3_BUCKET:
            raise ValueError("AWS_S3_BUCKET is required when IMAGE_STORAGE_BACKEND is 's3'")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///shop_admin.db')
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(Config):
    TESTING = True
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    IMAGE_STORAGE_BACKEND = 'local'
    BCRYPT_LOG_ROUNDS = 4
    LOG_LEVEL = 'WARNING'


class ProductionConfig(Config):
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL')

    def validate(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise ValueError("DATABASE_URL is required in production")
        super().validate()


# Shortcut dictionary
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}
