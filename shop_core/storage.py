# shop_core/storage.py
"""
Physical storage for product images.

``LocalImageStorage`` writes under ``UPLOAD_FOLDER`` (served at ``/uploads``),
``S3ImageStorage`` writes to the configured bucket. Both store files under
``products/<product_id>/`` with a random name and hand back the relative path
that goes into ``ProductImage.image_path``.
"""
import os
import secrets
import logging

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app
from werkzeug.utils import secure_filename

from .errors import StorageFailure

logger = logging.getLogger(__name__)


def file_extension(filename):
    filename = secure_filename(filename or '')
    if '.' not in filename:
        return ''
    return filename.rsplit('.', 1)[1].lower()


def file_size(file):
    """Size in bytes of an uploaded ``FileStorage`` without consuming it."""
    stream = file.stream
    position = stream.tell()
    stream.seek(0, os.SEEK_END)
    size = stream.tell()
    stream.seek(position)
    return size


def product_image_key(product_id, filename):
    ext = file_extension(filename)
    name = secrets.token_hex(16)
    if ext:
        name = f"{name}.{ext}"
    return f"products/{product_id}/{name}"


class LocalImageStorage:
    def __init__(self, root):
        self.root = root

    def _full_path(self, path):
        full_path = os.path.abspath(os.path.join(self.root, path))
        if not full_path.startswith(os.path.abspath(self.root) + os.sep):
            raise StorageFailure(f"Refusing to touch path outside upload folder: {path}")
        return full_path

    def save(self, file, product_id):
        path = product_image_key(product_id, file.filename)
        full_path = self._full_path(path)
        try:
            os.makedirs(os.path.dirname(full_path), exist_ok=True)
            file.stream.seek(0)
            file.save(full_path)
        except OSError as e:
            raise StorageFailure(f"Could not store {file.filename}: {e}") from e
        return path

    def exists(self, path):
        return os.path.isfile(self._full_path(path))

    def delete(self, path):
        """Remove ``path``; a file that is already gone is not an error."""
        full_path = self._full_path(path)
        try:
            os.remove(full_path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageFailure(f"Could not delete {path}: {e}") from e
        return True

    def url(self, path):
        return f"{current_app.static_url_path}/{path}"


class S3ImageStorage:
    def __init__(self, bucket, region, access_key=None, secret_key=None, custom_domain=None):
        self.bucket = bucket
        self.region = region
        self.custom_domain = custom_domain or f"{bucket}.s3.{region}.amazonaws.com"
        self.client = boto3.client(
            's3',
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    def save(self, file, product_id):
        key = product_image_key(product_id, file.filename)
        try:
            file.stream.seek(0)
            self.client.upload_fileobj(
                file.stream, self.bucket, key,
                ExtraArgs={'ContentType': file.mimetype or 'application/octet-stream'},
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageFailure(f"S3 upload of {file.filename} failed: {e}") from e
        return key

    def exists(self, path):
        try:
            self.client.head_object(Bucket=self.bucket, Key=path)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise StorageFailure(f"S3 lookup of {path} failed: {e}") from e
        return True

    def delete(self, path):
        if not self.exists(path):
            return False
        try:
            self.client.delete_object(Bucket=self.bucket, Key=path)
        except (BotoCoreError, ClientError) as e:
            raise StorageFailure(f"S3 delete of {path} failed: {e}") from e
        return True

    def url(self, path):
        return f"https://{self.custom_domain}/{path}"


def init_storage(app):
    if app.config['IMAGE_STORAGE_BACKEND'] == 's3':
        storage = S3ImageStorage(
            bucket=app.config['AWS_S3_BUCKET'],
            region=app.config['AWS_S3_REGION'],
            access_key=app.config.get('AWS_ACCESS_KEY_ID'),
            secret_key=app.config.get('AWS_SECRET_ACCESS_KEY'),
            custom_domain=app.config.get('AWS_S3_CUSTOM_DOMAIN'),
        )
    else:
        storage = LocalImageStorage(app.config['UPLOAD_FOLDER'])
    app.extensions['image_storage'] = storage
    return storage


def get_storage():
    return current_app.extensions['image_storage']


def discard(paths, storage=None):
    """Best-effort removal of stored files; failures are logged, never raised."""
    storage = storage or get_storage()
    for path in paths:
        try:
            storage.delete(path)
        except StorageFailure as e:
            logger.warning("Leaving orphaned image file %s: %s", path, e)
