import io
import os
import shutil
import tempfile
import unittest

from shop_core import create_app, db
from shop_core.models import AdminUser, Product

# Upload validation checks extension, MIME type and size only
PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'\x00' * 64
JPEG_BYTES = b'\xff\xd8\xff\xe0' + b'\x00' * 64


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.upload_dir = tempfile.mkdtemp()
        self.app = create_app('testing', UPLOAD_FOLDER=self.upload_dir)
        self.client = self.app.test_client()
        with self.app.app_context():
            db.create_all()
            admin = AdminUser(name='Administrator', email='admin@business.com', role='admin')
            admin.set_password('admin123')
            db.session.add(admin)
            db.session.commit()
            self.admin_id = admin.id

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
        shutil.rmtree(self.upload_dir, ignore_errors=True)

    # ------------------------
    # Helpers
    # ------------------------

    def login(self, email='admin@business.com', password='admin123'):
        return self.client.post('/admin/login', json={'email': email, 'password': password})

    def token(self, **kwargs):
        rv = self.login(**kwargs)
        self.assertEqual(rv.status_code, 200, rv.get_json())
        return rv.get_json()['token']

    def auth(self, token=None):
        return {'Authorization': f"Bearer {token or self.token()}"}

    def create_product(self, **fields):
        values = {
            'name': 'Samsung Galaxy A15',
            'cost_price': 1500000,
            'selling_price': 2000000,
            'stock_quantity': 10,
            'reorder_level': 2,
            'unit_of_measure': 'pcs',
        }
        values.update(fields)
        with self.app.app_context():
            product = Product(**values)
            db.session.add(product)
            db.session.commit()
            return product.id

    def upload(self, product_id, headers, names=('a.png', 'b.png', 'c.png'), content=PNG_BYTES):
        files = [(io.BytesIO(content), name) for name in names]
        return self.client.post(
            f'/admin/products/{product_id}/images',
            data={'images[]': files},
            headers=headers,
            content_type='multipart/form-data',
        )

    def stored(self, path):
        return os.path.exists(os.path.join(self.upload_dir, path))
