# shop_core/models.py

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from flask_login import UserMixin
from sqlalchemy import update, insert
from sqlalchemy.exc import IntegrityError
# Use shared db instance
from shop_core import db, bcrypt


def utcnow():
    return datetime.now(timezone.utc)


def _money(value):
    return float(value) if value is not None else 0.0


class TimestampMixin:
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class AdminUser(db.Model, UserMixin, TimestampMixin):
    __tablename__ = 'admin_users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password = db.Column(db.String(200), nullable=False)
    api_token = db.Column(db.String(80), unique=True, nullable=True, default=None)
    remember_token = db.Column(db.String(100), nullable=True)
    role = db.Column(db.String(50), nullable=False, default='admin')
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def set_password(self, raw_password):
        self.password = bcrypt.generate_password_hash(raw_password).decode('utf-8')

    def check_password(self, raw_password):
        return bcrypt.check_password_hash(self.password, raw_password or '')

    def identity(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
        }

    def to_dict(self, include_meta=False):
        data = self.identity()
        data['full_name'] = self.name
        if include_meta:
            data.update({
                'is_active': bool(self.is_active),
                'created_at': self.created_at.isoformat() if self.created_at else None,
                'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            })
        return data

    def __repr__(self):
        return f"<AdminUser {self.email}>"


class Product(db.Model, TimestampMixin):
    __tablename__ = 'products'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    cost_price = db.Column(db.Numeric(10, 2), nullable=False)
    selling_price = db.Column(db.Numeric(10, 2), nullable=False)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=0)
    unit_of_measure = db.Column(db.String(50), nullable=False, default='pcs')
    currency = db.Column(db.String(3), nullable=False, default='UZS')
    description = db.Column(db.Text)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    profit_margin = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    images = db.relationship(
        'ProductImage',
        back_populates='product',
        order_by='[ProductImage.is_primary.desc(), ProductImage.sort_order, ProductImage.id]',
        cascade='all, delete-orphan',
        passive_deletes=True,
    )

    def refresh_profit_margin(self):
        selling = Decimal(str(self.selling_price or 0))
        cost = Decimal(str(self.cost_price or 0))
        if selling > 0:
            margin = (selling - cost) / selling * 100
            self.profit_margin = margin.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
        else:
            self.profit_margin = Decimal('0.00')

    @property
    def is_low_stock(self):
        return (self.stock_quantity or 0) <= (self.reorder_level or 0)

    @property
    def profit_per_unit(self):
        return _money(self.selling_price) - _money(self.cost_price)

    @property
    def inventory_value(self):
        return (self.stock_quantity or 0) * _money(self.cost_price)

    @property
    def primary_image(self):
        for image in self.images:
            if image.is_primary:
                return image
        return None

    def to_dict(self, with_images=False):
        data = {
            'id': self.id,
            'name': self.name,
            'cost_price': _money(self.cost_price),
            'selling_price': _money(self.selling_price),
            'stock_quantity': self.stock_quantity,
            'reorder_level': self.reorder_level,
            'unit_of_measure': self.unit_of_measure,
            'currency': self.currency,
            'description': self.description,
            'is_active': bool(self.is_active),
            'profit_margin': _money(self.profit_margin),
            'profit_per_unit': self.profit_per_unit,
            'inventory_value': self.inventory_value,
            'is_low_stock': self.is_low_stock,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
        if with_images:
            data['images'] = [image.to_dict() for image in self.images]
            primary = self.primary_image
            data['primary_image'] = primary.to_dict() if primary else None
        return data

    def __repr__(self):
        return f"<Product {self.name}>"


@db.event.listens_for(Product, 'before_insert')
@db.event.listens_for(Product, 'before_update')
def _product_profit_margin(mapper, connection, target):
    target.refresh_profit_margin()


class ProductImage(db.Model, TimestampMixin):
    __tablename__ = 'product_images'
    __table_args__ = (
        # At most one primary image per product
        db.Index(
            'uq_product_images_primary',
            'product_id',
            unique=True,
            sqlite_where=db.text('is_primary = 1'),
            postgresql_where=db.text('is_primary'),
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(
        db.Integer, db.ForeignKey('products.id', ondelete='CASCADE'), nullable=False, index=True
    )
    image_path = db.Column(db.String(500), nullable=False)
    image_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.Integer, nullable=False, default=0)
    mime_type = db.Column(db.String(100))
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    alt_text = db.Column(db.String(255))

    product = db.relationship('Product', back_populates='images')

    @property
    def file_size_formatted(self):
        size = self.file_size or 0
        if size >= 1048576:
            return f"{round(size / 1048576, 2)} MB"
        if size >= 1024:
            return f"{round(size / 1024, 2)} KB"
        return f"{size} bytes"

    def to_dict(self):
        from .storage import get_storage
        return {
            'id': self.id,
            'product_id': self.product_id,
            'image_path': self.image_path,
            'image_url': get_storage().url(self.image_path),
            'image_name': self.image_name,
            'file_size': self.file_size,
            'file_size_formatted': self.file_size_formatted,
            'mime_type': self.mime_type,
            'is_primary': bool(self.is_primary),
            'sort_order': self.sort_order,
            'alt_text': self.alt_text,
        }

    def __repr__(self):
        return f"<ProductImage {self.image_name} for Product {self.product_id}>"


class SequenceCounter(db.Model):
    """Named counters for human-readable codes (EMP2026..., SALE20261019...)."""
    __tablename__ = 'sequence_counters'

    name = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Integer, nullable=False, default=0)


def next_sequence_value(name):
    """Atomically increment counter ``name`` inside the current transaction."""
    result = db.session.execute(
        update(SequenceCounter)
        .where(SequenceCounter.name == name)
        .values(value=SequenceCounter.value + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        nested = db.session.begin_nested()
        try:
            db.session.execute(insert(SequenceCounter).values(name=name, value=1))
            nested.commit()
            return 1
        except IntegrityError:
            # Another request created the counter first
            nested.rollback()
            db.session.execute(
                update(SequenceCounter)
                .where(SequenceCounter.name == name)
                .values(value=SequenceCounter.value + 1)
                .execution_options(synchronize_session=False)
            )
    return db.session.execute(
        db.select(SequenceCounter.value).where(SequenceCounter.name == name)
    ).scalar_one()


def generate_employee_code(today=None):
    year = (today or utcnow()).strftime('%Y')
    prefix = f"EMP{year}"
    return f"{prefix}{next_sequence_value(prefix):04d}"


def generate_sale_number(today=None):
    date = (today or utcnow()).strftime('%Y%m%d')
    prefix = f"SALE{date}"
    return f"{prefix}{next_sequence_value(prefix):04d}"


EMPLOYMENT_TYPES = ('full_time', 'part_time', 'contract', 'temporary')
WORK_SHIFTS = ('day', 'night', 'both')


class Employee(db.Model, TimestampMixin):
    __tablename__ = 'employees'

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.String(20), unique=True, nullable=False, index=True)
    first_name = db.Column(db.String(255), nullable=False)
    last_name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(20))
    position = db.Column(db.String(255), nullable=False, index=True)
    department = db.Column(db.String(255), nullable=False, index=True)
    base_salary = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    hire_date = db.Column(db.Date, index=True)
    date_of_birth = db.Column(db.Date)
    address = db.Column(db.Text)
    employment_type = db.Column(db.Enum(*EMPLOYMENT_TYPES, name='employment_type'), nullable=False, default='full_time')
    work_hours_per_day = db.Column(db.Integer, nullable=False, default=8)
    work_shift = db.Column(db.Enum(*WORK_SHIFTS, name='work_shift'), nullable=False, default='day')
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}"

    def to_dict(self):
        return {
            'id': self.id,
            'employee_id': self.employee_id,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'phone': self.phone,
            'position': self.position,
            'department': self.department,
            'base_salary': _money(self.base_salary),
            'hire_date': self.hire_date.isoformat() if self.hire_date else None,
            'date_of_birth': self.date_of_birth.isoformat() if self.date_of_birth else None,
            'address': self.address,
            'employment_type': self.employment_type,
            'work_hours_per_day': self.work_hours_per_day,
            'work_shift': self.work_shift,
            'is_active': bool(self.is_active),
        }

    def __repr__(self):
        return f"<Employee {self.employee_id}>"


SALE_STATUSES = ('pending', 'completed', 'cancelled')
PAYMENT_STATUSES = ('pending', 'paid', 'partial', 'refunded')
PAYMENT_METHODS = ('cash', 'card', 'transfer', 'digital')


class Sale(db.Model, TimestampMixin):
    __tablename__ = 'sales'

    id = db.Column(db.Integer, primary_key=True)
    sale_number = db.Column(db.String(32), unique=True, nullable=False, index=True)
    sale_date = db.Column(db.Date, nullable=False, default=lambda: utcnow().date(), index=True)
    subtotal = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    status = db.Column(db.Enum(*SALE_STATUSES, name='sale_status'), nullable=False, default='completed', index=True)
    payment_status = db.Column(db.Enum(*PAYMENT_STATUSES, name='payment_status'), nullable=False, default='paid', index=True)
    payment_method = db.Column(db.Enum(*PAYMENT_METHODS, name='payment_method'), nullable=False, default='cash')
    notes = db.Column(db.Text)
    user_id = db.Column(db.Integer, db.ForeignKey('admin_users.id', ondelete='SET NULL'), nullable=True)

    user = db.relationship('AdminUser')
    items = db.relationship('SaleItem', back_populates='sale', cascade='all, delete-orphan')

    @property
    def display_status(self):
        if self.status == 'cancelled':
            return 'cancelled'
        if self.payment_status == 'refunded':
            return 'refunded'
        if self.status == 'completed' and self.payment_status == 'paid':
            return 'completed'
        return 'pending'

    def to_dict(self):
        return {
            'id': self.id,
            'orderNumber': self.sale_number,
            'date': self.sale_date.isoformat() if self.sale_date else None,
            'status': self.display_status,
            'paymentMethod': self.payment_method,
            'subtotal': _money(self.subtotal),
            'taxAmount': _money(self.tax_amount),
            'discountAmount': _money(self.discount_amount),
            'totalAmount': _money(self.total_amount),
            'netAmount': _money(self.total_amount),
            'notes': self.notes,
            'items': [item.to_dict() for item in self.items],
        }

    def __repr__(self):
        return f"<Sale {self.sale_number}>"


class SaleItem(db.Model, TimestampMixin):
    __tablename__ = 'sale_items'

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey('sales.id', ondelete='CASCADE'), nullable=False, index=True)
    # No foreign key: line items outlive a deleted product
    product_id = db.Column(db.Integer, nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(10, 2), nullable=False)
    total_price = db.Column(db.Numeric(10, 2), nullable=False)

    sale = db.relationship('Sale', back_populates='items')
    product = db.relationship('Product', primaryjoin='foreign(SaleItem.product_id) == Product.id')

    def to_dict(self):
        return {
            'id': self.id,
            'productId': self.product_id,
            'productName': self.product.name if self.product else f"Product {self.product_id}",
            'quantity': self.quantity,
            'unitPrice': _money(self.unit_price),
            'totalPrice': _money(self.total_price),
        }


@db.event.listens_for(SaleItem, 'before_insert')
@db.event.listens_for(SaleItem, 'before_update')
def _sale_item_total(mapper, connection, target):
    target.total_price = Decimal(str(target.unit_price or 0)) * (target.quantity or 0)
