# shop_core/routes.py

import calendar
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal

from flask import Blueprint, request, jsonify, current_app
from flask_babel import gettext as _
from flask_login import current_user
from sqlalchemy import func

from . import db
from .auth import (
    token_required, bearer_token, login, logout, check_auth, change_password, update_profile,
)
from .errors import NotFound, ImageNotOwned, ValidationFailed, json_response
from .forms import (
    LoginForm, ChangePasswordForm, ProfileForm, ProductForm, ProductUpdateForm, StockForm,
    ProductImageUploadForm, ProductImageReplaceForm, ImageOrderForm, ImageIdsForm,
    EmployeeForm, SaleForm, SaleUpdateForm,
)
from .images import ProductImageManager
from .models import (
    Product, ProductImage, Employee, Sale, SaleItem,
    generate_employee_code, generate_sale_number, utcnow,
)

public_bp = Blueprint('public', __name__)
admin_bp = Blueprint('admin', __name__, url_prefix='/admin')


def register_blueprints(app):
    app.register_blueprint(public_bp)
    app.register_blueprint(admin_bp)


# ========================
# Utility Functions
# ========================

def get_or_404(model, object_id, message):
    obj = db.session.get(model, object_id)
    if obj is None:
        raise NotFound(message)
    return obj


def admin_user():
    return current_user._get_current_object()


def to_float(value):
    return float(value or 0)


def month_start(day, months_back=0):
    year, month = day.year, day.month - months_back
    while month <= 0:
        month += 12
        year -= 1
    return day.replace(year=year, month=month, day=1)


# ========================
# Authentication
# ========================

@admin_bp.route('/login', methods=['POST'])
def admin_login():
    form = LoginForm().validate_or_raise()
    admin, token = login(form.email.data, form.password.data, form.remember_me.data)
    return jsonify({
        'success': True,
        'message': _("Login successful"),
        'user': admin.to_dict(),
        'token': token,
    })


@admin_bp.route('/logout', methods=['POST'])
def admin_logout():
    # Unknown or missing tokens are already logged out
    revoked = logout(bearer_token())
    return json_response(message=_("Logout successful") if revoked else _("Logout completed"))


@admin_bp.route('/check-auth')
def admin_check_auth():
    return jsonify(check_auth(bearer_token()))


@admin_bp.route('/profile', methods=['GET'])
@token_required
def get_profile():
    return json_response(admin_user().to_dict(include_meta=True))


@admin_bp.route('/profile', methods=['PUT'])
@token_required
def edit_profile():
    form = ProfileForm().validate_or_raise()
    data = form.submitted_data('name', 'email', 'current_password', 'new_password')
    admin = update_profile(admin_user(), **data)
    return json_response(admin.to_dict(include_meta=True), _("Profile updated successfully"))


@admin_bp.route('/change-password', methods=['POST'])
@token_required
def admin_change_password():
    form = ChangePasswordForm().validate_or_raise()
    change_password(admin_user(), form.current_password.data, form.new_password.data)
    return json_response(message=_("Password changed successfully"))


# ========================
# Products
# ========================

@admin_bp.route('/products', methods=['GET'])
@token_required
def list_products():
    products = Product.query.order_by(Product.created_at.desc(), Product.id.desc()).all()
    return json_response([p.to_dict(with_images=True) for p in products])


@admin_bp.route('/products', methods=['POST'])
@token_required
def create_product():
    form = ProductForm().validate_or_raise()
    product = Product(
        name=form.name.data,
        cost_price=form.cost_price.data,
        selling_price=form.selling_price.data,
        stock_quantity=form.stock_quantity.data,
        reorder_level=form.reorder_level.data,
        unit_of_measure=form.unit_of_measure.data,
        description=form.description.data,
        is_active=form.is_active.data if form.submitted('is_active') else True,
    )
    if form.currency.data:
        product.currency = form.currency.data.upper()
    db.session.add(product)
    db.session.commit()
    current_app.logger.info("Product created: %s (%s)", product.name, product.id)
    return json_response(product.to_dict(with_images=True), _("Product created successfully"), 201)


@admin_bp.route('/products/low-stock')
@token_required
def low_stock_products():
    products = Product.query.filter(
        Product.is_active.is_(True),
        Product.stock_quantity <= Product.reorder_level,
    ).order_by(Product.stock_quantity).all()
    return json_response([p.to_dict() for p in products])


@admin_bp.route('/products/search')
@token_required
def search_products():
    term = (request.args.get('q') or '').strip()
    if not term:
        return json_response([])
    products = Product.query.filter(
        Product.name.icontains(term, autoescape=True),
        Product.stock_quantity > 0,
    ).order_by(Product.name).limit(20).all()
    return json_response([{
        'id': p.id,
        'name': p.name,
        'selling_price': to_float(p.selling_price),
        'stock_quantity': p.stock_quantity,
        'unit_of_measure': p.unit_of_measure,
    } for p in products])


@admin_bp.route('/products/<int:product_id>', methods=['GET'])
@token_required
def show_product(product_id):
    product = get_or_404(Product, product_id, _("Product not found"))
    return json_response(product.to_dict(with_images=True))


@admin_bp.route('/products/<int:product_id>', methods=['PUT', 'PATCH'])
@token_required
def update_product(product_id):
    product = get_or_404(Product, product_id, _("Product not found"))
    form = ProductUpdateForm(product=product).validate_or_raise()

    for name, value in form.submitted_data(
        'name', 'cost_price', 'selling_price', 'stock_quantity', 'reorder_level',
        'unit_of_measure', 'description', 'is_active',
    ).items():
        setattr(product, name, value)
    if form.submitted('currency') and form.currency.data:
        product.currency = form.currency.data.upper()

    db.session.commit()
    current_app.logger.info("Product updated: %s", product.id)
    return json_response(product.to_dict(with_images=True), _("Product updated successfully"))


@admin_bp.route('/products/<int:product_id>', methods=['DELETE'])
@token_required
def delete_product(product_id):
    product = get_or_404(Product, product_id, _("Product not found"))
    ProductImageManager().purge_product(product)
    return json_response(message=_("Product deleted successfully"))


@admin_bp.route('/products/<int:product_id>/stock', methods=['PATCH'])
@token_required
def update_product_stock(product_id):
    product = get_or_404(Product, product_id, _("Product not found"))
    form = StockForm().validate_or_raise()
    product.stock_quantity = form.stock_quantity.data
    db.session.commit()
    return json_response(product.to_dict(), _("Stock updated successfully"))


@public_bp.route('/products/public')
def public_products():
    page = request.args.get('page', 1, type=int)
    per_page = request.args.get('limit', current_app.config['PUBLIC_PRODUCTS_PER_PAGE'], type=int)
    pagination = db.paginate(
        db.select(Product).where(Product.is_active.is_(True)).order_by(Product.created_at.desc(), Product.id.desc()),
        page=max(page, 1),
        per_page=max(per_page, 1),
        max_per_page=50,
        error_out=False,
    )
    return jsonify({
        'success': True,
        'data': [p.to_dict(with_images=True) for p in pagination.items],
        'total': pagination.total,
        'current_page': pagination.page,
        'per_page': pagination.per_page,
        'last_page': pagination.pages or 1,
    })


# ========================
# Product Images
# ========================

def _product_image(product_id, image_id):
    product = get_or_404(Product, product_id, _("Product not found"))
    image = get_or_404(ProductImage, image_id, _("Image not found"))
    if image.product_id != product.id:
        raise ImageNotOwned()
    return product, image


@admin_bp.route('/products/<int:product_id>/images', methods=['GET'])
@token_required
def list_product_images(product_id):
    product = get_or_404(Product, product_id, _("Product not found"))
    images = ProductImageManager().list(product)
    return json_response([i.to_dict() for i in images], _("Product images retrieved successfully"))


@admin_bp.route('/products/<int:product_id>/images', methods=['POST'])
@token_required
def upload_product_images(product_id):
    product = get_or_404(Product, product_id, _("Product not found"))
    form = ProductImageUploadForm().validate_or_raise()
    files = [f for f in form.images.data if f]
    images = ProductImageManager().store(product, files)
    return json_response([i.to_dict() for i in images], _("Images uploaded successfully"), 201)


@admin_bp.route('/products/<int:product_id>/images/<int:image_id>/set-primary', methods=['PUT'])
@token_required
def set_primary_image(product_id, image_id):
    product, image = _product_image(product_id, image_id)
    image = ProductImageManager().set_primary(product, image)
    db.session.refresh(image)
    return json_response(image.to_dict(), _("Primary image set successfully"))


@admin_bp.route('/products/<int:product_id>/images/reorder', methods=['PUT'])
@token_required
def reorder_product_images(product_id):
    product = get_or_404(Product, product_id, _("Product not found"))
    form = ImageOrderForm().validate_or_raise()
    ProductImageManager().reorder(product, form.image_order.data)
    return json_response(message=_("Image order updated successfully"))


@admin_bp.route('/products/<int:product_id>/images/<int:image_id>/update', methods=['PUT'])
@token_required
def replace_product_image(product_id, image_id):
    product, image = _product_image(product_id, image_id)
    form = ProductImageReplaceForm().validate_or_raise()
    image = ProductImageManager().replace(product, image, form.image.data)
    return json_response(image.to_dict(), _("Image updated successfully"))


@admin_bp.route('/products/<int:product_id>/images/multiple', methods=['DELETE'])
@token_required
def delete_product_images(product_id):
    product = get_or_404(Product, product_id, _("Product not found"))
    form = ImageIdsForm().validate_or_raise()
    count = ProductImageManager().destroy_multiple(product, form.image_ids.data)
    return json_response(message=_("%(count)s images deleted successfully", count=count))


@admin_bp.route('/products/<int:product_id>/images/<int:image_id>', methods=['DELETE'])
@token_required
def delete_product_image(product_id, image_id):
    product, image = _product_image(product_id, image_id)
    ProductImageManager().destroy(product, image)
    return json_response(message=_("Image deleted successfully"))


# ========================
# Employees
# ========================

EMPLOYEE_FIELDS = (
    'first_name', 'last_name', 'phone', 'position', 'department', 'base_salary',
    'hire_date', 'date_of_birth', 'address', 'employment_type', 'work_hours_per_day',
    'work_shift', 'is_active',
)


@admin_bp.route('/employees', methods=['GET'])
@token_required
def list_employees():
    employees = Employee.query.order_by(Employee.created_at.desc(), Employee.id.desc()).all()
    return json_response([e.to_dict() for e in employees])


@admin_bp.route('/employees', methods=['POST'])
@token_required
def create_employee():
    form = EmployeeForm().validate_or_raise()
    employee = Employee(**form.submitted_data(*EMPLOYEE_FIELDS))
    # Defaults for anything the client left out
    if not form.submitted('is_active'):
        employee.is_active = True
    employee.employment_type = employee.employment_type or 'full_time'
    employee.work_hours_per_day = employee.work_hours_per_day or 8
    employee.work_shift = employee.work_shift or 'day'
    employee.employee_id = form.employee_id.data or generate_employee_code()

    db.session.add(employee)
    db.session.commit()
    current_app.logger.info("Employee created: %s", employee.employee_id)
    return json_response(employee.to_dict(), _("Employee created successfully"), 201)


@admin_bp.route('/employees/<int:employee_id>', methods=['GET'])
@token_required
def show_employee(employee_id):
    employee = get_or_404(Employee, employee_id, _("Employee not found"))
    return json_response(employee.to_dict())


@admin_bp.route('/employees/<int:employee_id>', methods=['PUT', 'PATCH'])
@token_required
def update_employee(employee_id):
    employee = get_or_404(Employee, employee_id, _("Employee not found"))
    form = EmployeeForm(employee=employee).validate_or_raise()
    for name, value in form.submitted_data(*EMPLOYEE_FIELDS).items():
        setattr(employee, name, value)
    if form.employee_id.data:
        employee.employee_id = form.employee_id.data
    db.session.commit()
    return json_response(employee.to_dict(), _("Employee updated successfully"))


@admin_bp.route('/employees/<int:employee_id>', methods=['DELETE'])
@token_required
def delete_employee(employee_id):
    employee = get_or_404(Employee, employee_id, _("Employee not found"))
    db.session.delete(employee)
    db.session.commit()
    current_app.logger.info("Employee deleted: %s", employee_id)
    return json_response(message=_("Employee deleted successfully"))


# ========================
# Sales
# ========================

def take_stock(sale, items):
    """Add ``items`` to ``sale`` and decrement product stock, refusing to oversell."""
    needed = defaultdict(int)
    for item in items:
        needed[item['product'].id] += item['quantity']

    shortages = []
    for item in items:
        product = item['product']
        if product.id in needed and product.stock_quantity < needed[product.id]:
            shortages.append(_(
                "Insufficient stock for %(name)s: %(available)s available, %(requested)s requested",
                name=product.name, available=product.stock_quantity, requested=needed[product.id],
            ))
        needed.pop(product.id, None)
    if shortages:
        raise ValidationFailed(errors={'items': shortages})

    for item in items:
        item['product'].stock_quantity -= item['quantity']
        sale.items.append(SaleItem(
            product=item['product'],
            quantity=item['quantity'],
            unit_price=item['unit_price'],
            total_price=item['unit_price'] * item['quantity'],
        ))


def restore_stock(sale):
    for item in sale.items:
        if item.product is not None:
            item.product.stock_quantity += item.quantity


def sale_subtotal(form):
    return form.total_amount.data - form.tax_amount.data + form.discount_amount.data


@admin_bp.route('/sales', methods=['GET'])
@token_required
def list_sales():
    sales = Sale.query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()
    return json_response([s.to_dict() for s in sales])


@admin_bp.route('/sales/stats')
@token_required
def sales_stats():
    today = utcnow().date()
    this_month = month_start(today)
    last_month = month_start(today, 1)

    total_sales = Sale.query.count()
    total_revenue = to_float(db.session.query(func.sum(Sale.total_amount)).scalar())
    completed = Sale.query.filter_by(status='completed', payment_status='paid').count()
    current_revenue = to_float(db.session.query(func.sum(Sale.total_amount)).filter(
        Sale.sale_date >= this_month).scalar())
    previous_revenue = to_float(db.session.query(func.sum(Sale.total_amount)).filter(
        Sale.sale_date >= last_month, Sale.sale_date < this_month).scalar())

    if previous_revenue > 0:
        growth = (current_revenue - previous_revenue) / previous_revenue * 100
    else:
        growth = 100 if current_revenue > 0 else 0

    return json_response({
        'totalSales': total_sales,
        'totalRevenue': total_revenue,
        'averageOrderValue': round(total_revenue / total_sales, 2) if total_sales else 0,
        'conversionRate': round(completed / total_sales * 100, 2) if total_sales else 0,
        'pendingOrders': Sale.query.filter_by(status='pending').count(),
        'completedOrders': completed,
        'todaySales': to_float(db.session.query(func.sum(Sale.total_amount)).filter(
            Sale.sale_date == today).scalar()),
        'monthlyGrowth': round(growth, 2),
    })


@admin_bp.route('/sales/top-products')
@token_required
def top_products():
    rows = db.session.query(
        SaleItem.product_id,
        func.sum(SaleItem.quantity).label('quantity'),
        func.sum(SaleItem.total_price).label('revenue'),
    ).group_by(SaleItem.product_id).order_by(func.sum(SaleItem.quantity).desc()).limit(5).all()

    data = []
    for row in rows:
        product = db.session.get(Product, row.product_id)
        data.append({
            'id': row.product_id,
            'name': product.name if product else f"Product {row.product_id}",
            'quantitySold': int(row.quantity or 0),
            'revenue': to_float(row.revenue),
        })
    return json_response(data)


@admin_bp.route('/sales/trend')
@token_required
def sales_trend():
    today = utcnow().date()
    start = today - timedelta(days=6)
    rows = db.session.query(
        Sale.sale_date,
        func.count(Sale.id).label('orders'),
        func.sum(Sale.total_amount).label('revenue'),
    ).filter(Sale.sale_date >= start).group_by(Sale.sale_date).all()
    by_day = {row.sale_date: row for row in rows}

    trend = []
    for offset in range(7):
        day = start + timedelta(days=offset)
        row = by_day.get(day)
        orders = int(row.orders) if row else 0
        trend.append({
            'date': day.isoformat(),
            'sales': orders,
            'orders': orders,
            'revenue': to_float(row.revenue) if row else 0,
        })
    return json_response(trend)


@admin_bp.route('/sales/<int:sale_id>', methods=['GET'])
@token_required
def show_sale(sale_id):
    sale = get_or_404(Sale, sale_id, _("Sale not found"))
    return json_response(sale.to_dict())


@admin_bp.route('/sales', methods=['POST'])
@token_required
def create_sale():
    form = SaleForm().validate_or_raise()
    sale = Sale(
        sale_number=generate_sale_number(),
        user_id=admin_user().id,
        subtotal=sale_subtotal(form),
        tax_amount=form.tax_amount.data,
        discount_amount=form.discount_amount.data,
        total_amount=form.total_amount.data,
        payment_method=form.payment_method.data,
        notes=form.notes.data,
        status='completed',
        payment_status='paid',
    )
    db.session.add(sale)
    take_stock(sale, form.parsed_items)
    db.session.commit()

    current_app.logger.info("Sale created: %s", sale.sale_number)
    return json_response(sale.to_dict(), _("Sale created successfully"), 201)


@admin_bp.route('/sales/<int:sale_id>', methods=['PUT'])
@token_required
def update_sale(sale_id):
    sale = get_or_404(Sale, sale_id, _("Sale not found"))
    form = SaleUpdateForm().validate_or_raise()

    if sale.status != 'cancelled':
        restore_stock(sale)
    sale.items.clear()
    db.session.flush()

    sale.payment_method = form.payment_method.data
    sale.status = form.status.data
    sale.payment_status = form.payment_status.data
    sale.total_amount = form.total_amount.data
    sale.tax_amount = form.tax_amount.data
    sale.discount_amount = form.discount_amount.data
    sale.subtotal = sale_subtotal(form)
    if form.submitted('notes'):
        sale.notes = form.notes.data

    if sale.status == 'cancelled':
        for item in form.parsed_items:
            sale.items.append(SaleItem(
                product=item['product'], quantity=item['quantity'], unit_price=item['unit_price'],
                total_price=item['unit_price'] * item['quantity'],
            ))
    else:
        take_stock(sale, form.parsed_items)
    db.session.commit()

    current_app.logger.info("Sale updated: %s", sale.sale_number)
    return json_response(sale.to_dict(), _("Sale updated successfully"))


@admin_bp.route('/sales/<int:sale_id>', methods=['DELETE'])
@token_required
def delete_sale(sale_id):
    sale = get_or_404(Sale, sale_id, _("Sale not found"))
    if sale.status != 'cancelled':
        restore_stock(sale)
    sale_number = sale.sale_number
    db.session.delete(sale)
    db.session.commit()
    current_app.logger.info("Sale deleted: %s", sale_number)
    return json_response(message=_("Sale deleted successfully"))


@admin_bp.route('/sales/<int:sale_id>/process', methods=['POST'])
@token_required
def process_sale(sale_id):
    sale = get_or_404(Sale, sale_id, _("Sale not found"))
    if sale.status == 'cancelled':
        raise ValidationFailed(_("Cancelled sales cannot be processed"))
    sale.status = 'completed'
    sale.payment_status = 'paid'
    db.session.commit()
    return json_response(sale.to_dict(), _("Sale processed successfully"))


@admin_bp.route('/sales/<int:sale_id>/cancel', methods=['POST'])
@token_required
def cancel_sale(sale_id):
    sale = get_or_404(Sale, sale_id, _("Sale not found"))
    if sale.status == 'cancelled':
        raise ValidationFailed(_("Sale is already cancelled"))
    restore_stock(sale)
    sale.status = 'cancelled'
    db.session.commit()
    current_app.logger.info("Sale cancelled: %s", sale.sale_number)
    return json_response(sale.to_dict(), _("Sale cancelled successfully"))


# ========================
# Inventory & Dashboard
# ========================

def cost_of_goods_sold():
    return to_float(db.session.query(func.sum(SaleItem.quantity * Product.cost_price))
                    .select_from(SaleItem)
                    .join(Sale, SaleItem.sale_id == Sale.id)
                    .join(Product, SaleItem.product_id == Product.id)
                    .filter(Sale.status == 'completed').scalar())


def active_payroll():
    return to_float(db.session.query(func.sum(Employee.base_salary))
                    .filter(Employee.is_active.is_(True)).scalar())


@admin_bp.route('/inventory/stats')
@token_required
def inventory_stats():
    total_value = sum(p.inventory_value for p in Product.query.all())
    return json_response({
        'totalProducts': Product.query.count(),
        'lowStockItems': Product.query.filter(Product.stock_quantity <= Product.reorder_level).count(),
        'outOfStockItems': Product.query.filter(Product.stock_quantity == 0).count(),
        'totalValue': total_value,
        'stockValue': total_value,
    }, _("Inventory stats retrieved successfully"))


@admin_bp.route('/dashboard/metrics')
@token_required
def dashboard_metrics():
    completed = Sale.query.filter_by(status='completed')
    revenue = to_float(completed.with_entities(func.sum(Sale.total_amount)).scalar())
    expenses = cost_of_goods_sold() + active_payroll()
    net_profit = revenue - expenses

    return json_response({
        'totalRevenue': revenue,
        'totalExpenses': expenses,
        'netProfit': net_profit,
        'profitMargin': round(net_profit / revenue * 100, 2) if revenue > 0 else 0,
        'totalEmployees': Employee.query.filter_by(is_active=True).count(),
        'totalProducts': Product.query.filter_by(is_active=True).count(),
        'totalSales': completed.count(),
        'lowStockItems': Product.query.filter(
            Product.is_active.is_(True), Product.stock_quantity <= Product.reorder_level).count(),
        'accountsReceivable': to_float(db.session.query(func.sum(Sale.total_amount))
                                       .filter(Sale.payment_status == 'pending').scalar()),
    })


@admin_bp.route('/dashboard/sales-trend')
@token_required
def dashboard_sales_trend():
    today = utcnow().date()
    months = [month_start(today, back) for back in range(5, -1, -1)]
    sales = defaultdict(Decimal)
    profit = defaultdict(Decimal)

    completed = (Sale.status == 'completed', Sale.sale_date >= months[0])

    for sale_date, total in db.session.query(Sale.sale_date, Sale.total_amount).filter(*completed):
        sales[(sale_date.year, sale_date.month)] += Decimal(str(total or 0))

    lines = (
        db.session.query(Sale.sale_date, SaleItem.total_price, SaleItem.quantity, Product.cost_price)
        .select_from(Sale)
        .join(SaleItem, SaleItem.sale_id == Sale.id)
        .join(Product, SaleItem.product_id == Product.id)
        .filter(*completed)
    )
    for sale_date, line_total, quantity, cost in lines:
        profit[(sale_date.year, sale_date.month)] += (
            Decimal(str(line_total or 0)) - Decimal(str(cost or 0)) * quantity
        )

    return json_response([{
        'month': f"{calendar.month_abbr[m.month]} {m.year}",
        'sales': float(sales[(m.year, m.month)]),
        'profit': float(profit[(m.year, m.month)]),
    } for m in months])


@admin_bp.route('/dashboard/expenses')
@token_required
def dashboard_expenses():
    breakdown = [
        {'name': _("Product Costs"), 'value': cost_of_goods_sold()},
        {'name': _("Employee Costs"), 'value': active_payroll()},
    ]
    breakdown = [entry for entry in breakdown if entry['value'] > 0]
    if not breakdown:
        return json_response([], _("No expense data available. Start recording business costs to see expense analysis."))
    return json_response(breakdown, _("Expense analysis based on actual business metrics"))
