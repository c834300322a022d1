# shop_core/forms.py

from flask import request, current_app
from flask_wtf import FlaskForm
from flask_wtf.file import FileField, MultipleFileField, FileRequired, FileAllowed, FileSize
from wtforms import (
    Form, Field, StringField, PasswordField, IntegerField, DecimalField,
    TextAreaField, BooleanField, SelectField, DateField, ValidationError,
)
from wtforms.validators import Optional, NumberRange, Length, Email, EqualTo, StopValidation, AnyOf
from werkzeug.datastructures import ImmutableMultiDict
from flask_babel import lazy_gettext as _

from . import db
from .errors import ValidationFailed
from .models import (
    Product, ProductImage, Employee, EMPLOYMENT_TYPES, WORK_SHIFTS,
    SALE_STATUSES, PAYMENT_STATUSES, PAYMENT_METHODS,
)


# -------------------
# Base form & helpers
# -------------------
class ApiForm(FlaskForm):
    """FlaskForm reading JSON bodies as well as form/multipart data.

    JSON ``null`` values are dropped so they behave like absent keys.
    """

    class Meta:
        def wrap_formdata(self, form, formdata):
            if formdata is None and request.is_json:
                payload = request.get_json(silent=True)
                if not isinstance(payload, dict):
                    payload = {}
                return ImmutableMultiDict({k: v for k, v in payload.items() if v is not None})
            return super().wrap_formdata(form, formdata)

    def __init__(self, *args, **kwargs):
        # formdata=None lets Meta.wrap_formdata pick JSON when the body is JSON
        if 'formdata' not in kwargs and request.is_json:
            kwargs['formdata'] = None
        super().__init__(*args, **kwargs)

    def submitted(self, name):
        return bool(getattr(self, name).raw_data)

    def submitted_data(self, *names):
        names = names or [name for name in self._fields if name != 'csrf_token']
        return {name: getattr(self, name).data for name in names if self.submitted(name)}

    def validate_or_raise(self):
        if not self.validate():
            raise ValidationFailed(errors={
                name: [str(message) for message in messages]
                for name, messages in self.errors.items()
            })
        return self


class Required:
    """Value must be present; unlike InputRequired it accepts a numeric 0."""

    def __init__(self, message=None):
        self.message = message

    def __call__(self, form, field):
        if not field.raw_data or field.raw_data[0] is None or field.raw_data[0] == '':
            field.errors[:] = []
            raise StopValidation(self.message or _("This field is required."))


class Sometimes:
    """Skip the remaining validators when the field was not sent (partial updates)."""

    def __call__(self, form, field):
        if not field.raw_data:
            field.errors[:] = []
            raise StopValidation()


class IdListField(Field):
    """List of integer ids from a JSON array or repeated form values."""

    def process_formdata(self, valuelist):
        self.data = []
        for value in valuelist:
            if isinstance(value, bool):
                raise ValueError(self.gettext("Each id must be an integer."))
            try:
                self.data.append(int(value))
            except (TypeError, ValueError):
                self.data = []
                raise ValueError(self.gettext("Each id must be an integer."))

    def _value(self):
        return ','.join(str(x) for x in self.data or [])


class ItemListField(Field):
    """Raw list of JSON objects, validated item by item by the owning form."""

    def process_formdata(self, valuelist):
        self.data = list(valuelist)


def existing_image_ids(form, field):
    ids = set(field.data or [])
    if not ids:
        return
    found = set(db.session.execute(
        db.select(ProductImage.id).where(ProductImage.id.in_(ids))
    ).scalars())
    missing = sorted(ids - found)
    if missing:
        raise ValidationError(_("Unknown image id(s): %(ids)s", ids=', '.join(map(str, missing))))


def not_empty_list(form, field):
    if not field.data:
        raise StopValidation(_("At least one id is required."))


# -------------------
# Image validators (limits read from config at request time)
# -------------------
def _files(field):
    data = field.data
    return data if isinstance(data, list) else [data]


def image_extensions(form, field):
    FileAllowed(
        sorted(current_app.config['PRODUCT_IMAGE_EXTENSIONS']),
        _("Only JPEG, PNG, JPG, GIF and WEBP images can be uploaded."),
    )(form, field)


def image_mime_types(form, field):
    allowed = current_app.config['PRODUCT_IMAGE_MIME_TYPES']
    for file in _files(field):
        if file and file.mimetype not in allowed:
            raise StopValidation(_("Only image files can be uploaded."))


def image_size(form, field):
    FileSize(
        max_size=current_app.config['PRODUCT_IMAGE_MAX_SIZE'],
        message=_("Each image must not exceed 5MB."),
    )(form, field)


def image_count(form, field):
    files = [f for f in _files(field) if f]
    limit = current_app.config['PRODUCT_IMAGE_MAX_FILES']
    if not files:
        raise StopValidation(_("You must upload at least one image."))
    if len(files) > limit:
        raise StopValidation(_("No more than %(limit)s images can be uploaded at once.", limit=limit))


# -------------------
# Authentication Forms
# -------------------
class LoginForm(ApiForm):
    email = StringField(_("Email"), validators=[Required(), Email()])
    password = PasswordField(_("Password"), validators=[Required()])
    remember_me = BooleanField(_("Remember me"))


class ChangePasswordForm(ApiForm):
    current_password = PasswordField(_("Current password"), validators=[Required()])
    new_password = PasswordField(_("New password"), validators=[
        Required(), Length(min=8),
        EqualTo('new_password_confirmation', message=_("The new password confirmation does not match.")),
    ])
    new_password_confirmation = PasswordField(_("Confirm new password"))


class ProfileForm(ApiForm):
    name = StringField(_("Name"), validators=[Sometimes(), Required(), Length(max=255)])
    email = StringField(_("Email"), validators=[Sometimes(), Required(), Email()])
    current_password = PasswordField(_("Current password"), validators=[Sometimes(), Required()])
    new_password = PasswordField(_("New password"), validators=[
        Sometimes(), Required(), Length(min=6),
        EqualTo('new_password_confirmation', message=_("The new password confirmation does not match.")),
    ])
    new_password_confirmation = PasswordField(_("Confirm new password"))


# -------------------
# Product Forms
# -------------------
class ProductForm(ApiForm):
    name = StringField(_("Product name"), validators=[
        Required(_("Product name is required")), Length(max=255)])
    cost_price = DecimalField(_("Cost price"), places=2, validators=[
        Required(_("Cost price is required")), NumberRange(min=0, message=_("Cost price must be 0 or greater"))])
    selling_price = DecimalField(_("Selling price"), places=2, validators=[
        Required(_("Selling price is required")), NumberRange(min=0, message=_("Selling price must be 0 or greater"))])
    stock_quantity = IntegerField(_("Stock quantity"), validators=[
        Required(_("Stock quantity is required")), NumberRange(min=0, message=_("Stock quantity must be 0 or greater"))])
    reorder_level = IntegerField(_("Reorder level"), validators=[
        Required(_("Reorder level is required")), NumberRange(min=0, message=_("Reorder level must be 0 or greater"))])
    unit_of_measure = StringField(_("Unit of measure"), validators=[
        Required(_("Unit of measure is required")), Length(max=50)])
    currency = StringField(_("Currency"), validators=[Optional(), Length(min=3, max=3)])
    description = TextAreaField(_("Description"), validators=[Optional()])
    is_active = BooleanField(_("Is Active"), default=True)

    def __init__(self, *args, product=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.product = product

    def _final(self, name):
        field = getattr(self, name)
        if self.submitted(name) or self.product is None:
            return field.data
        return getattr(self.product, name)

    def validate(self, extra_validators=None):
        valid = super().validate(extra_validators)
        if not valid or not (self.submitted('cost_price') or self.submitted('selling_price')):
            return valid
        cost, selling = self._final('cost_price'), self._final('selling_price')
        if cost is not None and selling is not None and not selling > cost:
            self.selling_price.errors.append(_("Selling price must be greater than cost price"))
            return False
        return valid


class ProductUpdateForm(ProductForm):
    name = StringField(_("Product name"), validators=[Sometimes(), Required(), Length(max=255)])
    cost_price = DecimalField(_("Cost price"), places=2, validators=[
        Sometimes(), Required(), NumberRange(min=0, message=_("Cost price must be 0 or greater"))])
    selling_price = DecimalField(_("Selling price"), places=2, validators=[
        Sometimes(), Required(), NumberRange(min=0, message=_("Selling price must be 0 or greater"))])
    stock_quantity = IntegerField(_("Stock quantity"), validators=[
        Sometimes(), Required(), NumberRange(min=0, message=_("Stock quantity must be 0 or greater"))])
    reorder_level = IntegerField(_("Reorder level"), validators=[
        Sometimes(), Required(), NumberRange(min=0, message=_("Reorder level must be 0 or greater"))])
    unit_of_measure = StringField(_("Unit of measure"), validators=[Sometimes(), Required(), Length(max=50)])


class StockForm(ApiForm):
    stock_quantity = IntegerField(_("Stock quantity"), validators=[
        Required(_("Stock quantity is required")),
        NumberRange(min=0, message=_("Stock quantity must be 0 or greater")),
    ])


class ProductImageUploadForm(ApiForm):
    images = MultipleFileField(_("Images"), name='images[]', validators=[
        image_count, image_extensions, image_mime_types, image_size,
    ])


class ProductImageReplaceForm(ApiForm):
    image = FileField(_("Image"), validators=[
        FileRequired(_("An image file is required.")), image_extensions, image_mime_types, image_size,
    ])


class ImageOrderForm(ApiForm):
    image_order = IdListField(_("Image order"), validators=[not_empty_list, existing_image_ids])


class ImageIdsForm(ApiForm):
    image_ids = IdListField(_("Image ids"), validators=[not_empty_list, existing_image_ids])


# -------------------
# Employee Forms
# -------------------
class EmployeeForm(ApiForm):
    employee_id = StringField(_("Employee ID"), validators=[Optional(), Length(max=20)])
    first_name = StringField(_("First name"), validators=[Required(), Length(max=255)])
    last_name = StringField(_("Last name"), validators=[Required(), Length(max=255)])
    phone = StringField(_("Phone"), validators=[Optional(), Length(max=20)])
    position = StringField(_("Position"), validators=[Required(), Length(max=255)])
    department = StringField(_("Department"), validators=[Required(), Length(max=255)])
    base_salary = DecimalField(_("Base salary"), places=2, validators=[Required(), NumberRange(min=0)])
    hire_date = DateField(_("Hire date"), validators=[Optional()])
    date_of_birth = DateField(_("Date of birth"), validators=[Optional()])
    address = TextAreaField(_("Address"), validators=[Optional()])
    employment_type = StringField(_("Employment type"), validators=[Optional(), AnyOf(EMPLOYMENT_TYPES)])
    work_hours_per_day = IntegerField(_("Work hours per day"), validators=[Optional(), NumberRange(min=1, max=24)])
    work_shift = StringField(_("Work shift"), validators=[Optional(), AnyOf(WORK_SHIFTS)])
    is_active = BooleanField(_("Is Active"), default=True)

    def __init__(self, *args, employee=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.employee = employee

    def validate_employee_id(self, field):
        query = db.select(Employee.id).where(Employee.employee_id == field.data)
        if self.employee is not None:
            query = query.where(Employee.id != self.employee.id)
        if db.session.execute(query).scalar():
            raise ValidationError(_("This employee ID is already in use."))


# -------------------
# Sales Forms
# -------------------
class SaleItemForm(Form):
    product_id = IntegerField(_("Product"), validators=[Required()])
    quantity = IntegerField(_("Quantity"), validators=[Required(), NumberRange(min=1)])
    unit_price = DecimalField(_("Unit price"), validators=[Required(), NumberRange(min=0)])
    total_price = DecimalField(_("Total price"), validators=[Optional(), NumberRange(min=0)])


class SaleForm(ApiForm):
    payment_method = SelectField(_("Payment method"), choices=[(m, m) for m in PAYMENT_METHODS], validators=[Required()])
    total_amount = DecimalField(_("Total amount"), places=2, validators=[Required(), NumberRange(min=0)])
    tax_amount = DecimalField(_("Tax amount"), places=2, validators=[Required(), NumberRange(min=0)])
    discount_amount = DecimalField(_("Discount amount"), places=2, validators=[Required(), NumberRange(min=0)])
    notes = TextAreaField(_("Notes"), validators=[Optional()])
    items = ItemListField(_("Items"))

    def validate_items(self, field):
        """Validate every line item and resolve its product."""
        if not field.data:
            raise StopValidation(_("At least one item is required."))

        self.parsed_items = []
        failed = False
        for i, raw in enumerate(field.data):
            item = SaleItemForm(formdata=ImmutableMultiDict(
                {k: v for k, v in raw.items() if v is not None} if isinstance(raw, dict) else {}
            ))
            if not item.validate():
                failed = True
                for name, messages in item.errors.items():
                    field.errors.extend(f"items.{i}.{name}: {m}" for m in messages)
                continue
            product = db.session.get(Product, item.product_id.data)
            if product is None:
                failed = True
                field.errors.append(f"items.{i}.product_id: {_('The selected product does not exist.')}")
                continue
            self.parsed_items.append({
                'product': product,
                'quantity': item.quantity.data,
                'unit_price': item.unit_price.data,
            })
        if failed:
            raise ValidationError(_("One or more sale items are invalid."))


class SaleUpdateForm(SaleForm):
    status = SelectField(_("Status"), choices=[(s, s) for s in SALE_STATUSES], validators=[Required()])
    payment_status = SelectField(_("Payment status"), choices=[(s, s) for s in PAYMENT_STATUSES], validators=[Required()])
