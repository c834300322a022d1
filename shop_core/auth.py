# shop_core/auth.py
"""
Bearer-token authentication for the admin API.

A successful login stores one opaque token in ``admin_users.api_token``;
every request is authenticated independently by looking that token up.
Issuing a new token overwrites the old one, so each admin has a single
active session.
"""
import secrets
import logging
from functools import wraps

from flask import request, g
from flask_login import current_user

from . import db
from .errors import Unauthenticated, InvalidToken, InvalidCredentials, IncorrectPassword, ValidationFailed
from .models import AdminUser

logger = logging.getLogger(__name__)

TOKEN_BYTES = 48  # 64 url-safe characters


def bearer_token(req=None):
    header = (req or request).headers.get('Authorization', '')
    scheme, _, token = header.partition(' ')
    if scheme.lower() != 'bearer':
        return None
    return token.strip() or None


def find_admin_by_token(token):
    if not token:
        return None
    return db.session.execute(
        db.select(AdminUser).where(AdminUser.api_token == token, AdminUser.is_active.is_(True))
    ).scalar()


def load_admin_from_request(req):
    """Flask-Login request loader: resolves ``current_user`` from the bearer token."""
    return find_admin_by_token(bearer_token(req))


def token_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not bearer_token():
            logger.info("Rejected %s %s: no access token", request.method, request.path)
            raise Unauthenticated()
        if not current_user.is_authenticated:
            logger.info("Rejected %s %s: invalid token", request.method, request.path)
            raise InvalidToken()
        g.admin_user = current_user.identity()
        return f(*args, **kwargs)
    return decorated_function


def generate_token():
    return secrets.token_urlsafe(TOKEN_BYTES)


def login(email, password, remember_me=False):
    """Verify credentials and issue a fresh token, replacing any previous one."""
    admin = db.session.execute(
        db.select(AdminUser).where(AdminUser.email == (email or '').strip(), AdminUser.is_active.is_(True))
    ).scalar()

    # Same error for unknown email, inactive account and wrong password
    if admin is None or not admin.check_password(password):
        logger.info("Failed admin login for %s", email)
        raise InvalidCredentials()

    admin.api_token = generate_token()
    admin.remember_token = secrets.token_urlsafe(45) if remember_me else None
    db.session.commit()

    logger.info("Admin user logged in: %s", admin.email)
    return admin, admin.api_token


def logout(token):
    """Revoke ``token``. Unknown or missing tokens are already invalid, so this always succeeds."""
    if not token:
        return False
    admin = db.session.execute(
        db.select(AdminUser).where(AdminUser.api_token == token)
    ).scalar()
    if admin is None:
        return False

    admin.api_token = None
    admin.remember_token = None
    db.session.commit()
    logger.info("Admin user logged out: %s", admin.email)
    return True


def check_auth(token):
    admin = find_admin_by_token(token)
    return {
        'authenticated': admin is not None,
        'user': admin.to_dict() if admin else None,
    }


def change_password(admin, current_password, new_password):
    """Replace the password after re-verifying the current one. The token stays valid."""
    if not admin.check_password(current_password):
        raise IncorrectPassword()
    admin.set_password(new_password)
    db.session.commit()
    logger.info("Admin password changed: %s", admin.email)
    return admin


def update_profile(admin, name=None, email=None, current_password=None, new_password=None):
    if email is not None and email != admin.email:
        taken = db.session.execute(
            db.select(AdminUser.id).where(AdminUser.email == email, AdminUser.id != admin.id)
        ).scalar()
        if taken:
            raise ValidationFailed(errors={'email': ["The email has already been taken."]})
        admin.email = email
    if name is not None:
        admin.name = name
    if current_password and new_password:
        if not admin.check_password(current_password):
            raise IncorrectPassword()
        admin.set_password(new_password)

    db.session.commit()
    logger.info("Admin profile updated: %s", admin.email)
    return admin
