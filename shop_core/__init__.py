# shop_core/__init__.py
import os
import logging

from flask import Flask, request, current_app
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_wtf.csrf import CSRFProtect
from flask_babel import Babel
from flask_login import LoginManager
from sqlalchemy import event
from sqlalchemy.engine import Engine

# Single db instance
db = SQLAlchemy()
bcrypt = Bcrypt()
csrf = CSRFProtect()
babel = Babel()
login_manager = LoginManager()
# Config
from .config import config as app_config


def get_locale():
    return request.args.get('lang') or request.accept_languages.best_match(
        current_app.config["BABEL_SUPPORTED_LOCALES"]
    )


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # sale_items and product_images rely on ON DELETE behaviour
    if type(dbapi_connection).__module__.startswith('sqlite3'):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_default_admin():
    from .models import AdminUser
    from flask import current_app

    email = current_app.config['DEFAULT_ADMIN_EMAIL']
    existing = db.session.execute(
        db.select(AdminUser).where(AdminUser.email == email)
    ).scalar()

    if existing:
        print("ℹ️ Admin already exists.")
        return existing

    admin = AdminUser(
        name='Administrator',
        email=email,
        role='admin',
        is_active=True,
    )
    admin.set_password(current_app.config['DEFAULT_ADMIN_PASSWORD'])
    db.session.add(admin)
    db.session.commit()
    print(f"✅ Default admin created: {email}")
    return admin


def create_app(config_name=None, **overrides):
    env = config_name or os.getenv('FLASK_ENV') or 'production'

    config_class = app_config.get(env)
    if not config_class:
        raise ValueError(f"Unknown config: {env}")

    config_instance = config_class()
    for key, value in overrides.items():
        setattr(config_instance, key, value)
    config_instance.validate()

    app = Flask(
        __name__,
        static_folder=config_instance.UPLOAD_FOLDER,
        static_url_path='/uploads',
    )
    app.config.from_object(config_instance)
    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    app.logger.setLevel(getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO))
    app.logger.info("Loaded config: %s", env)

    # Initialize extensions
    db.init_app(app)
    bcrypt.init_app(app)
    csrf.init_app(app)
    babel.init_app(app, locale_selector=get_locale)
    login_manager.init_app(app)

    from .auth import load_admin_from_request
    login_manager.request_loader(load_admin_from_request)

    from .storage import init_storage
    init_storage(app)

    from .errors import register_error_handlers
    register_error_handlers(app)

    from .routes import register_blueprints
    register_blueprints(app)

    from .cli import register_commands
    register_commands(app)

    return app
