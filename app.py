# app.py - Shop Admin API entrypoint
import os

from dotenv import load_dotenv
load_dotenv()

from shop_core import db, create_app, create_default_admin

# ✅ Explicitly get FLASK_ENV, default to 'production'
env = os.getenv('FLASK_ENV', 'production')
print(f"🌐 Using FLASK_ENV: {env}")

app = create_app(env)


if __name__ == '__main__':
    with app.app_context():
        db.create_all()
        print("✅ Tables created")
        create_default_admin()
    app.run(debug=app.config.get('DEBUG', False))
