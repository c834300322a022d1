# shop_core/cli.py

import os
import time

import click

from . import db, create_default_admin


def register_commands(app):
    @app.cli.command("reset-db")
    def reset_db():
        """Drop and recreate every table, then seed the default admin."""
        db.drop_all()
        db.create_all()
        print("✅ Database reset complete.")
        create_default_admin()

    @app.cli.command("create-admin")
    def create_admin():
        db.create_all()
        create_default_admin()

    @app.cli.command("prune-images")
    @click.option('--dry-run', is_flag=True, help="Only list the files that would be removed.")
    @click.option('--min-age', default=10, show_default=True, type=click.IntRange(min=0),
                  help="Skip files modified within this many minutes.")
    def prune_images(dry_run, min_age):
        """Remove local upload files no product_images row points at.

        Uploads write their files before the rows commit, so recent files
        are left alone until they are older than ``--min-age`` minutes.
        """
        from .models import ProductImage

        root = os.path.join(app.config['UPLOAD_FOLDER'], 'products')
        cutoff = time.time() - min_age * 60
        known = set(db.session.execute(db.select(ProductImage.image_path)).scalars())
        removed = 0
        for dirpath, _, filenames in os.walk(root):
            for filename in filenames:
                full_path = os.path.join(dirpath, filename)
                path = os.path.relpath(full_path, app.config['UPLOAD_FOLDER']).replace(os.sep, '/')
                if path in known or os.path.getmtime(full_path) > cutoff:
                    continue
                removed += 1
                if dry_run:
                    print(f"🗑️ Would remove {path}")
                else:
                    os.remove(full_path)
        print(f"✅ {removed} orphaned image file(s) {'found' if dry_run else 'removed'}.")
