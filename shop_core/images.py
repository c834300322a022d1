# shop_core/images.py
"""
Product image lifecycle.

Keeps ``product_images`` rows and the stored files in step. Row changes for
one operation happen in a single transaction; files are written before the
rows that point at them and removed only after those rows are gone, so a
crash can leave an extra file on disk but never a row without a file it was
meant to replace.

Invariant after every mutating call: a product with images has exactly one
primary image.
"""
import logging

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError

from . import db
from .errors import Conflict, ImageNotOwned
from .models import ProductImage
from .storage import get_storage, file_size, discard

logger = logging.getLogger(__name__)


def _default_ordering():
    return (ProductImage.is_primary.desc(), ProductImage.sort_order, ProductImage.id)


class ProductImageManager:
    def __init__(self, storage=None):
        self.storage = storage or get_storage()

    # ------------------------
    # Queries
    # ------------------------

    def list(self, product):
        return db.session.execute(
            select(ProductImage)
            .where(ProductImage.product_id == product.id)
            .order_by(*_default_ordering())
        ).scalars().all()

    def count(self, product):
        return db.session.execute(
            select(func.count(ProductImage.id)).where(ProductImage.product_id == product.id)
        ).scalar_one()

    def _check_owner(self, product, image):
        if image.product_id != product.id:
            raise ImageNotOwned()

    def _ensure_primary(self, product):
        """Promote the first image in default ordering when none is primary."""
        images = self.list(product)
        if images and not any(image.is_primary for image in images):
            images[0].is_primary = True
            logger.info("Promoted image %s to primary for product %s", images[0].id, product.id)

    # ------------------------
    # Upload
    # ------------------------

    def store(self, product, files):
        """Store a batch of uploaded files and create their rows.

        The first file becomes primary only when the product had no images;
        sort orders continue after the existing images. If anything fails,
        the batch's rows are rolled back and its files are deleted before
        the error propagates.
        """
        existing = self.count(product)
        stored_paths = []
        created = []
        try:
            for index, file in enumerate(files):
                size = file_size(file)
                path = self.storage.save(file, product.id)
                stored_paths.append(path)
                logger.info("Stored image %s for product %s at %s", file.filename, product.id, path)

                image = ProductImage(
                    product_id=product.id,
                    image_path=path,
                    image_name=file.filename,
                    file_size=size,
                    mime_type=file.mimetype,
                    is_primary=(index == 0 and existing == 0),
                    sort_order=existing + index,
                    alt_text=product.name,
                )
                db.session.add(image)
                db.session.flush()
                created.append(image)
            db.session.commit()
        except Exception as error:
            db.session.rollback()
            logger.exception("Upload for product %s failed; removing %d stored file(s)",
                             product.id, len(stored_paths))
            discard(stored_paths, self.storage)
            # A concurrent batch claimed the primary slot first
            if isinstance(error, IntegrityError):
                raise Conflict() from error
            raise

        logger.info("Uploaded %d image(s) for product %s", len(created), product.id)
        return created

    # ------------------------
    # Primary selection & ordering
    # ------------------------

    def set_primary(self, product, image):
        self._check_owner(product, image)
        # Clear first so the partial unique index never sees two primaries
        db.session.execute(
            update(ProductImage)
            .where(ProductImage.product_id == product.id, ProductImage.is_primary.is_(True))
            .values(is_primary=False)
        )
        db.session.execute(
            update(ProductImage)
            .where(ProductImage.id == image.id)
            .values(is_primary=True)
        )
        db.session.commit()
        return image

    def reorder(self, product, image_ids):
        for position, image_id in enumerate(image_ids):
            db.session.execute(
                update(ProductImage)
                .where(ProductImage.id == image_id, ProductImage.product_id == product.id)
                .values(sort_order=position)
            )
        db.session.commit()

    # ------------------------
    # Replace
    # ------------------------

    def replace(self, product, image, file):
        self._check_owner(product, image)
        old_path = image.image_path
        size = file_size(file)
        new_path = self.storage.save(file, product.id)
        try:
            image.image_path = new_path
            image.image_name = file.filename
            image.file_size = size
            image.mime_type = file.mimetype
            db.session.commit()
        except Exception:
            db.session.rollback()
            discard([new_path], self.storage)
            raise

        discard([old_path], self.storage)
        logger.info("Replaced image %s of product %s", image.id, product.id)
        return image

    # ------------------------
    # Delete
    # ------------------------

    def destroy(self, product, image):
        self._check_owner(product, image)
        image_id, product_id = image.id, product.id
        path = image.image_path
        was_primary = image.is_primary

        db.session.delete(image)
        db.session.flush()
        if was_primary:
            self._ensure_primary(product)
        db.session.commit()

        discard([path], self.storage)
        logger.info("Deleted image %s of product %s", image_id, product_id)

    def destroy_multiple(self, product, image_ids):
        images = db.session.execute(
            select(ProductImage)
            .where(ProductImage.product_id == product.id, ProductImage.id.in_(image_ids))
        ).scalars().all()

        paths = [image.image_path for image in images]
        was_primary = any(image.is_primary for image in images)
        for image in images:
            db.session.delete(image)
        db.session.flush()
        if was_primary:
            self._ensure_primary(product)
        db.session.commit()

        discard(paths, self.storage)
        logger.info("Deleted %d image(s) of product %s", len(images), product.id)
        return len(images)

    def purge_product(self, product):
        """Delete a product with all its images: rows first, then files."""
        product_id = product.id
        images = self.list(product)
        paths = [image.image_path for image in images]
        for image in images:
            db.session.delete(image)
        db.session.delete(product)
        db.session.commit()

        discard(paths, self.storage)
        logger.info("Deleted product %s with %d image(s)", product_id, len(paths))
