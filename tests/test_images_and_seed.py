from dataclasses import replace

import pytest
from sqlalchemy import func, select

from stockroom.core.errors import ImageStorageError, ValidationError
from stockroom.models.inventory import Product, StockMovement, StockMovementType
from stockroom.models.user import User, UserRole
from stockroom.seed import SEED_PRODUCTS, seed
from stockroom.services import images


class TestValidateImage:
    def test_accepts_image_content_type(self):
        images.validate_image(b"data", "photo.png", "image/png")

    def test_accepts_octet_stream_with_image_extension(self):
        images.validate_image(b"data", "photo.webp", "application/octet-stream")

    @pytest.mark.parametrize(
        "data, filename, content_type, message",
        [
            (b"data", "notes.txt", "text/plain", "File must be an image"),
            (b"data", "archive.zip", None, "File must be an image"),
            (b"", "empty.png", "image/png", "No file uploaded"),
            (b"x" * (images.MAX_IMAGE_BYTES + 1), "big.png", "image/png", "Image size must be less than 5MB"),
        ],
    )
    def test_rejects(self, data, filename, content_type, message):
        with pytest.raises(ValidationError) as exc_info:
            images.validate_image(data, filename, content_type)
        assert exc_info.value.message == message


def test_unconfigured_provider_raises(monkeypatch):
    monkeypatch.setattr(images, "settings", replace(images.settings, imagekit_public_key=""))
    images.get_imagekit.cache_clear()

    with pytest.raises(ImageStorageError):
        images.upload_image(b"data", "a.png")

    images.get_imagekit.cache_clear()


def test_delete_image_swallows_provider_errors(monkeypatch):
    def broken_client():
        raise ImageStorageError("down")

    monkeypatch.setattr(images, "get_imagekit", broken_client)

    images.delete_image("https://ik.imagekit.io/demo/products/a.png")


def test_file_path_from_url():
    assert images._file_path_from_url("https://ik.imagekit.io/demo/products/a_x1.png?tr=w-200") == "/products/a_x1.png"


def test_seed_populates_empty_database_once(db):
    assert seed(db) is True

    assert db.scalar(select(func.count(User.id))) == 3
    assert db.scalar(select(User.role).where(User.email == "admin@inventory.com")) == UserRole.ADMIN
    assert db.scalar(select(func.count(Product.id))) == len(SEED_PRODUCTS)

    stocked = [entry for entry in SEED_PRODUCTS if entry[4] > 0]
    movements = db.scalars(select(StockMovement)).all()
    assert len(movements) == len(stocked)
    assert all(m.movement_type == StockMovementType.ADJUSTMENT and m.previous_stock == 0 for m in movements)

    assert seed(db) is False
    assert db.scalar(select(func.count(User.id))) == 3
