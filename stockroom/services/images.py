import logging
import os
import uuid
from functools import lru_cache

from imagekitio import ImageKit
from imagekitio.models.ListAndSearchFileRequestOptions import ListAndSearchFileRequestOptions
from imagekitio.models.UploadFileRequestOptions import UploadFileRequestOptions

from stockroom.core.config import settings
from stockroom.core.errors import ImageStorageError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp"}
MAX_IMAGE_BYTES = 5 * 1024 * 1024


@lru_cache
def get_imagekit() -> ImageKit:
    if not settings.imagekit_configured:
        raise ImageStorageError(
            "Image storage is not configured. Set IMAGEKIT_PUBLIC_KEY, IMAGEKIT_PRIVATE_KEY "
            "and IMAGEKIT_URL_ENDPOINT."
        )
    return ImageKit(
        public_key=settings.imagekit_public_key,
        private_key=settings.imagekit_private_key,
        url_endpoint=settings.imagekit_url_endpoint,
    )


def validate_image(data: bytes, filename: str | None, content_type: str | None) -> None:
    content_type = (content_type or "").strip().lower()
    ext = os.path.splitext(filename or "")[1].lower().lstrip(".")
    if content_type and content_type != "application/octet-stream" and not content_type.startswith("image/"):
        raise ValidationError("File must be an image")
    if (not content_type or content_type == "application/octet-stream") and ext not in ALLOWED_EXTENSIONS:
        raise ValidationError("File must be an image")
    if not data:
        raise ValidationError("No file uploaded")
    if len(data) > MAX_IMAGE_BYTES:
        raise ValidationError("Image size must be less than 5MB")


def upload_image(data: bytes, filename: str | None, folder: str = "products") -> str:
    """Upload image bytes to ``folder`` and return the public URL."""
    name = filename or f"image_{uuid.uuid4().hex[:8]}.jpg"
    client = get_imagekit()
    try:
        result = client.upload_file(
            file=data,
            file_name=name,
            options=UploadFileRequestOptions(folder=f"/{folder}/", use_unique_file_name=True, is_private_file=False),
        )
    except Exception as exc:
        logger.exception("Image upload to folder %s failed", folder)
        raise ImageStorageError(f"Image upload failed: {exc}") from exc

    if not result or not getattr(result, "url", None):
        raise ImageStorageError("Image upload returned no URL")
    return result.url


def _file_path_from_url(image_url: str) -> str | None:
    # https://ik.imagekit.io/<id>/<folder>/<file>  ->  /<folder>/<file>
    parts = image_url.split("?", 1)[0].rstrip("/").split("/")
    if len(parts) < 2:
        return None
    return f"/{parts[-2]}/{parts[-1]}"


def delete_image(image_url: str) -> None:
    """Delete a previously uploaded image. Failures are logged and ignored."""
    file_path = _file_path_from_url(image_url)
    if not file_path:
        return
    try:
        client = get_imagekit()
        folder, name = file_path.rsplit("/", 1)
        matches = client.list_files(
            options=ListAndSearchFileRequestOptions(path=f"{folder}/", search_query=f'name = "{name}"')
        )
        for item in getattr(matches, "list", None) or []:
            client.delete_file(file_id=item.file_id)
    except Exception:
        logger.warning("Failed to delete image %s", image_url, exc_info=True)
