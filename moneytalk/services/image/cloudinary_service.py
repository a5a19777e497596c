"""
Receipt Image Storage using Cloudinary

DESIGN DECISION: We use Cloudinary because:
1. Reliable hosting with stable HTTPS URLs
2. On-the-fly thumbnails via URL transformations
3. Free tier sufficient for personal use

CRITICAL: Saving a receipt transaction never fails because of the image.
When Cloudinary is not configured or the upload keeps failing, the JPEG
is written under the local data directory and its path is returned with
is_local=True.
"""

from pathlib import Path
from typing import Optional

import cloudinary
import cloudinary.exceptions
import cloudinary.uploader
import structlog
from cloudinary import CloudinaryImage
from tenacity import retry, stop_after_attempt, wait_exponential

from moneytalk.config.settings import CloudinarySettings
from moneytalk.models.transaction import ImageUploadResult
from moneytalk.services.image.processing import ImageProcessingError, prepare_receipt_jpeg
from moneytalk.services.storage.sqlite_store import epoch_millis


logger = structlog.get_logger(__name__)

UPLOAD_FOLDER = "moneytalk"


class ImageServiceError(Exception):
    """Base exception for receipt image storage."""
    pass


class ReceiptImageService:
    """
    Stores receipt images remotely, with a local fallback.

    Keys have the form "<user_id>/receipt_<epoch ms>".
    """

    def __init__(
        self,
        local_dir: Path,
        settings: Optional[CloudinarySettings] = None,
        max_kb: int = 100,
    ):
        self._local_dir = Path(local_dir)
        self._settings = settings
        self._max_kb = max_kb
        self._configured = False

    @property
    def remote_enabled(self) -> bool:
        return self._settings is not None

    def _configure(self):
        """Configure Cloudinary SDK."""
        if not self._configured:
            cloudinary.config(
                cloud_name=self._settings.cloud_name,
                api_key=self._settings.api_key,
                api_secret=self._settings.api_secret,
                secure=True,
            )
            self._configured = True

    @staticmethod
    def receipt_key(user_id: str, millis: Optional[int] = None) -> str:
        return f"{user_id}/receipt_{millis if millis is not None else epoch_millis()}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _upload_remote(self, jpeg_bytes: bytes, key: str) -> str:
        """Upload and return the secure URL."""
        self._configure()
        try:
            result = cloudinary.uploader.upload(
                jpeg_bytes,
                public_id=key,
                folder=UPLOAD_FOLDER,
                resource_type="image",
                overwrite=True,
            )
        except cloudinary.exceptions.Error as e:
            raise ImageServiceError(f"Cloudinary error: {e}")

        url = result.get("secure_url", result.get("url", ""))
        if not url:
            raise ImageServiceError("No URL returned from Cloudinary")
        return url

    def _save_local(self, jpeg_bytes: bytes, key: str) -> Path:
        path = self._local_dir / f"{key}.jpg"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(jpeg_bytes)
        return path

    async def upload_receipt(self, image_bytes: bytes, user_id: str) -> ImageUploadResult:
        """
        Store a receipt image and return where it ended up.

        Only a failure of the local fallback yields success=False.
        """
        try:
            jpeg_bytes = prepare_receipt_jpeg(image_bytes, self._max_kb)
        except ImageProcessingError as e:
            logger.warning("receipt_not_reencoded", error=str(e))
            jpeg_bytes = image_bytes

        key = self.receipt_key(user_id)

        remote_error = None
        if self.remote_enabled:
            try:
                url = self._upload_remote(jpeg_bytes, key)
                logger.info("receipt_uploaded", key=key)
                return ImageUploadResult(success=True, url=url, key=key)
            except Exception as e:
                remote_error = str(e)
                logger.warning("receipt_upload_failed", key=key, error=remote_error)

        try:
            path = self._save_local(jpeg_bytes, key)
        except OSError as e:
            logger.error("receipt_local_save_failed", key=key, error=str(e))
            return ImageUploadResult(success=False, key=key, error=str(e))

        logger.info("receipt_saved_locally", key=key, path=str(path))
        return ImageUploadResult(
            success=True,
            url=str(path),
            key=key,
            is_local=True,
            error=remote_error,
        )

    async def delete_receipt(self, key: str) -> bool:
        """Remove a receipt from Cloudinary and from the local fallback folder."""
        deleted = False

        local_path = self._local_dir / f"{key}.jpg"
        if local_path.exists():
            local_path.unlink()
            deleted = True

        if self.remote_enabled:
            self._configure()
            try:
                result = cloudinary.uploader.destroy(f"{UPLOAD_FOLDER}/{key}")
                deleted = deleted or result.get("result") == "ok"
            except Exception as e:
                logger.warning("receipt_delete_failed", key=key, error=str(e))

        return deleted

    def thumbnail_url(self, key: str, width: int = 200) -> Optional[str]:
        """Resized delivery URL for a remotely stored receipt."""
        if not self.remote_enabled:
            return None
        self._configure()
        return CloudinaryImage(f"{UPLOAD_FOLDER}/{key}").build_url(
            transformation=[
                {"width": width, "crop": "limit"},
                {"quality": "auto", "fetch_format": "auto"},
            ]
        )
