"""Receipt image services package."""

from moneytalk.services.image.cloudinary_service import (
    ImageServiceError,
    ReceiptImageService,
)
from moneytalk.services.image.processing import (
    ImageProcessingError,
    prepare_receipt_jpeg,
)

__all__ = [
    "ImageProcessingError",
    "ImageServiceError",
    "ReceiptImageService",
    "prepare_receipt_jpeg",
]
