"""
Receipt image preparation.

Receipt photos are re-encoded as JPEG and shrunk until they fit the
configured size budget. The same bytes are sent to the AI providers and
to remote image storage.
"""

from io import BytesIO

from PIL import Image, UnidentifiedImageError


class ImageProcessingError(Exception):
    """Raised when image bytes cannot be decoded."""
    pass


START_QUALITY = 70
MIN_QUALITY = 10
QUALITY_STEP = 10
START_WIDTH = 1024
MIN_WIDTH = 200
WIDTH_FACTOR = 0.8


def _encode(img: Image.Image, width: int, quality: int) -> bytes:
    if img.width > width:
        height = max(1, round(img.height * width / img.width))
        img = img.resize((width, height), Image.Resampling.LANCZOS)
    buffer = BytesIO()
    img.save(buffer, format="JPEG", quality=quality, optimize=True)
    return buffer.getvalue()


def prepare_receipt_jpeg(image_bytes: bytes, max_kb: int = 100) -> bytes:
    """
    Convert an image to JPEG no larger than max_kb.

    Quality is lowered first (70 down to 10); once at the minimum the
    width shrinks by 20% and quality resets. Below 200px wide the last
    attempt is returned even if it is still too large.

    Raises:
        ImageProcessingError: If the bytes are not a readable image
    """
    try:
        img = Image.open(BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ImageProcessingError(f"Unreadable image: {e}")

    if img.mode != "RGB":
        img = img.convert("RGB")

    limit = max_kb * 1024
    quality = START_QUALITY
    width = START_WIDTH

    while True:
        encoded = _encode(img, width, quality)
        if len(encoded) <= limit:
            return encoded

        if quality > MIN_QUALITY:
            quality = max(MIN_QUALITY, quality - QUALITY_STEP)
        else:
            width = int(width * WIDTH_FACTOR)
            quality = START_QUALITY

        if width < MIN_WIDTH:
            return encoded
