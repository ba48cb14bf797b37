"""Image loading and validation.

Decodes every supported image source into an RGBA NumPy array and checks
its dimensions before any pixel work starts.
"""

import io
import logging
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, Field

from guitar_score_ocr.errors import (
    ErrorKind,
    ImageTooSmallError,
    InvalidImageError,
    describe_error,
)
from guitar_score_ocr.models.pipeline_models import LoadedImage, RecognitionWarning

logger = logging.getLogger(__name__)

MIN_IMAGE_SIDE = 50
LARGE_IMAGE_SIDE = 3000


class EncodedImage(BaseModel):
    """Encoded image bytes with their declared MIME type.

    Attributes:
        data: PNG, JPEG or GIF file contents.
        mime: Declared MIME type such as ``"image/png"``.
    """

    data: bytes = Field(..., description="Encoded image bytes")
    mime: str | None = Field(None, description="Declared MIME type")


class RawImage(BaseModel):
    """Already-decoded RGBA bitmap.

    Attributes:
        width: Bitmap width in pixels.
        height: Bitmap height in pixels.
        pixels: Row-major RGBA bytes, ``width * height * 4`` long.
    """

    width: int = Field(..., ge=1)
    height: int = Field(..., ge=1)
    pixels: bytes = Field(..., description="Row-major RGBA bytes")


ImageSource = (
    EncodedImage | RawImage | bytes | bytearray | np.ndarray | Image.Image | str | Path
)


def _decode_bytes(data: bytes) -> np.ndarray:
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return np.asarray(img.convert("RGBA")).copy()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise InvalidImageError(f"Cannot decode image: {str(e)}") from e


def _array_to_rgba(array: np.ndarray) -> np.ndarray:
    """Normalize a greyscale, RGB or RGBA array to RGBA uint8."""
    if array.size == 0:
        raise InvalidImageError("Image array is empty")
    if array.dtype != np.uint8:
        if array.dtype == bool:
            array = array.astype(np.uint8) * 255
        else:
            array = np.clip(array, 0, 255).astype(np.uint8)

    if array.ndim == 2:
        return np.dstack([array, array, array, np.full_like(array, 255)])
    if array.ndim == 3 and array.shape[2] == 3:
        alpha = np.full(array.shape[:2], 255, dtype=np.uint8)
        return np.dstack([array, alpha])
    if array.ndim == 3 and array.shape[2] == 4:
        return array.copy()
    raise InvalidImageError(f"Unsupported image array shape {array.shape}")


def decode_image(source: ImageSource) -> np.ndarray:
    """Decode any supported image source into an RGBA array.

    Args:
        source: Encoded bytes, a decoded bitmap, a NumPy array, a PIL image
            or a file path.

    Returns:
        H x W x 4 uint8 array.

    Raises:
        InvalidImageError: If the source cannot be decoded.
    """
    if isinstance(source, EncodedImage):
        if source.mime and not source.mime.lower().startswith("image/"):
            raise InvalidImageError(f"Unsupported MIME type {source.mime!r}")
        return _decode_bytes(source.data)
    if isinstance(source, RawImage):
        expected = source.width * source.height * 4
        if len(source.pixels) != expected:
            raise InvalidImageError(
                f"Bitmap has {len(source.pixels)} bytes, expected {expected}"
            )
        flat = np.frombuffer(source.pixels, dtype=np.uint8)
        return flat.reshape(source.height, source.width, 4).copy()
    if isinstance(source, (bytes, bytearray, memoryview)):
        return _decode_bytes(bytes(source))
    if isinstance(source, np.ndarray):
        return _array_to_rgba(source)
    if isinstance(source, Image.Image):
        return np.asarray(source.convert("RGBA")).copy()
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.is_file():
            raise InvalidImageError(f"Image file not found: {path}")
        return _decode_bytes(path.read_bytes())
    raise InvalidImageError(f"Unsupported image source {type(source).__name__}")


def load_image(source: ImageSource) -> LoadedImage:
    """Decode and validate an input image.

    Args:
        source: Any supported image source.

    Returns:
        LoadedImage holding the RGBA pixels and any size warning.

    Raises:
        InvalidImageError: If the source cannot be decoded.
        ImageTooSmallError: If the smaller side is under 50 pixels.
    """
    pixels = decode_image(source)
    height, width = pixels.shape[:2]
    logger.debug(f"Decoded image {width}x{height}")

    if min(width, height) < MIN_IMAGE_SIDE:
        raise ImageTooSmallError(
            f"Image is {width}x{height}, needs at least {MIN_IMAGE_SIDE}px per side",
            details={"width": width, "height": height},
        )

    warnings = []
    if max(width, height) > LARGE_IMAGE_SIDE:
        logger.warning(f"Large image {width}x{height} will be downscaled")
        warnings.append(
            RecognitionWarning(
                kind=ErrorKind.IMAGE_TOO_LARGE,
                message=describe_error(ErrorKind.IMAGE_TOO_LARGE)[0],
            )
        )

    return LoadedImage(pixels=pixels, warnings=warnings)
