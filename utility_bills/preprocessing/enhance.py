"""Pillow-based image operations that do not depend on OpenCV.

Decoding, orientation, resizing, the template-OCR enhancement track and the
fallback binarization all live here so that preprocessing keeps working in
degraded mode.
"""

import io

import numpy as np
from PIL import Image, ImageEnhance, ImageFilter, ImageOps


def load_oriented(data: bytes) -> Image.Image:
    """Decode image bytes and apply the embedded EXIF orientation.

    Args:
        data: Encoded image bytes.

    Returns:
        Upright RGB image.
    """
    image = Image.open(io.BytesIO(data))
    image = ImageOps.exif_transpose(image)
    return image.convert("RGB")


def working_copy(image: Image.Image, max_dimension: int) -> tuple[Image.Image, float]:
    """Downscale an image so its longest side is at most ``max_dimension``.

    Returns:
        Tuple of (working_image, scale) where ``scale <= 1``.
    """
    longest = max(image.width, image.height)
    scale = max_dimension / longest if longest > max_dimension else 1.0
    if scale == 1.0:
        return image.copy(), scale
    size = (max(1, round(image.width * scale)), max(1, round(image.height * scale)))
    return image.resize(size, Image.Resampling.LANCZOS), scale


def enhance_for_template(
    image: Image.Image | np.ndarray, brightness: float = 1.03, saturation: float = 1.05
) -> Image.Image:
    """Brighten, saturate, lightly denoise and sharpen a color scan."""
    if isinstance(image, np.ndarray):
        image = Image.fromarray(image)
    result = ImageEnhance.Brightness(image).enhance(brightness)
    result = ImageEnhance.Color(result).enhance(saturation)
    result = result.filter(ImageFilter.MedianFilter(3))
    return result.filter(ImageFilter.SHARPEN)


def threshold_fallback(image: np.ndarray, threshold: int = 180) -> np.ndarray:
    """Grayscale, normalize and apply a fixed threshold without OpenCV.

    Args:
        image: RGB or grayscale image array.
        threshold: Pixels at or above this level become white.

    Returns:
        Binary grayscale image with pixel values 0 or 255.
    """
    gray = ImageOps.autocontrast(ImageOps.grayscale(Image.fromarray(image)))
    binary = gray.point(lambda value: 255 if value >= threshold else 0)
    return np.asarray(binary, dtype=np.uint8)


def encode_png(image: Image.Image | np.ndarray) -> bytes:
    """Encode an image or image array as PNG bytes."""
    if isinstance(image, np.ndarray):
        image = Image.fromarray(image)
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()
