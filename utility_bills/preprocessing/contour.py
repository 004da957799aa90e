"""OpenCV document detection, perspective correction and binarization.

This module is imported lazily by :class:`VisionRuntime` so that a missing
or slow-loading OpenCV build degrades preprocessing instead of failing it.
All images are RGB (or grayscale) ``uint8`` numpy arrays.
"""

import cv2
import numpy as np

from utility_bills.utils.logger import get_logger

logger = get_logger(__name__)


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
    return image


def find_document_corners(
    image: np.ndarray, min_area_ratio: float = 0.1
) -> np.ndarray | None:
    """Find the largest four-point contour that could be the document edge.

    Edges are found with Canny on a blurred grayscale copy and dilated to
    close small gaps before contours are extracted and approximated.

    Args:
        image: Working-size input image (RGB or grayscale).
        min_area_ratio: Minimum contour area as a fraction of the frame.

    Returns:
        A ``(4, 2)`` float32 array of corner points, or ``None`` if no
        quadrilateral covers enough of the frame.
    """
    gray = _to_gray(image)
    blurred = cv2.GaussianBlur(gray, (5, 5), 0)
    edged = cv2.Canny(blurred, 75, 200)
    kernel = np.ones((3, 3), dtype=np.uint8)
    edged = cv2.dilate(edged, kernel, iterations=2)

    contours, _ = cv2.findContours(edged, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)

    min_area = image.shape[0] * image.shape[1] * min_area_ratio
    best: np.ndarray | None = None
    best_area = 0.0

    for contour in contours:
        area = cv2.contourArea(contour)
        if area < min_area:
            continue
        perimeter = cv2.arcLength(contour, True)
        approx = cv2.approxPolyDP(contour, 0.02 * perimeter, True)
        if len(approx) == 4 and area > best_area:
            best = approx.reshape(4, 2).astype(np.float32)
            best_area = area

    if best is None:
        logger.debug("No document quadrilateral among %d contours", len(contours))
    else:
        logger.debug("Document quadrilateral found with area %.0f", best_area)
    return best


def order_corners(points: np.ndarray) -> np.ndarray:
    """Order four points as top-left, top-right, bottom-right, bottom-left.

    The top-left corner has the smallest ``x + y`` and the bottom-right the
    largest; the top-right has the smallest ``y - x`` and the bottom-left
    the largest.
    """
    pts = np.asarray(points, dtype=np.float32).reshape(4, 2)
    sums = pts.sum(axis=1)
    diffs = pts[:, 1] - pts[:, 0]
    return np.array(
        [
            pts[np.argmin(sums)],
            pts[np.argmin(diffs)],
            pts[np.argmax(sums)],
            pts[np.argmax(diffs)],
        ],
        dtype=np.float32,
    )


def target_size(corners: np.ndarray) -> tuple[int, int]:
    """Compute the rectified (width, height) from ordered corner distances."""
    tl, tr, br, bl = corners
    width = max(
        round(float(np.linalg.norm(br - bl))), round(float(np.linalg.norm(tr - tl)))
    )
    height = max(
        round(float(np.linalg.norm(tr - br))), round(float(np.linalg.norm(tl - bl)))
    )
    return width, height


def warp_document(image: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Perspective-warp the document quadrilateral into an upright rectangle.

    Args:
        image: Full-resolution image.
        points: Four corner points in full-resolution coordinates, any order.

    Returns:
        The rectified document image.

    Raises:
        ValueError: If the corners collapse to a degenerate rectangle.
    """
    corners = order_corners(points)
    width, height = target_size(corners)
    if width < 2 or height < 2:
        raise ValueError(f"Degenerate document quadrilateral ({width}x{height})")

    destination = np.array(
        [[0, 0], [width - 1, 0], [width - 1, height - 1], [0, height - 1]],
        dtype=np.float32,
    )
    transform = cv2.getPerspectiveTransform(corners, destination)
    warped = cv2.warpPerspective(image, transform, (width, height))
    logger.info("Applied perspective correction to %dx%d", width, height)
    return warped


def binarize_for_ocr(
    image: np.ndarray, block_size: int = 35, c: int = 10
) -> np.ndarray:
    """Denoise with a bilateral filter and apply adaptive Gaussian thresholding.

    Args:
        image: Input image (RGB or grayscale).
        block_size: Size of the pixel neighborhood for threshold calculation.
        c: Constant subtracted from the weighted mean.

    Returns:
        Binary image with pixel values 0 or 255.
    """
    gray = _to_gray(image)
    denoised = cv2.bilateralFilter(gray, 9, 75, 75)
    return cv2.adaptiveThreshold(
        denoised,
        255,
        cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
        cv2.THRESH_BINARY,
        block_size,
        c,
    )


class ContourDocumentDetector:
    """Document detector backed by OpenCV contour search.

    Args:
        min_area_ratio: Minimum fraction of the frame a document must cover.
        block_size: Adaptive threshold neighborhood for binarization.
        c: Adaptive threshold constant for binarization.
    """

    available = True
    reason: str | None = None

    def __init__(
        self, min_area_ratio: float = 0.1, block_size: int = 35, c: int = 10
    ) -> None:
        self.min_area_ratio = min_area_ratio
        self.block_size = block_size
        self.c = c

    def detect_corners(self, image: np.ndarray) -> np.ndarray | None:
        return find_document_corners(image, self.min_area_ratio)

    def warp(self, image: np.ndarray, corners: np.ndarray) -> np.ndarray:
        return warp_document(image, corners)

    def binarize(self, image: np.ndarray) -> np.ndarray:
        return binarize_for_ocr(image, self.block_size, self.c)
