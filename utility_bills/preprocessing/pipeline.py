"""Geometric preprocessing of photographed bills.

Auto-rotates the photo, searches a downscaled working copy for the document
quadrilateral, perspective-corrects the full-resolution image and produces
the scan plus two enhancement tracks tuned for template and general OCR.
"""

from dataclasses import dataclass

import numpy as np

from utility_bills.utils.config import PreprocessingConfig
from utility_bills.utils.logger import get_logger

from .detector import VisionRuntime
from .enhance import (
    encode_png,
    enhance_for_template,
    load_oriented,
    threshold_fallback,
    working_copy,
)

logger = get_logger(__name__)

NOTE_CONTOUR_NOT_FOUND = "document contour not found"


@dataclass
class PreprocessResult:
    """PNG-encoded image variants and the document detection outcome."""

    scan: bytes
    track_a: bytes
    track_b: bytes
    doc_detected: bool
    note: str | None = None


class GeometricPreprocessor:
    """Produces the scan, track A and track B images for one bill photo.

    Detection problems never raise: they leave ``doc_detected`` false and
    record a note, and the downstream validator caps confidence.

    Args:
        config: Preprocessing configuration.
        runtime: Vision runtime holding the selected document detector.
    """

    def __init__(self, config: PreprocessingConfig, runtime: VisionRuntime) -> None:
        self.config = config
        self.runtime = runtime

    def process(self, data: bytes) -> PreprocessResult:
        """Run preprocessing on raw image bytes.

        Args:
            data: Encoded bill photo as uploaded.

        Returns:
            The processed variants and detection outcome.
        """
        detector = self.runtime.detector
        image = load_oriented(data)
        full = np.asarray(image)
        scan = full
        doc_detected = False
        note: str | None = None

        if detector.available:
            small, scale = working_copy(image, self.config.max_working_dimension)
            try:
                corners = detector.detect_corners(np.asarray(small))
                if corners is None:
                    note = NOTE_CONTOUR_NOT_FOUND
                else:
                    scan = detector.warp(full, corners / scale)
                    doc_detected = True
            except Exception as exc:
                note = f"document detection failed: {exc}"
        else:
            note = detector.reason or self.runtime.load_error

        if note:
            logger.warning("Preprocessing without document rectification: %s", note)

        scan_png = encode_png(scan)
        track_a = encode_png(
            enhance_for_template(scan, self.config.brightness, self.config.saturation)
        )

        try:
            binary = detector.binarize(scan)
        except Exception as exc:
            logger.warning("Binarization failed, using fixed threshold: %s", exc)
            binary = threshold_fallback(scan, self.config.fallback_threshold)
        track_b = encode_png(binary)

        logger.info(
            "Preprocessing complete: %dx%d, document detected=%s",
            scan.shape[1],
            scan.shape[0],
            doc_detected,
        )
        return PreprocessResult(
            scan=scan_png,
            track_a=track_a,
            track_b=track_b,
            doc_detected=doc_detected,
            note=note,
        )
