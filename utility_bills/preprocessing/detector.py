"""Document detector capability and its process-wide runtime holder.

The preprocessor only depends on the :class:`DocumentDetector` protocol.
:class:`VisionRuntime` decides once, at process start, whether the OpenCV
contour detector is usable within a bounded initialization wait, and falls
back to :class:`PassthroughDocumentDetector` otherwise.
"""

import importlib
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Protocol

import numpy as np

from utility_bills.utils.config import PreprocessingConfig
from utility_bills.utils.logger import get_logger

from .enhance import threshold_fallback

logger = get_logger(__name__)

_CONTOUR_MODULE = "utility_bills.preprocessing.contour"


class DocumentDetector(Protocol):
    """Finds and rectifies the document in a photo and binarizes scans."""

    available: bool
    reason: str | None

    def detect_corners(self, image: np.ndarray) -> np.ndarray | None: ...

    def warp(self, image: np.ndarray, corners: np.ndarray) -> np.ndarray: ...

    def binarize(self, image: np.ndarray) -> np.ndarray: ...


class PassthroughDocumentDetector:
    """Detector used when OpenCV is unavailable.

    Never detects a document, leaves images unwarped and binarizes with a
    fixed Pillow threshold.

    Args:
        reason: Human-readable explanation recorded as the preprocessing note.
        threshold: Fixed binarization threshold.
    """

    available = False

    def __init__(
        self,
        reason: str = "document detection library is not available",
        threshold: int = 180,
    ) -> None:
        self.reason = reason
        self.threshold = threshold

    def detect_corners(self, image: np.ndarray) -> np.ndarray | None:
        return None

    def warp(self, image: np.ndarray, corners: np.ndarray) -> np.ndarray:
        return image

    def binarize(self, image: np.ndarray) -> np.ndarray:
        return threshold_fallback(image, self.threshold)


def _load_contour_detector(config: PreprocessingConfig) -> DocumentDetector:
    """Import the OpenCV detector and run it once on a blank frame."""
    module = importlib.import_module(_CONTOUR_MODULE)
    detector = module.ContourDocumentDetector(
        min_area_ratio=config.min_document_area_ratio,
        block_size=config.threshold_block_size,
        c=config.threshold_c,
    )
    detector.detect_corners(np.zeros((32, 32, 3), dtype=np.uint8))
    return detector


@dataclass
class VisionRuntime:
    """Process-wide holder of the selected document detector.

    Constructed once via :meth:`load` and injected into the pipeline. It is
    read-only after construction and needs no teardown.
    """

    detector: DocumentDetector
    load_error: str | None = None

    @property
    def ready(self) -> bool:
        """Whether the full contour detector is in use."""
        return self.detector.available

    @classmethod
    def load(cls, config: PreprocessingConfig) -> "VisionRuntime":
        """Select a detector, waiting at most ``detector_init_timeout`` seconds.

        Args:
            config: Preprocessing configuration.

        Returns:
            A runtime holding either the contour or the passthrough detector.
        """
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="vision-init")
        future = executor.submit(_load_contour_detector, config)
        try:
            detector = future.result(timeout=config.detector_init_timeout)
        except FutureTimeoutError:
            reason = (
                "document detector initialization timed out after "
                f"{config.detector_init_timeout:g}s"
            )
        except Exception as exc:
            reason = f"document detector unavailable: {exc}"
        else:
            logger.info("OpenCV document detector ready")
            return cls(detector=detector)
        finally:
            executor.shutdown(wait=False)

        logger.warning("Skipping document detection: %s", reason)
        return cls(
            detector=PassthroughDocumentDetector(reason, config.fallback_threshold),
            load_error=reason,
        )

    @classmethod
    def degraded(
        cls, reason: str, config: PreprocessingConfig | None = None
    ) -> "VisionRuntime":
        """Build a runtime that always uses the passthrough detector."""
        threshold = (config or PreprocessingConfig()).fallback_threshold
        return cls(
            detector=PassthroughDocumentDetector(reason, threshold), load_error=reason
        )
