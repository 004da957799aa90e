"""Tests for the geometric preprocessing modules."""

import io
import time

import numpy as np
import pytest
from PIL import Image

from utility_bills.preprocessing import detector as detector_module
from utility_bills.preprocessing.contour import (
    ContourDocumentDetector,
    binarize_for_ocr,
    find_document_corners,
    order_corners,
    target_size,
    warp_document,
)
from utility_bills.preprocessing.detector import (
    PassthroughDocumentDetector,
    VisionRuntime,
)
from utility_bills.preprocessing.enhance import (
    encode_png,
    enhance_for_template,
    load_oriented,
    threshold_fallback,
    working_copy,
)
from utility_bills.preprocessing.pipeline import (
    NOTE_CONTOUR_NOT_FOUND,
    GeometricPreprocessor,
)
from utility_bills.utils.config import PreprocessingConfig

from conftest import DOCUMENT_CORNERS, encode_image, make_document_photo


def _decode(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


class TestOrderCorners:
    """Tests for corner ordering."""

    def test_orders_shuffled_points(self) -> None:
        points = np.array([[630, 520], [150, 90], [120, 500], [660, 120]])
        ordered = order_corners(points)
        expected = np.array([[150, 90], [660, 120], [630, 520], [120, 500]])
        np.testing.assert_array_equal(ordered, expected)

    def test_axis_aligned_rectangle(self) -> None:
        points = np.array([[0, 100], [200, 0], [0, 0], [200, 100]])
        ordered = order_corners(points)
        np.testing.assert_array_equal(
            ordered, np.array([[0, 0], [200, 0], [200, 100], [0, 100]])
        )

    def test_output_dtype(self) -> None:
        ordered = order_corners([[0, 0], [10, 0], [10, 10], [0, 10]])
        assert ordered.dtype == np.float32
        assert ordered.shape == (4, 2)


class TestTargetSize:
    """Tests for the rectified output size."""

    def test_uses_longest_edges(self) -> None:
        corners = order_corners(np.array(DOCUMENT_CORNERS))
        width, height = target_size(corners)
        assert width == 511
        assert height == 411

    def test_rectangle(self) -> None:
        corners = np.array([[0, 0], [300, 0], [300, 200], [0, 200]], dtype=np.float32)
        assert target_size(corners) == (300, 200)


class TestFindDocumentCorners:
    """Tests for contour-based document detection."""

    def test_finds_skewed_sheet(self, document_array: np.ndarray) -> None:
        corners = find_document_corners(document_array)
        assert corners is not None
        ordered = order_corners(corners)
        expected = np.array(DOCUMENT_CORNERS, dtype=np.float32)
        assert np.abs(ordered - expected).max() < 15

    def test_blank_frame_has_no_document(self) -> None:
        image = np.full((400, 600, 3), 128, dtype=np.uint8)
        assert find_document_corners(image) is None

    def test_small_sheet_below_area_ratio(self) -> None:
        image = np.full((600, 800), 30, dtype=np.uint8)
        image[250:300, 350:420] = 240
        assert find_document_corners(image, min_area_ratio=0.1) is None

    def test_accepts_grayscale(self, document_array: np.ndarray) -> None:
        gray = np.asarray(Image.fromarray(document_array).convert("L"))
        assert find_document_corners(gray) is not None


class TestWarpDocument:
    """Tests for perspective correction."""

    def test_output_size(self, document_array: np.ndarray) -> None:
        warped = warp_document(document_array, np.array(DOCUMENT_CORNERS))
        assert warped.shape[:2] == (411, 511)

    def test_rectified_sheet_is_light(self, document_array: np.ndarray) -> None:
        warped = warp_document(document_array, np.array(DOCUMENT_CORNERS))
        # Mostly paper once the dark background is cropped away.
        assert warped.mean() > 180

    def test_degenerate_quad_raises(self, document_array: np.ndarray) -> None:
        points = np.array([[10, 10], [10, 10], [11, 10], [10, 11]])
        with pytest.raises(ValueError, match="Degenerate"):
            warp_document(document_array, points)


class TestBinarizeForOcr:
    """Tests for adaptive binarization."""

    def test_output_is_binary(self, document_array: np.ndarray) -> None:
        binary = binarize_for_ocr(document_array)
        assert binary.ndim == 2
        assert set(np.unique(binary)).issubset({0, 255})

    def test_preserves_shape(self, document_array: np.ndarray) -> None:
        binary = binarize_for_ocr(document_array)
        assert binary.shape == document_array.shape[:2]


class TestEnhance:
    """Tests for the Pillow-only image operations."""

    def test_load_oriented_applies_exif_rotation(self) -> None:
        image = Image.new("RGB", (300, 100), (200, 200, 200))
        exif = image.getexif()
        exif[0x0112] = 6
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", exif=exif.tobytes())

        loaded = load_oriented(buffer.getvalue())
        assert loaded.size == (100, 300)
        assert loaded.mode == "RGB"

    def test_load_oriented_converts_grayscale(self) -> None:
        data = encode_image(Image.new("L", (50, 40), 100))
        assert load_oriented(data).mode == "RGB"

    def test_working_copy_downscales_longest_side(self) -> None:
        image = Image.new("RGB", (2000, 1000))
        small, scale = working_copy(image, 1000)
        assert small.size == (1000, 500)
        assert scale == pytest.approx(0.5)

    def test_working_copy_keeps_small_images(self) -> None:
        image = Image.new("RGB", (640, 480))
        small, scale = working_copy(image, 1000)
        assert small.size == (640, 480)
        assert scale == 1.0
        assert small is not image

    def test_enhance_for_template_accepts_array(self, document_array: np.ndarray) -> None:
        enhanced = enhance_for_template(document_array)
        assert enhanced.size == (800, 600)
        assert enhanced.mode == "RGB"

    def test_threshold_fallback_is_binary(self, document_array: np.ndarray) -> None:
        binary = threshold_fallback(document_array, 180)
        assert binary.shape == (600, 800)
        assert set(np.unique(binary)).issubset({0, 255})

    def test_encode_png_roundtrips_size(self) -> None:
        array = np.zeros((30, 40), dtype=np.uint8)
        decoded = _decode(encode_png(array))
        assert decoded.format == "PNG"
        assert decoded.size == (40, 30)


class TestVisionRuntime:
    """Tests for detector selection at process start."""

    def test_load_uses_contour_detector(self, vision_runtime: VisionRuntime) -> None:
        assert vision_runtime.ready is True
        assert vision_runtime.load_error is None
        assert isinstance(vision_runtime.detector, ContourDocumentDetector)

    def test_load_falls_back_when_import_fails(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(
            detector_module,
            "_CONTOUR_MODULE",
            "utility_bills.preprocessing.missing_module",
        )
        runtime = VisionRuntime.load(PreprocessingConfig())
        assert runtime.ready is False
        assert isinstance(runtime.detector, PassthroughDocumentDetector)
        assert "unavailable" in runtime.load_error

    def test_load_falls_back_on_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        def slow_loader(config):
            time.sleep(0.5)
            return ContourDocumentDetector()

        monkeypatch.setattr(detector_module, "_load_contour_detector", slow_loader)
        runtime = VisionRuntime.load(PreprocessingConfig(detector_init_timeout=0.05))
        assert runtime.ready is False
        assert "timed out" in runtime.load_error

    def test_degraded(self) -> None:
        runtime = VisionRuntime.degraded("disabled for test")
        assert runtime.ready is False
        assert runtime.detector.reason == "disabled for test"


class TestPassthroughDocumentDetector:
    """Tests for the detector used without OpenCV."""

    def test_never_detects(self, document_array: np.ndarray) -> None:
        detector = PassthroughDocumentDetector()
        assert detector.available is False
        assert detector.detect_corners(document_array) is None

    def test_warp_is_identity(self, document_array: np.ndarray) -> None:
        detector = PassthroughDocumentDetector()
        assert detector.warp(document_array, np.zeros((4, 2))) is document_array

    def test_binarize_uses_fixed_threshold(self, document_array: np.ndarray) -> None:
        binary = PassthroughDocumentDetector(threshold=180).binarize(document_array)
        assert set(np.unique(binary)).issubset({0, 255})


class TestGeometricPreprocessor:
    """Tests for the full preprocessing step."""

    def test_detected_document_is_rectified(
        self, vision_runtime: VisionRuntime, document_photo_bytes: bytes
    ) -> None:
        result = GeometricPreprocessor(PreprocessingConfig(), vision_runtime).process(
            document_photo_bytes
        )
        assert result.doc_detected is True
        assert result.note is None

        scan = _decode(result.scan)
        assert abs(scan.width - 511) < 20
        assert abs(scan.height - 411) < 20

    def test_produces_three_png_tracks(
        self, vision_runtime: VisionRuntime, document_photo_bytes: bytes
    ) -> None:
        result = GeometricPreprocessor(PreprocessingConfig(), vision_runtime).process(
            document_photo_bytes
        )
        scan = _decode(result.scan)
        track_a = _decode(result.track_a)
        track_b = _decode(result.track_b)

        assert {scan.format, track_a.format, track_b.format} == {"PNG"}
        assert track_a.size == scan.size
        assert track_a.mode == "RGB"
        assert track_b.size == scan.size
        assert set(np.unique(np.asarray(track_b))).issubset({0, 255})

    def test_large_photo_detected_on_working_copy(
        self, vision_runtime: VisionRuntime
    ) -> None:
        photo = make_document_photo().resize((1600, 1200))
        result = GeometricPreprocessor(PreprocessingConfig(), vision_runtime).process(
            encode_image(photo)
        )
        assert result.doc_detected is True
        scan = _decode(result.scan)
        # Corners are scaled back, so the warp runs at full resolution.
        assert abs(scan.width - 1022) < 40
        assert abs(scan.height - 822) < 40

    def test_blank_photo_passes_through(
        self, vision_runtime: VisionRuntime, blank_photo_bytes: bytes
    ) -> None:
        result = GeometricPreprocessor(PreprocessingConfig(), vision_runtime).process(
            blank_photo_bytes
        )
        assert result.doc_detected is False
        assert result.note == NOTE_CONTOUR_NOT_FOUND
        assert _decode(result.scan).size == (600, 400)

    def test_degraded_runtime_records_reason(self, document_photo_bytes: bytes) -> None:
        runtime = VisionRuntime.degraded("document detector unavailable: no cv2")
        result = GeometricPreprocessor(PreprocessingConfig(), runtime).process(
            document_photo_bytes
        )
        assert result.doc_detected is False
        assert result.note == "document detector unavailable: no cv2"
        assert _decode(result.scan).size == (800, 600)
        assert set(np.unique(np.asarray(_decode(result.track_b)))).issubset({0, 255})

    def test_detection_error_becomes_note(
        self, vision_runtime: VisionRuntime, document_photo_bytes: bytes
    ) -> None:
        class BrokenDetector(ContourDocumentDetector):
            def detect_corners(self, image):
                raise RuntimeError("contour search exploded")

        runtime = VisionRuntime(detector=BrokenDetector())
        result = GeometricPreprocessor(PreprocessingConfig(), runtime).process(
            document_photo_bytes
        )
        assert result.doc_detected is False
        assert result.note == "document detection failed: contour search exploded"

    def test_binarize_error_uses_fixed_threshold(
        self, document_photo_bytes: bytes
    ) -> None:
        class NoBinarize(ContourDocumentDetector):
            def binarize(self, image):
                raise RuntimeError("threshold failed")

        runtime = VisionRuntime(detector=NoBinarize())
        result = GeometricPreprocessor(PreprocessingConfig(), runtime).process(
            document_photo_bytes
        )
        assert result.doc_detected is True
        track_b = np.asarray(_decode(result.track_b))
        assert set(np.unique(track_b)).issubset({0, 255})
