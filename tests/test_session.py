"""Tests for the scan session controller."""

import io

import pytest
import numpy as np
from PIL import Image

from facecensor.config import Settings
from facecensor import session as session_module
from facecensor.errors import ImageProcessingError, ScanNotReadyError
from facecensor.image_processor import CensorMode
from facecensor.session import (
    ScanSession, ScanStatus, UploadedImage, TARGET_MATCHED, NO_TARGET, IMAGE_ERROR
)

from conftest import (
    FakeDetector, make_image, EMPTY_COLOR, TARGET_COLOR, STRANGER_COLOR, NEAR_EMBEDDING
)


def pixels(png: bytes) -> np.ndarray:
    return np.array(Image.open(io.BytesIO(png)).convert("RGB"))


class TestInitialize:

    def test_ready_after_target_acquired(self, session):
        assert session.status == ScanStatus.READY
        assert session.target_acquired
        assert len(session.reference_set) == 1
        # No files yet
        assert not session.scan_enabled

    def test_model_load_failure(self, reference_images):
        s = ScanSession(FakeDetector(fail_load=True))

        assert s.initialize(reference_images) is False
        assert s.status == ScanStatus.ERROR_INIT
        assert "initialization failed" in s.status_message

    def test_target_acquisition_failure_disables_scan(self, detector):
        s = ScanSession(detector)

        assert s.initialize([("blank.png", make_image(EMPTY_COLOR))]) is False
        assert s.status == ScanStatus.ERROR_TARGET
        assert "Target acquisition failed" in s.status_message

        s.set_files([UploadedImage("a.png", make_image(TARGET_COLOR))])
        assert not s.scan_enabled
        with pytest.raises(ScanNotReadyError, match="Target acquisition failed"):
            s.scan()

    def test_unreadable_reference_disables_scan(self, reference_images):
        class BrokenDetector(FakeDetector):
            def detect_faces(self, image_bytes):
                raise RuntimeError("Unsupported image type")

        s = ScanSession(BrokenDetector())

        assert s.initialize(reference_images) is False
        assert s.status == ScanStatus.ERROR_TARGET
        assert not s.target_acquired

    def test_from_settings(self, detector):
        settings = Settings(match_threshold=0.4, default_censor_mode="black", block_ratio=0.2)
        s = ScanSession.from_settings(settings, detector=detector)

        assert s.threshold == 0.4
        assert s.censor_mode == CensorMode.BLACK
        assert s.processor.params.block_ratio == 0.2


class TestScan:

    def test_only_second_image_matches(self, session, batch):
        session.set_files(batch)
        assert session.scan_enabled

        result = session.scan()

        assert result.total_targets == 1
        assert [r.filename for r in result.results] == ["one.png", "two.png", "three.png"]
        assert [r.status_text for r in result.results] == [NO_TARGET, TARGET_MATCHED, NO_TARGET]
        assert session.status == ScanStatus.DONE_MATCHES
        assert "1 target(s)" in session.status_message

    def test_matched_face_is_censored(self, session, batch):
        session.set_files(batch)
        result = session.scan()

        matched = pixels(result.results[1].png)
        assert (matched[50:150, 50:150] == 0).all()
        assert tuple(matched[0, 0]) == TARGET_COLOR

        # Stranger face stays visible
        stranger = pixels(result.results[0].png)
        assert (stranger == STRANGER_COLOR).all()

    def test_no_faces_is_no_target(self, session):
        session.set_files([UploadedImage("empty.png", make_image(EMPTY_COLOR))])
        result = session.scan()

        assert result.total_targets == 0
        assert result.results[0].faces_detected == 0
        assert result.results[0].status_text == NO_TARGET
        assert session.status == ScanStatus.DONE_NO_MATCHES
        assert result.summary == "NO TARGETS DETECTED"

    def test_corrupt_image_does_not_stop_batch(self, session):
        session.set_files([
            UploadedImage("broken.jpg", b"\x00\x01garbage"),
            UploadedImage("two.png", make_image(TARGET_COLOR)),
        ])
        result = session.scan()

        broken, good = result.results
        assert broken.errored
        assert broken.png is None
        assert broken.status_text == IMAGE_ERROR
        assert good.found_target
        assert result.total_targets == 1

    def test_detector_error_excluded_from_count(self, session):
        class ExplodingDetector(FakeDetector):
            def detect_faces(self, image_bytes):
                raise RuntimeError("detector crashed")

        session.detector = ExplodingDetector()
        session.set_files([UploadedImage("two.png", make_image(TARGET_COLOR))])
        result = session.scan()

        assert result.results[0].error == "detector crashed"
        assert result.total_targets == 0

    def test_mode_read_at_scan_time(self, session):
        session.set_files([UploadedImage("two.png", make_image(TARGET_COLOR))])
        session.set_censor_mode(CensorMode.PIXELATED)

        result = session.scan()

        # Flat source pixelates to itself, so nothing turns black
        assert (pixels(result.results[0].png) == TARGET_COLOR).all()

    def test_threshold_controls_match(self, session):
        session.matcher.threshold = 0.2
        session.set_files([UploadedImage("two.png", make_image(TARGET_COLOR))])
        assert session.scan().total_targets == 0

    def test_scan_without_files(self, session):
        with pytest.raises(ScanNotReadyError, match="No images loaded"):
            session.scan()

    def test_set_files_clears_previous_results(self, session, batch):
        session.set_files(batch)
        session.scan()
        assert session.result(1) is not None

        session.set_files(batch[:1])
        assert session.result(1) is None
        assert session.status == ScanStatus.FILES_LOADED

    def test_result_lookup(self, session, batch):
        session.set_files(batch)
        session.scan()

        assert session.result(1).download_name == "censored_two.png"
        assert session.result(3) is None
        assert session.result(-1) is None

    def test_detect_wraps_decode_failure(self, session):
        with pytest.raises(ImageProcessingError) as excinfo:
            session.detect(UploadedImage("bad.jpg", b"garbage"))

        assert excinfo.value.filename == "bad.jpg"
        assert "bad.jpg" in str(excinfo.value)

    def test_mode_read_for_each_face(self, session, monkeypatch):
        two_faces = (255, 255, 0)
        session.detector.faces_by_color[two_faces] = [
            ((10, 10, 50, 50), NEAR_EMBEDDING),
            ((120, 120, 50, 50), NEAR_EMBEDDING),
        ]
        real_censor = session_module.censor

        def censor_then_switch(*args):
            real_censor(*args)
            session.censor_mode = CensorMode.PIXELATED

        monkeypatch.setattr(session_module, "censor", censor_then_switch)
        session.set_files([UploadedImage("pair.png", make_image(two_faces))])

        result = session.scan().results[0]

        assert result.targets_in_image == 2
        out = pixels(result.png)
        assert (out[10:60, 10:60] == 0).all()
        assert (out[120:170, 120:170] == two_faces).all()


class TestConcurrentUpdates:

    def test_set_files_refused_while_scanning(self, session, batch):
        refused = []

        class ReentrantDetector(FakeDetector):
            def detect_faces(self, image_bytes):
                try:
                    session.set_files([UploadedImage("late.png", make_image(EMPTY_COLOR))])
                except ScanNotReadyError as e:
                    refused.append(e)
                return super().detect_faces(image_bytes)

        session.detector = ReentrantDetector(session.detector.faces_by_color)
        session.set_files(batch)

        result = session.scan()

        assert len(refused) == 3
        assert [u.name for u in session.uploaded_files] == ["one.png", "two.png", "three.png"]
        assert session.result(0).filename == "one.png"
        assert result.total_targets == 1
        assert session.status == ScanStatus.DONE_MATCHES

    def test_set_files_allowed_after_scan(self, session, batch):
        session.set_files(batch)
        session.scan()

        session.set_files(batch[1:])

        assert session.status == ScanStatus.FILES_LOADED
        assert len(session.uploaded_files) == 2
