"""
Scan session controller.

Holds everything a scan reads: the reference set, the selected censor
mode and the uploaded files. Images are processed one at a time in upload
order; a failure on one image is recorded on its result and the batch
carries on.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from PIL import Image

from facecensor.config import Settings
from facecensor.errors import (
    ModelLoadError, TargetAcquisitionError, ScanNotReadyError,
    ImageProcessingError
)
from facecensor.face_utils import (
    DetectedFace, FaceDetectorInterface, DlibFaceDetector, FaceMatcher, ReferenceSet,
    acquire_target, DEFAULT_THRESHOLD
)
from facecensor.image_processor import (
    CensorMode, ImageProcessor, PixelationParams, censor, open_image, to_png_bytes
)

logger = logging.getLogger(__name__)

TARGET_MATCHED = "TARGET MATCHED"
NO_TARGET = "NO TARGET"
IMAGE_ERROR = "ERROR"


class ScanStatus(str, Enum):
    LOADING = "loading"
    READY = "ready"
    FILES_LOADED = "files_loaded"
    SCANNING = "scanning"
    DONE_MATCHES = "done_matches"
    DONE_NO_MATCHES = "done_no_matches"
    ERROR_INIT = "error_init"
    ERROR_TARGET = "error_target"


@dataclass
class UploadedImage:
    name: str
    data: bytes


@dataclass
class ImageResult:
    """Outcome of scanning one uploaded image."""

    index: int
    filename: str
    found_target: bool = False
    faces_detected: int = 0
    targets_in_image: int = 0
    png: Optional[bytes] = None
    error: Optional[str] = None

    @property
    def errored(self) -> bool:
        return self.error is not None

    @property
    def status_text(self) -> str:
        if self.errored:
            return IMAGE_ERROR
        return TARGET_MATCHED if self.found_target else NO_TARGET

    @property
    def download_name(self) -> str:
        return f"censored_{self.filename}"


@dataclass
class BatchResult:
    results: List[ImageResult] = field(default_factory=list)

    @property
    def total_targets(self) -> int:
        """Images with at least one target; errored images never count."""
        return sum(1 for r in self.results if r.found_target and not r.errored)

    @property
    def summary(self) -> str:
        if self.total_targets > 0:
            return f"{self.total_targets} TARGET(S) CONFIRMED"
        return "NO TARGETS DETECTED"


class ScanSession:
    """
    In-memory state of one user session.

    The reference set is built once by ``initialize`` and never changes
    afterwards; the censor mode is read at the moment each face is censored.
    """

    def __init__(
        self,
        detector: FaceDetectorInterface,
        target_label: str = "TARGET",
        threshold: float = DEFAULT_THRESHOLD,
        censor_mode: CensorMode = CensorMode.PIXELATED,
        pixelation: PixelationParams = PixelationParams(),
    ):
        self.detector = detector
        self.target_label = target_label
        self.threshold = threshold
        self.censor_mode = CensorMode(censor_mode)
        self.processor = ImageProcessor(pixelation)

        self.reference_set: Optional[ReferenceSet] = None
        self.matcher: Optional[FaceMatcher] = None
        self.uploaded_files: List[UploadedImage] = []
        self.last_batch: Optional[BatchResult] = None

        self.status = ScanStatus.LOADING
        self.error_message: Optional[str] = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        detector: Optional[FaceDetectorInterface] = None,
    ) -> "ScanSession":
        return cls(
            detector=detector or DlibFaceDetector(model=settings.detector_model),
            target_label=settings.target_label,
            threshold=settings.match_threshold,
            censor_mode=settings.default_censor_mode,
            pixelation=settings.pixelation,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def target_acquired(self) -> bool:
        return self.matcher is not None

    @property
    def scan_enabled(self) -> bool:
        return (
            self.target_acquired
            and bool(self.uploaded_files)
            and self.status != ScanStatus.SCANNING
        )

    @property
    def status_message(self) -> str:
        if self.status == ScanStatus.LOADING:
            return "Loading face model..."
        if self.status == ScanStatus.READY:
            return "System ready. All target references loaded."
        if self.status == ScanStatus.FILES_LOADED:
            return f"{len(self.uploaded_files)} images loaded. Ready to scan."
        if self.status == ScanStatus.SCANNING:
            return "Scanning..."
        if self.status == ScanStatus.DONE_MATCHES:
            return f"Scan complete. {self.last_batch.total_targets} target(s) identified."
        if self.status == ScanStatus.DONE_NO_MATCHES:
            return "Scan complete. No targets detected."
        if self.status == ScanStatus.ERROR_INIT:
            return f"ERROR: System initialization failed. {self.error_message}"
        return f"ERROR: Target acquisition failed. {self.error_message}"

    def initialize(self, reference_images: Sequence[Tuple[str, bytes]]) -> bool:
        """Load the model and acquire the target. Returns True when scanning is possible."""
        self.status = ScanStatus.LOADING
        try:
            self.detector.load()
        except ModelLoadError as e:
            logger.error("Initialization failed: %s", e)
            self.status = ScanStatus.ERROR_INIT
            self.error_message = str(e)
            return False

        try:
            self.reference_set = acquire_target(self.detector, reference_images, self.target_label)
        except TargetAcquisitionError as e:
            logger.error("Could not acquire target data: %s", e)
            self.status = ScanStatus.ERROR_TARGET
            self.error_message = str(e)
            return False

        self.matcher = FaceMatcher(self.reference_set, self.threshold)
        self.status = ScanStatus.READY
        self.error_message = None
        return True

    def set_files(self, files: Sequence[UploadedImage]) -> None:
        """Replace the batch. Refused while a scan is running."""
        with self._lock:
            if self.status == ScanStatus.SCANNING:
                raise ScanNotReadyError("Scan already running")
            self.uploaded_files = list(files)
            self.last_batch = None
            if self.target_acquired:
                self.status = ScanStatus.FILES_LOADED if self.uploaded_files else ScanStatus.READY
        logger.info("%d images loaded", len(self.uploaded_files))

    def set_censor_mode(self, mode: CensorMode) -> None:
        self.censor_mode = CensorMode(mode)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def detect(self, upload: UploadedImage) -> Tuple[Image.Image, List[DetectedFace]]:
        """Decode an upload and detect its faces."""
        try:
            source = open_image(upload.data)
            faces = self.detector.detect_faces(upload.data)
        except Exception as e:
            raise ImageProcessingError(upload.name, str(e) or type(e).__name__) from e
        return source, faces

    def process_image(self, index: int, upload: UploadedImage) -> ImageResult:
        """Detect, classify and censor one image."""
        if not self.target_acquired:
            raise ScanNotReadyError("Target has not been acquired")

        logger.info("Analyzing: %s", upload.name)
        result = ImageResult(index=index, filename=upload.name)

        try:
            source, faces = self.detect(upload)
        except ImageProcessingError as e:
            logger.exception("Error processing image %s", upload.name)
            result.error = e.reason
            return result

        result.faces_detected = len(faces)
        targets = [
            face.box
            for face, match in self.matcher.match_faces(faces)
            if match.label == self.target_label
        ]
        result.targets_in_image = len(targets)
        result.found_target = bool(targets)

        surface = source.copy()
        for box in targets:
            censor(surface, source, box, self.censor_mode, self.processor.params)
        result.png = to_png_bytes(surface)
        return result

    def scan(self) -> BatchResult:
        """Scan every uploaded image strictly in upload order."""
        with self._lock:
            if not self.scan_enabled:
                if not self.target_acquired:
                    raise ScanNotReadyError(self.status_message)
                raise ScanNotReadyError("No images loaded" if not self.uploaded_files else "Scan already running")
            self.status = ScanStatus.SCANNING
            files = list(self.uploaded_files)

        logger.info("Initiating batch scan of %d images", len(files))
        batch = BatchResult()
        try:
            for index, upload in enumerate(files):
                batch.results.append(self.process_image(index, upload))
        finally:
            with self._lock:
                self.last_batch = batch
                self.status = (
                    ScanStatus.DONE_MATCHES if batch.total_targets > 0 else ScanStatus.DONE_NO_MATCHES
                )

        logger.info("Scan complete: %s", batch.summary)
        return batch

    def result(self, index: int) -> Optional[ImageResult]:
        if self.last_batch is None or not 0 <= index < len(self.last_batch.results):
            return None
        return self.last_batch.results[index]
