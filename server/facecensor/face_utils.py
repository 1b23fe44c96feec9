"""
Face Detection & Matching Utilities (dlib Version)

Uses dlib via the face_recognition library for detection and
128-dimensional embeddings. This module owns the only matching logic of
the tool: nearest-neighbour Euclidean distance against a reference set,
accepted below a fixed threshold.

Encoding: 128-dimensional face embeddings (dlib ResNet)
"""

import logging
import importlib
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from pydantic import BaseModel, Field, ConfigDict

from facecensor.errors import ModelLoadError, TargetAcquisitionError
from facecensor.image_processor import open_image

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "unknown"
DEFAULT_THRESHOLD = 0.6  # dlib standard


class FaceBox(BaseModel):
    """Axis-aligned bounding box in source image pixels."""

    x: float = Field(..., description="Top-left X coordinate", ge=0)
    y: float = Field(..., description="Top-left Y coordinate", ge=0)
    width: float = Field(..., description="Bounding box width", ge=0)
    height: float = Field(..., description="Bounding box height", ge=0)


class DetectedFace(BaseModel):
    """
    Detected face with its 128-dimensional dlib encoding.

    Lives only while a single image is processed.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    x: float = Field(..., description="Top-left X coordinate", ge=0)
    y: float = Field(..., description="Top-left Y coordinate", ge=0)
    width: float = Field(..., description="Bounding box width", ge=0)
    height: float = Field(..., description="Bounding box height", ge=0)
    encoding: np.ndarray = Field(..., description="Face encoding vector")

    @property
    def box(self) -> FaceBox:
        return FaceBox(x=self.x, y=self.y, width=self.width, height=self.height)

    @property
    def area(self) -> float:
        return self.width * self.height

    def to_dict(self) -> dict:
        """Convert to dictionary (excluding encoding for JSON safety)."""
        return self.box.model_dump()


class MatchResult(BaseModel):
    """Best match of one detected face against the reference set."""

    label: str
    distance: float = Field(..., description="Distance score (lower = more similar)")

    @property
    def is_match(self) -> bool:
        return self.label != UNKNOWN_LABEL

    def __str__(self) -> str:
        return f"{self.label} ({self.distance:.2f})"


class ReferenceSet:
    """
    Ordered, immutable sequence of (label, embedding) pairs.

    Several embeddings may share a label: together they describe one
    subject under different pose and lighting.
    """

    def __init__(self, entries: Iterable[Tuple[str, np.ndarray]]):
        entries = [(str(label), np.asarray(vector, dtype=np.float64)) for label, vector in entries]
        self._labels: Tuple[str, ...] = tuple(label for label, _ in entries)
        if entries:
            matrix = np.stack([vector for _, vector in entries])
        else:
            matrix = np.empty((0, 0), dtype=np.float64)
        matrix.setflags(write=False)
        self._matrix = matrix

    @classmethod
    def from_descriptors(cls, label: str, descriptors: Sequence[np.ndarray]) -> "ReferenceSet":
        return cls((label, descriptor) for descriptor in descriptors)

    @property
    def labels(self) -> Tuple[str, ...]:
        return self._labels

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix

    def __len__(self) -> int:
        return len(self._labels)

    def __iter__(self) -> Iterator[Tuple[str, np.ndarray]]:
        return iter(zip(self._labels, self._matrix))

    def __repr__(self) -> str:
        return f"ReferenceSet(size={len(self)}, labels={sorted(set(self._labels))})"


def classify(
    embedding: np.ndarray,
    reference_set: ReferenceSet,
    threshold: float = DEFAULT_THRESHOLD,
) -> MatchResult:
    """
    Classify a face embedding against the reference set.

    Formula: d = √Σ(a_i - b_i)² against every reference; the minimum wins
    and is accepted only when strictly below ``threshold``.
    """
    if len(reference_set) == 0:
        raise TargetAcquisitionError("Reference set is empty")

    vector = np.asarray(embedding, dtype=np.float64)
    distances = np.linalg.norm(reference_set.matrix - vector, axis=1)
    best_idx = int(np.argmin(distances))
    best_distance = float(distances[best_idx])

    if best_distance < threshold:
        return MatchResult(label=reference_set.labels[best_idx], distance=best_distance)
    return MatchResult(label=UNKNOWN_LABEL, distance=best_distance)


class FaceMatcher:
    """Reference set bound to a threshold."""

    def __init__(self, reference_set: ReferenceSet, threshold: float = DEFAULT_THRESHOLD):
        if len(reference_set) == 0:
            raise TargetAcquisitionError("Reference set is empty")
        self.reference_set = reference_set
        self.threshold = threshold

    def find_best_match(self, embedding: np.ndarray) -> MatchResult:
        return classify(embedding, self.reference_set, self.threshold)

    def match_faces(self, faces: Sequence[DetectedFace]) -> List[Tuple[DetectedFace, MatchResult]]:
        return [(face, self.find_best_match(face.encoding)) for face in faces]


# ============================================================================
# Face Detector Interface
# ============================================================================

class FaceDetectorInterface:
    """Interface that detection implementations must follow."""

    def load(self) -> None:
        """Bootstrap the model. Must complete before any detection call."""
        raise NotImplementedError

    def detect_faces(self, image_bytes: bytes) -> List[DetectedFace]:
        raise NotImplementedError

    def detect_single_face(self, image_bytes: bytes) -> Optional[DetectedFace]:
        faces = self.detect_faces(image_bytes)
        if not faces:
            return None
        # If multiple faces, the largest one is the subject
        return max(faces, key=lambda face: face.area)


def load_rgb_array(image_bytes: bytes) -> np.ndarray:
    """Decode image bytes into an RGB uint8 array."""
    return np.array(open_image(image_bytes))


class DlibFaceDetector(FaceDetectorInterface):
    """
    Face detector using dlib via face_recognition library.

    Args:
        model: "hog" (faster, CPU) or "cnn" (more accurate, needs GPU)
    """

    def __init__(self, model: str = "hog"):
        self.model = model
        self._fr = None

    def load(self) -> None:
        try:
            self._fr = importlib.import_module("face_recognition")
        # face_recognition calls quit() when its model files are missing
        except (Exception, SystemExit) as e:
            raise ModelLoadError(f"face_recognition could not be loaded: {e}") from e
        logger.info("face_recognition (dlib) loaded, detector model=%s", self.model)

    def detect_faces(self, image_bytes: bytes) -> List[DetectedFace]:
        """Detect all faces and generate 128-dim encodings."""
        if self._fr is None:
            raise ModelLoadError("Face model has not been loaded")

        image = load_rgb_array(image_bytes)

        # Returns list of (top, right, bottom, left) tuples
        face_locations = self._fr.face_locations(image, model=self.model)
        face_encodings = self._fr.face_encodings(image, face_locations)

        return [
            DetectedFace(
                x=left,
                y=top,
                width=right - left,
                height=bottom - top,
                encoding=encoding,
            )
            for (top, right, bottom, left), encoding in zip(face_locations, face_encodings)
        ]


# ============================================================================
# Target acquisition
# ============================================================================

def acquire_target(
    detector: FaceDetectorInterface,
    images: Sequence[Tuple[str, bytes]],
    label: str = "TARGET",
) -> ReferenceSet:
    """
    Build the reference set from (name, image_bytes) reference images.

    A reference without a detectable face is skipped with a warning; if
    none of them yields a face the target cannot be acquired.
    """
    descriptors = []

    for name, image_bytes in images:
        logger.info("Processing reference: %s", name)
        try:
            face = detector.detect_single_face(image_bytes)
        except Exception as e:
            logger.warning("Could not read reference image %s: %s", name, e, exc_info=True)
            continue

        if face is None:
            logger.warning("No face detected in reference image %s", name)
            continue
        descriptors.append(face.encoding)

    if not descriptors:
        raise TargetAcquisitionError(
            "No faces were detected in any of the reference images."
        )

    logger.info("Loaded %d reference encodings for %s", len(descriptors), label)
    return ReferenceSet.from_descriptors(label, descriptors)


REFERENCE_EXTENSIONS = (".heic", ".jpg", ".jpeg", ".png")


def load_reference_images(
    reference_dir: Path,
    names: Sequence[str] = (),
) -> List[Tuple[str, bytes]]:
    """
    Read reference images from a directory.

    Expected structure:
        reference_faces/
            target.jpg
            target1.jpg
            target2.heic

    ``names`` selects files (in that order); empty means every supported
    image in the directory, sorted by name.
    """
    reference_dir = Path(reference_dir)
    if not reference_dir.exists():
        logger.warning("%s does not exist. No reference faces loaded.", reference_dir)
        return []

    if names:
        paths = [reference_dir / name for name in names]
    else:
        paths = sorted(
            path for path in reference_dir.iterdir()
            if path.suffix.lower() in REFERENCE_EXTENSIONS
        )

    images = []
    for path in paths:
        try:
            images.append((path.name, path.read_bytes()))
        except OSError as e:
            logger.warning("Error loading %s: %s", path.name, e)
    return images
