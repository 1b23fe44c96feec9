"""Pytest configuration and fixtures."""

import io

import pytest
import numpy as np
from PIL import Image

from facecensor.errors import ModelLoadError
from facecensor.face_utils import DetectedFace, FaceDetectorInterface
from facecensor.image_processor import CensorMode, open_image
from facecensor.session import ScanSession, UploadedImage

# Solid background colours tell the fake detector which photo it is looking at
REFERENCE_COLOR = (255, 0, 0)
TARGET_COLOR = (0, 255, 0)
STRANGER_COLOR = (0, 0, 255)
EMPTY_COLOR = (128, 128, 128)

FACE_BOX = (50, 50, 100, 100)


def embedding(offset: float = 0.0) -> np.ndarray:
    vector = np.zeros(128)
    vector[0] = offset
    return vector


TARGET_EMBEDDING = embedding(0.0)
NEAR_EMBEDDING = embedding(0.3)
FAR_EMBEDDING = embedding(1.0)


def make_image(color=EMPTY_COLOR, size=(200, 200), format="PNG") -> bytes:
    img = Image.new("RGB", size, color=color)
    buffer = io.BytesIO()
    img.save(buffer, format=format)
    return buffer.getvalue()


class FakeDetector(FaceDetectorInterface):
    """Looks faces up by the colour of the top-left pixel."""

    def __init__(self, faces_by_color=None, fail_load=False):
        self.faces_by_color = faces_by_color or {}
        self.fail_load = fail_load
        self.loaded = False

    def load(self):
        if self.fail_load:
            raise ModelLoadError("model files missing")
        self.loaded = True

    def detect_faces(self, image_bytes):
        color = open_image(image_bytes).getpixel((0, 0))
        return [
            DetectedFace(x=x, y=y, width=w, height=h, encoding=encoding)
            for (x, y, w, h), encoding in self.faces_by_color.get(color, [])
        ]


@pytest.fixture
def detector():
    return FakeDetector({
        REFERENCE_COLOR: [(FACE_BOX, TARGET_EMBEDDING)],
        TARGET_COLOR: [(FACE_BOX, NEAR_EMBEDDING)],
        STRANGER_COLOR: [(FACE_BOX, FAR_EMBEDDING)],
    })


@pytest.fixture
def reference_images():
    return [("target.png", make_image(REFERENCE_COLOR))]


@pytest.fixture
def session(detector, reference_images):
    """Session with the target acquired."""
    s = ScanSession(detector, censor_mode=CensorMode.BLACK)
    assert s.initialize(reference_images)
    return s


@pytest.fixture
def batch():
    """Three photos, only the second one shows the target."""
    return [
        UploadedImage("one.png", make_image(STRANGER_COLOR)),
        UploadedImage("two.png", make_image(TARGET_COLOR)),
        UploadedImage("three.png", make_image(EMPTY_COLOR)),
    ]
