"""
Target Face Censor
==================

Finds one person in a batch of photos and censors their face.

Uses dlib for 128-dim face encodings; the target is described by one or
more reference photos.

Components:
- config.py: pydantic-settings configuration (thresholds, ratios, paths)
- face_utils.py: dlib face detection, reference set and match classifier
- image_processor.py: Censor renderer (black box, adaptive pixelation)
- session.py: Scan session controller (files, censor mode, batch scan)
- uploader.py: tmpfiles.org upload client
- models.py: Pydantic request/response models
- main.py: FastAPI application
- cli.py: Command-line batch runner
"""

__version__ = "1.0.0"
