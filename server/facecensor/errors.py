"""
Failure taxonomy of the censor pipeline.

Each exception marks the scope it is fatal for:
- ModelLoadError: the whole tool (scanning disabled)
- TargetAcquisitionError: the reference set (scanning disabled)
- ImageProcessingError: one uploaded image (batch continues)
- UploadError: one share action (scan results untouched)
"""


class FaceCensorError(Exception):
    """Base class for every error raised by facecensor."""


class ModelLoadError(FaceCensorError):
    """The external face model could not be loaded."""


class TargetAcquisitionError(FaceCensorError):
    """No usable face embedding could be taken from the reference images."""


class ImageProcessingError(FaceCensorError):
    """An uploaded image could not be decoded or scanned."""

    def __init__(self, filename: str, message: str):
        super().__init__(f"{filename}: {message}")
        self.filename = filename
        self.reason = message


class UploadError(FaceCensorError):
    """Uploading a result to the temporary file host failed."""


class ScanNotReadyError(FaceCensorError):
    """A scan was requested while scanning is disabled."""
