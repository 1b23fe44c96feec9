"""
Temporary file host client (tmpfiles.org).

Best effort: a failed upload raises UploadError and never touches the
scan results it was made from.
"""

import logging
from typing import Optional

import requests

from facecensor.errors import UploadError

logger = logging.getLogger(__name__)

TMPFILES_URL = "https://tmpfiles.org/api/v1/upload"


def to_direct_link(url: str) -> str:
    """tmpfiles.org returns a landing page; /dl/ serves the file itself."""
    return url.replace("http://tmpfiles.org/", "http://tmpfiles.org/dl/", 1)


class TmpfilesUploader:
    def __init__(
        self,
        url: str = TMPFILES_URL,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def upload(self, png_bytes: bytes, filename: str) -> str:
        """Upload a PNG and return its public direct-download URL."""
        if not png_bytes:
            raise UploadError("Nothing to upload")

        logger.info("Uploading %s to %s", filename, self.url)
        files = {"file": (filename, png_bytes, "image/png")}
        try:
            resp = self.session.post(self.url, files=files, timeout=self.timeout)
        except requests.RequestException as e:
            raise UploadError(f"Upload failed: {e}") from e

        if not resp.ok:
            raise UploadError(
                f"Upload failed: {resp.status_code} {resp.reason} {resp.text}".strip()
            )

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        url = None
        if isinstance(payload, dict) and payload.get("status") == "success":
            url = (payload.get("data") or {}).get("url")
        if not url:
            raise UploadError("Unexpected response from upload API")

        link = to_direct_link(url)
        logger.info("Uploaded %s -> %s", filename, link)
        return link
