#!/usr/bin/env python3
"""Batch censor from the command line.

Encodes the reference photos of the target, scans every given image in
order and writes a censored PNG next to the verdict of each image.

Expected folder structure:
    server/reference_faces/
        target.jpg
        target1.jpg
        ...

Usage:
    python -m facecensor.cli photos/*.jpg --mode black --output-dir out

Exit codes: 0 done, 2 face model failed to load, 3 target acquisition failed.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from facecensor.config import get_settings
from facecensor.errors import UploadError
from facecensor.face_utils import load_reference_images
from facecensor.image_processor import CensorMode
from facecensor.logger import setup_logging
from facecensor.session import ScanSession, ScanStatus, UploadedImage
from facecensor.uploader import TmpfilesUploader

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    settings = get_settings()

    p = argparse.ArgumentParser(description="Find the target face in a batch of photos and censor it")
    p.add_argument("images", nargs="+", type=Path, help="Photos to scan, in order")
    p.add_argument("--reference-dir", type=Path, default=settings.reference_dir, help="Directory with reference photos of the target")
    p.add_argument("--reference", action="append", default=None, help="Reference file name inside --reference-dir (repeatable)")
    p.add_argument("--mode", choices=[m.value for m in CensorMode], default=settings.default_censor_mode.value, help="Censor mode")
    p.add_argument("--threshold", type=float, default=settings.match_threshold, help="Match threshold (lower=stricter)")
    p.add_argument("--output-dir", type=Path, default=Path("censored"), help="Where censored PNGs are written")
    p.add_argument("--upload", action="store_true", help="Upload each censored image to tmpfiles.org and print the link")
    p.add_argument("--log-level", default=settings.log_level, help="Logging level")
    return p.parse_args(argv)


def main(argv: list[str] | None = None, session: ScanSession | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)
    settings = get_settings()

    if session is None:
        session = ScanSession.from_settings(settings)
    session.threshold = args.threshold
    session.set_censor_mode(CensorMode(args.mode))

    references = load_reference_images(args.reference_dir, args.reference or settings.reference_images)
    if not session.initialize(references):
        print(session.status_message, file=sys.stderr)
        return 2 if session.status == ScanStatus.ERROR_INIT else 3

    uploads = []
    for path in args.images:
        try:
            uploads.append(UploadedImage(name=path.name, data=path.read_bytes()))
        except OSError as e:
            print(f"ERROR reading {path}: {e}", file=sys.stderr)
            uploads.append(UploadedImage(name=path.name, data=b""))
    session.set_files(uploads)

    batch = session.scan()

    args.output_dir.mkdir(parents=True, exist_ok=True)
    uploader = TmpfilesUploader(settings.upload_url, settings.upload_timeout) if args.upload else None

    for result in batch.results:
        line = f"{result.filename}: {result.status_text}"
        if result.png is not None:
            out_path = args.output_dir / f"censored_{Path(result.filename).stem}.png"
            out_path.write_bytes(result.png)
            line += f" -> {out_path}"

            if uploader is not None:
                try:
                    line += f" [{uploader.upload(result.png, out_path.name)}]"
                except UploadError as e:
                    logger.error("Upload error for %s: %s", result.filename, e)
                    line += " [upload failed]"
        elif result.error:
            line += f" ({result.error})"
        print(line)

    print(f">> {batch.summary} <<")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
