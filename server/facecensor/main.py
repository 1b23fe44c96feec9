"""
Target Face Censor - FastAPI Backend
====================================

Finds a target person in a batch of photos and censors their face.

Uses dlib/face_recognition for detection and 128-dim embeddings; the target
is described by one or more reference photos loaded at startup.

Endpoints:
- GET  /status                  - Session state and whether scanning is possible
- PUT  /censor-mode             - Select black box or pixelated censoring
- POST /files                   - Replace the batch of images to scan
- POST /scan                    - Scan the batch in upload order
- GET  /results/{i}/download    - Censored PNG of image i
- POST /results/{i}/upload      - Upload image i to tmpfiles.org
- GET  /health                  - Health check
"""

import time
import logging
from typing import List, Optional
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, File, UploadFile, Depends, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from facecensor import __version__
from facecensor.config import get_settings
from facecensor.errors import ScanNotReadyError, UploadError
from facecensor.face_utils import load_reference_images
from facecensor.image_processor import CensorMode, image_to_base64
from facecensor.logger import setup_logging
from facecensor.models import (
    StatusResponse, CensorModeRequest, FilesResponse, ImageScanResult,
    ScanResponse, UploadResponse, HealthResponse, ErrorResponse, ErrorCode,
    CensorModeEnum
)
from facecensor.session import ScanSession, ScanStatus, UploadedImage, ImageResult
from facecensor.uploader import TmpfilesUploader

logger = logging.getLogger(__name__)

router = APIRouter()


# ============================================================================
# Application Setup
# ============================================================================

def create_app(
    session: Optional[ScanSession] = None,
    uploader: Optional[TmpfilesUploader] = None,
) -> FastAPI:
    """Build the API. A pre-initialized session skips model loading."""
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level)
        logger.info("Target Face Censor starting up...")
        if app.state.session is None:
            app.state.session = ScanSession.from_settings(settings)
            references = load_reference_images(settings.reference_dir, settings.reference_images)
            app.state.session.initialize(references)
        logger.info("Session status: %s", app.state.session.status_message)
        yield
        logger.info("Target Face Censor shutting down...")

    app = FastAPI(
        title="Target Face Censor API",
        description="""
        ## Find a target face in a batch of photos and censor it

        ### How it works:
        1. Reference photos of the target are encoded once at startup
        2. **Upload** a batch of photos and pick a censor mode
        3. **Scan**: every face closer than the threshold to the target is censored

        ### Censor modes:
        - `black`: opaque black box
        - `pixelated`: adaptive mosaic, block size follows the face size
        """,
        version=__version__,
        lifespan=lifespan
    )
    app.state.session = session
    app.state.uploader = uploader or TmpfilesUploader(settings.upload_url, settings.upload_timeout)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    return app


def get_session(request: Request) -> ScanSession:
    return request.app.state.session


def get_uploader(request: Request) -> TmpfilesUploader:
    return request.app.state.uploader


def status_response(session: ScanSession) -> StatusResponse:
    return StatusResponse(
        status=session.status.value,
        message=session.status_message,
        scan_enabled=session.scan_enabled,
        target_acquired=session.target_acquired,
        censor_mode=CensorModeEnum(session.censor_mode.value),
        files_loaded=len(session.uploaded_files),
        reference_count=len(session.reference_set) if session.reference_set else 0,
    )


def to_scan_result(result: ImageResult) -> ImageScanResult:
    return ImageScanResult(
        index=result.index,
        filename=result.filename,
        status_text=result.status_text,
        found_target=result.found_target,
        error=result.error,
        faces_detected=result.faces_detected,
        targets_in_image=result.targets_in_image,
        processed_image=image_to_base64(result.png) if result.png else None,
    )


def get_result_or_404(session: ScanSession, index: int) -> ImageResult:
    result = session.result(index)
    if result is None or result.png is None:
        raise HTTPException(
            status_code=404,
            detail={"error_code": ErrorCode.RESULT_NOT_FOUND, "message": f"No censored image at index {index}"}
        )
    return result


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/", tags=["Info"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Target Face Censor API",
        "version": __version__,
        "censor_modes": [mode.value for mode in CensorMode],
        "docs": "/docs",
        "health": "/health"
    }


@router.get("/health", response_model=HealthResponse, tags=["Info"])
async def health_check(session: ScanSession = Depends(get_session)):
    """Check system health."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        face_detector_loaded=session.status != ScanStatus.ERROR_INIT,
        target_acquired=session.target_acquired,
        reference_count=len(session.reference_set) if session.reference_set else 0,
    )


@router.get("/status", response_model=StatusResponse, tags=["Session"])
async def get_status(session: ScanSession = Depends(get_session)):
    return status_response(session)


@router.put("/censor-mode", response_model=StatusResponse, tags=["Session"])
async def set_censor_mode(body: CensorModeRequest, session: ScanSession = Depends(get_session)):
    """Select how matched faces are censored on the next scan."""
    session.set_censor_mode(CensorMode(body.mode.value))
    return status_response(session)


@router.post(
    "/files",
    response_model=FilesResponse,
    responses={409: {"model": ErrorResponse}},
    tags=["Session"]
)
async def set_files(
    images: List[UploadFile] = File(..., description="Photos to scan, in order"),
    session: ScanSession = Depends(get_session)
):
    """Replace the batch of images waiting to be scanned."""
    uploads = []
    for index, image in enumerate(images):
        uploads.append(UploadedImage(
            name=image.filename or f"image_{index}.png",
            data=await image.read()
        ))
    try:
        session.set_files(uploads)
    except ScanNotReadyError as e:
        raise HTTPException(
            status_code=409,
            detail={"error_code": ErrorCode.SCAN_RUNNING, "message": str(e)}
        )

    return FilesResponse(
        files_loaded=len(uploads),
        filenames=[u.name for u in uploads],
        scan_enabled=session.scan_enabled
    )


@router.post(
    "/scan",
    response_model=ScanResponse,
    responses={409: {"model": ErrorResponse}},
    tags=["Processing"]
)
def scan(session: ScanSession = Depends(get_session)):
    """
    Scan every uploaded image in upload order and censor the target.

    Images that fail to decode are reported with ``status_text="ERROR"``
    and do not count towards ``total_targets``.
    """
    start_time = time.time()
    try:
        batch = session.scan()
    except ScanNotReadyError as e:
        raise HTTPException(
            status_code=409,
            detail={"error_code": ErrorCode.SCAN_DISABLED, "message": str(e)}
        )

    return ScanResponse(
        status=session.status.value,
        total_targets=batch.total_targets,
        summary=batch.summary,
        message=session.status_message,
        processing_time_ms=(time.time() - start_time) * 1000,
        results=[to_scan_result(r) for r in batch.results]
    )


@router.get("/results/{index}/download", tags=["Results"])
async def download_result(index: int, session: ScanSession = Depends(get_session)):
    """Censored image as a PNG attachment."""
    result = get_result_or_404(session, index)
    return Response(
        content=result.png,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="{result.download_name}"'}
    )


@router.post(
    "/results/{index}/upload",
    response_model=UploadResponse,
    responses={502: {"model": ErrorResponse}},
    tags=["Results"]
)
def upload_result(
    index: int,
    session: ScanSession = Depends(get_session),
    uploader: TmpfilesUploader = Depends(get_uploader)
):
    """Upload a censored image to tmpfiles.org and return its link."""
    result = get_result_or_404(session, index)
    try:
        url = uploader.upload(result.png, result.download_name)
    except UploadError as e:
        logger.error("Upload error: %s", e)
        raise HTTPException(
            status_code=502,
            detail={"error_code": ErrorCode.UPLOAD_FAILED, "message": str(e)}
        )

    return UploadResponse(status="success", url=url, filename=result.download_name)


app = create_app()


# ============================================================================
# Run Server
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("facecensor.main:app", host="0.0.0.0", port=8000, reload=True)
