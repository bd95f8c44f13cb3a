"""API route definitions."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from scanvote.api.middleware import verify_api_key
from scanvote.api.schemas import (
    ErrorResponse,
    HealthResponse,
    IdentitiesResponse,
    IdentityInfo,
    ScanResultResponse,
    ScanStartRequest,
    ScanStatusResponse,
)
from scanvote.engine.errors import FrameSourceUnavailableError, ScanAlreadyActiveError, ScanNotActiveError
from scanvote.ml.orb_extractor import decode_image

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from scanvote.config import Settings
    from scanvote.service import ScanService

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_service(request: Request) -> ScanService:
    service: ScanService = request.app.state.scan_service
    return service


async def _read_frame(request: Request, file: UploadFile) -> NDArray:
    """Read and decode an uploaded image, enforcing the size limit."""
    settings = _get_settings(request)
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")

    service = _get_service(request)
    try:
        return await service.pool.run(decode_image, data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from None
    except TimeoutError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Server busy") from None


def _status_response(service: ScanService) -> ScanStatusResponse:
    last = service.results.last
    return ScanStatusResponse(
        active=service.scan_active,
        state=service.scan_state.value,
        frames_per_attempt=service.frames_per_attempt,
        history_length=service.history_length,
        pending_frames=service.pending_frames,
        last_result=ScanResultResponse.from_result(last.result) if last is not None else None,
        last_error=service.last_error,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    service = _get_service(request)
    return HealthResponse(
        status="ok",
        identities_loaded=len(service.catalog),
        fast_classifier=service.has_fast_classifier,
        scan_active=service.scan_active,
        concurrent_requests=service.pool.active_count,
        queue_depth=service.pool.queue_depth,
    )


@router.get(
    "/identities",
    response_model=IdentitiesResponse,
    summary="List known identities",
)
async def list_identities(request: Request) -> IdentitiesResponse:
    """Return every identity in the loaded catalog."""
    service = _get_service(request)
    return IdentitiesResponse(identities=[IdentityInfo.from_identity(identity) for identity in service.catalog])


@router.post(
    "/identify",
    response_model=ScanResultResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Identify a still image",
)
async def identify(request: Request, file: UploadFile) -> ScanResultResponse:
    """Single-shot identification of an uploaded image."""
    frame = await _read_frame(request, file)
    service = _get_service(request)
    try:
        result = await service.identify(frame)
    except FrameSourceUnavailableError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e)) from None
    return ScanResultResponse.from_result(result)


@router.post(
    "/scan/start",
    response_model=ScanStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={status.HTTP_409_CONFLICT: {"model": ErrorResponse}},
    summary="Start a continuous scan",
)
async def start_scan(request: Request, options: ScanStartRequest | None = None) -> ScanStatusResponse:
    """Start scanning frames pushed to /scan/frames until an identity is confirmed."""
    service = _get_service(request)
    try:
        service.start_scan(mobile=options.mobile if options is not None else False)
    except ScanAlreadyActiveError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    return _status_response(service)


@router.post(
    "/scan/frames",
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Push a captured frame",
)
async def push_frame(request: Request, file: UploadFile) -> dict[str, int]:
    """Queue one camera frame for the running scan."""
    service = _get_service(request)
    if not service.scan_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No scan is in progress")

    frame = await _read_frame(request, file)
    try:
        service.push_frame(frame)
    except (ScanNotActiveError, FrameSourceUnavailableError) as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from None
    except asyncio.QueueFull:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Frame queue is full") from None
    return {"pending_frames": service.pending_frames}


@router.post(
    "/scan/stop",
    response_model=ScanStatusResponse,
    summary="Stop the continuous scan",
)
async def stop_scan(request: Request) -> ScanStatusResponse:
    """Request a stop; the scan ends at its next loop boundary."""
    service = _get_service(request)
    service.stop_scan()
    return _status_response(service)


@router.get(
    "/scan/status",
    response_model=ScanStatusResponse,
    summary="Continuous scan status",
)
async def scan_status(request: Request) -> ScanStatusResponse:
    """Return the scan state and the last presented result."""
    return _status_response(_get_service(request))
