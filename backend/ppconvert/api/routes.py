"""API routes for upload, conversion and one-time download."""
import logging
from typing import BinaryIO, Iterator, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from ppconvert.config import (
    CODEC_TIMEOUT_SECONDS,
    DOWNLOAD_GRACE_SECONDS,
    MAX_FILES_PER_UPLOAD,
    MAX_UPLOAD_BYTES,
)
from ppconvert.conversion import (
    ConversionError,
    ConversionMode,
    ConversionPipeline,
    ConversionRequest,
    ConversionResult,
    Download,
    DownloadGate,
    EmptyUpload,
    TooManyFiles,
)
from ppconvert.conversion.pipeline import get_pipeline

logger = logging.getLogger("ppconvert.api")
router = APIRouter(prefix="/api", tags=["converter"])

CHUNK_SIZE = 1024 * 1024

_EXT_TO_MIME = {
    ".bmp": "image/bmp",
    ".pp": "application/octet-stream",
}


def _result_to_dict(result: ConversionResult) -> dict:
    return {
        "success": True,
        "message": "File processed successfully",
        "filename": result.original_filename,
        "mode": result.mode.value,
        "download_token": result.output_filename,
        "download_url": f"/api/download/{result.output_filename}",
        "duration_seconds": result.duration_seconds,
        "stats": result.stats(),
    }


def _iter_stream(stream: BinaryIO) -> Iterator[bytes]:
    try:
        while chunk := stream.read(CHUNK_SIZE):
            yield chunk
    finally:
        stream.close()


def _finish_download(gate: DownloadGate, download: Download) -> None:
    # Runs after the response, even if the body iterator was never started.
    download.stream.close()
    gate.complete(download.filename)


@router.get("/health")
def health():
    return {"status": "ok", "message": "Backend server is running"}


@router.get("/limits")
def get_limits():
    """Return upload limits and artifact lifetime for the client."""
    return {
        "max_upload_size_mb": MAX_UPLOAD_BYTES // (1024 * 1024),
        "max_upload_size_bytes": MAX_UPLOAD_BYTES,
        "max_files_per_upload": MAX_FILES_PER_UPLOAD,
        "codec_timeout_seconds": CODEC_TIMEOUT_SECONDS,
        "download_grace_seconds": DOWNLOAD_GRACE_SECONDS,
    }


@router.get("/modes")
def get_modes():
    return {
        mode.value: {"input": mode.input_extension, "output": mode.output_extension}
        for mode in ConversionMode
    }


@router.post("/process")
async def process_file(
    file: Optional[UploadFile] = File(None),
    mode: Optional[str] = Form(None),
    pipeline: ConversionPipeline = Depends(get_pipeline),
):
    """Upload one file and convert it. The result is downloadable once via download_url."""
    if file is None:
        raise EmptyUpload("No file uploaded")
    logger.info("Processing: %s - %s", mode, file.filename)
    request = ConversionRequest(source=file.file, original_filename=file.filename or "upload", mode=mode)
    result = await pipeline.submit(request)
    return _result_to_dict(result)


@router.post("/process-multiple")
async def process_multiple(
    files: Optional[list[UploadFile]] = File(None),
    mode: Optional[str] = Form(None),
    pipeline: ConversionPipeline = Depends(get_pipeline),
):
    """Upload several files with the same mode and convert them in parallel."""
    if not files:
        raise EmptyUpload("No file uploaded")
    if len(files) > MAX_FILES_PER_UPLOAD:
        raise TooManyFiles(f"Max {MAX_FILES_PER_UPLOAD} files per upload, got {len(files)}")
    parsed = ConversionMode.parse(mode)
    requests = [
        ConversionRequest(source=f.file, original_filename=f.filename or "upload", mode=parsed)
        for f in files
    ]
    outcomes = await pipeline.submit_many(requests)
    results = []
    for req, outcome in zip(requests, outcomes):
        if isinstance(outcome, ConversionError):
            results.append({"filename": req.original_filename, **outcome.to_dict()})
        else:
            results.append(_result_to_dict(outcome))
    return {"results": results}


@router.get("/download/{filename}")
def download_output(filename: str, pipeline: ConversionPipeline = Depends(get_pipeline)):
    """Stream a converted file. It is removed shortly after the transfer finishes."""
    download = pipeline.gate.fetch(filename)
    ext = download.path.suffix.lower()
    return StreamingResponse(
        _iter_stream(download.stream),
        media_type=_EXT_TO_MIME.get(ext, "application/octet-stream"),
        headers={
            "Content-Disposition": f'attachment; filename="{download.filename}"',
            "Content-Length": str(download.size),
        },
        background=BackgroundTask(_finish_download, pipeline.gate, download),
    )
