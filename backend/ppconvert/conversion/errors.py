"""Typed failures of the conversion pipeline and their client-facing form."""
from typing import Optional


class ConversionError(Exception):
    """Base for every failure surfaced at the pipeline boundary."""

    kind = "conversion_error"
    status_code = 500
    title = "Failed to process file"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        out = {
            "success": False,
            "error": self.title,
            "kind": self.kind,
            "details": self.message,
        }
        if self.details:
            out["diagnostics"] = self.details
        return out


class InvalidMode(ConversionError):
    kind = "invalid_mode"
    status_code = 400
    title = "Invalid mode"


class StagingError(ConversionError):
    kind = "staging_error"
    title = "Failed to store upload"


class EmptyUpload(StagingError):
    kind = "empty_upload"
    status_code = 400
    title = "No file uploaded"


class UploadTooLarge(StagingError):
    kind = "upload_too_large"
    status_code = 413
    title = "File too large"


class TooManyFiles(StagingError):
    kind = "too_many_files"
    status_code = 400
    title = "Too many files"


class CodecLaunchError(ConversionError):
    """The codec executable is missing or cannot be run. Not retried."""

    kind = "codec_launch_error"
    title = "Codec unavailable"


class ConversionTimeout(ConversionError):
    kind = "conversion_timeout"
    status_code = 504
    title = "Conversion timed out"


class ConversionFailed(ConversionError):
    """Codec exited abnormally or produced no usable output."""

    kind = "conversion_failed"

    def __init__(self, message: str, stdout: str = "", stderr: str = ""):
        details = {}
        if stdout:
            details["stdout"] = stdout
        if stderr:
            details["stderr"] = stderr
        super().__init__(message, details)
        self.stdout = stdout
        self.stderr = stderr


class ArtifactNotFound(ConversionError):
    kind = "not_found"
    status_code = 404
    title = "File not found"
