from .codec import Codec, CodecOutcome, SubprocessCodec
from .errors import (
    ArtifactNotFound,
    CodecLaunchError,
    ConversionError,
    ConversionFailed,
    ConversionTimeout,
    EmptyUpload,
    InvalidMode,
    StagingError,
    TooManyFiles,
    UploadTooLarge,
)
from .gate import Download, DownloadGate
from .models import ConversionMode, ConversionRequest, ConversionResult
from .pipeline import ConversionPipeline
from .store import ArtifactStore

__all__ = [
    "ArtifactNotFound",
    "ArtifactStore",
    "Codec",
    "CodecLaunchError",
    "CodecOutcome",
    "ConversionError",
    "ConversionFailed",
    "ConversionMode",
    "ConversionPipeline",
    "ConversionRequest",
    "ConversionResult",
    "ConversionTimeout",
    "Download",
    "DownloadGate",
    "EmptyUpload",
    "InvalidMode",
    "StagingError",
    "SubprocessCodec",
    "TooManyFiles",
    "UploadTooLarge",
]
