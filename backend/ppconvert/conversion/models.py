"""Conversion request/result models."""
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Optional, Union

from ppconvert.conversion.errors import InvalidMode

UploadSource = Union[bytes, bytearray, BinaryIO, Path]


class ConversionMode(str, Enum):
    COMPRESS = "compress"
    DECOMPRESS = "decompress"

    @property
    def output_extension(self) -> str:
        return ".pp" if self is ConversionMode.COMPRESS else ".bmp"

    @property
    def input_extension(self) -> str:
        return ".bmp" if self is ConversionMode.COMPRESS else ".pp"

    @classmethod
    def parse(cls, value: "str | ConversionMode | None") -> "ConversionMode":
        if isinstance(value, cls):
            return value
        name = (value or "").strip().lower()
        for mode in cls:
            if mode.value == name:
                return mode
        raise InvalidMode(
            f"Unsupported mode: {value!r}. Use one of: {', '.join(m.value for m in cls)}"
        )


@dataclass
class ConversionRequest:
    """One upload to convert. mode is the raw client value; the pipeline validates it."""

    source: UploadSource
    original_filename: str
    mode: "str | ConversionMode"


@dataclass(frozen=True)
class ImageInfo:
    width: int
    height: int
    mode: str

    def to_dict(self) -> dict:
        return {"width": self.width, "height": self.height, "mode": self.mode}


def compression_ratio(input_size: int, output_size: int, mode: ConversionMode) -> Optional[float]:
    """Percent saved by compression, rounded to 2 places. None unless compressing."""
    if mode is not ConversionMode.COMPRESS or input_size <= 0:
        return None
    return round((1 - output_size / input_size) * 100, 2)


def format_ratio(ratio: Optional[float]) -> Optional[str]:
    return None if ratio is None else f"{ratio:.2f}%"


@dataclass
class ConversionResult:
    mode: ConversionMode
    original_filename: str
    output_path: Path
    output_filename: str
    input_size: int  # bytes
    output_size: int  # bytes
    compression_ratio: Optional[float] = None
    image: Optional[ImageInfo] = None
    duration_seconds: Optional[float] = None

    def stats(self) -> dict:
        return {
            "original_size": self.input_size,
            "processed_size": self.output_size,
            "compression_ratio": format_ratio(self.compression_ratio),
            "image": self.image.to_dict() if self.image else None,
        }
