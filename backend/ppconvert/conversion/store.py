"""Inbound staging and outbound result directories."""
import logging
import time
import uuid
from pathlib import Path
from typing import Optional

from ppconvert.conversion.errors import ArtifactNotFound, EmptyUpload, StagingError, UploadTooLarge
from ppconvert.conversion.models import ConversionMode, UploadSource

logger = logging.getLogger("ppconvert.store")

CHUNK_SIZE = 1024 * 1024
OUTPUT_PREFIX = "processed_"


def sanitize_filename(name: str) -> str:
    """Safe file name component (no path separators, no empty)."""
    base = Path((name or "").replace("\\", "/")).name
    s = "".join(c for c in base if c.isalnum() or c in "._-").strip(".") or "upload"
    return s[-64:]


def new_token() -> str:
    return f"{time.time_ns()}_{uuid.uuid4().hex[:8]}"


class ArtifactStore:
    """Filesystem wrapper for the two transient directories.

    Every entry is created exclusively under a unique name, so concurrent
    jobs never need a lock to share the directories.
    """

    def __init__(self, upload_dir: Path, output_dir: Path, max_upload_bytes: Optional[int] = None):
        self.upload_dir = Path(upload_dir)
        self.output_dir = Path(output_dir)
        self.max_upload_bytes = max_upload_bytes

    def ensure_dirs(self) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def stage(self, source: UploadSource, original_filename: str) -> Path:
        """Write uploaded content into the inbound directory and return its path."""
        try:
            self.ensure_dirs()
            dest = self.upload_dir / f"{uuid.uuid4().hex}_{sanitize_filename(original_filename)}"
            with open(dest, "xb") as out:
                try:
                    total = self._copy_into(source, out)
                except BaseException:
                    out.close()
                    dest.unlink(missing_ok=True)
                    raise
        except (OSError, ValueError) as e:
            logger.exception("Staging failed for %s: %s", original_filename, e)
            raise StagingError(f"Could not store upload: {e}") from e
        if total == 0:
            dest.unlink(missing_ok=True)
            raise EmptyUpload(f"Uploaded file {original_filename!r} is empty")
        logger.debug("Staged %s as %s (%s bytes)", original_filename, dest.name, total)
        return dest

    def _copy_into(self, source: UploadSource, out) -> int:
        if isinstance(source, (bytes, bytearray)):
            self._check_size(len(source))
            out.write(source)
            return len(source)
        if isinstance(source, (str, Path)):
            with open(source, "rb") as f:
                return self._copy_stream(f, out)
        return self._copy_stream(source, out)

    def _copy_stream(self, src, out) -> int:
        total = 0
        while chunk := src.read(CHUNK_SIZE):
            total += len(chunk)
            self._check_size(total)
            out.write(chunk)
        return total

    def _check_size(self, size: int) -> None:
        if self.max_upload_bytes is not None and size > self.max_upload_bytes:
            max_mb = self.max_upload_bytes // (1024 * 1024)
            raise UploadTooLarge(f"File too large (max {max_mb} MB)")

    def reserve_output(self, mode: ConversionMode) -> Path:
        """Claim a fresh processed_<token><ext> path in the outbound directory."""
        self.ensure_dirs()
        while True:
            path = self.output_dir / f"{OUTPUT_PREFIX}{new_token()}{mode.output_extension}"
            try:
                with open(path, "xb"):
                    pass
                return path
            except FileExistsError:
                continue

    def exists(self, path: Path) -> bool:
        return Path(path).is_file()

    def size_of(self, path: Path) -> int:
        try:
            return Path(path).stat().st_size
        except FileNotFoundError:
            raise ArtifactNotFound(f"{Path(path).name} does not exist") from None

    def remove(self, path: Optional[Path]) -> None:
        """Delete a file; a path that is already gone is not an error."""
        if path is None:
            return
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove %s: %s", path, e)

    def list_staged(self) -> list[Path]:
        if not self.upload_dir.is_dir():
            return []
        return sorted(p for p in self.upload_dir.iterdir() if p.is_file())

    def list_outputs(self) -> list[Path]:
        if not self.output_dir.is_dir():
            return []
        return sorted(p for p in self.output_dir.iterdir() if p.is_file())
