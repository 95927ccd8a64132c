"""Conversion job pipeline: stage, run the codec, verify, register for download."""
import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Union

from ppconvert import config
from ppconvert.conversion.bitmap import describe_bitmap
from ppconvert.conversion.codec import Codec, CodecOutcome, SubprocessCodec
from ppconvert.conversion.errors import ConversionError, ConversionFailed
from ppconvert.conversion.gate import DownloadGate
from ppconvert.conversion.models import (
    ConversionMode,
    ConversionRequest,
    ConversionResult,
    compression_ratio,
)
from ppconvert.conversion.store import ArtifactStore

logger = logging.getLogger("ppconvert.pipeline")


class ConversionPipeline:
    """Runs one conversion per request with guaranteed cleanup of temp files.

    The staged input is removed on every exit path; the output is removed on
    every failure path and otherwise handed to the download gate.
    """

    def __init__(
        self,
        store: ArtifactStore,
        codec: Codec,
        gate: DownloadGate,
        *,
        max_workers: int = 4,
    ):
        self.store = store
        self.codec = codec
        self.gate = gate
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ppconvert")
        logger.info("ConversionPipeline initialized with max_workers=%s", max_workers)

    def start(self) -> None:
        self.store.ensure_dirs()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
        self.gate.close()

    def process(self, request: ConversionRequest) -> ConversionResult:
        mode = ConversionMode.parse(request.mode)
        started = time.monotonic()
        input_path = self.store.stage(request.source, request.original_filename)
        output_path: Optional[Path] = None
        try:
            try:
                output_path = self.store.reserve_output(mode)
                outcome = self.codec.invoke(mode, input_path, output_path)
                self._verify(outcome, output_path)
                input_size = self.store.size_of(input_path)
                output_size = self.store.size_of(output_path)
                bitmap_side = input_path if mode is ConversionMode.COMPRESS else output_path
                result = ConversionResult(
                    mode=mode,
                    original_filename=request.original_filename,
                    output_path=output_path,
                    output_filename=output_path.name,
                    input_size=input_size,
                    output_size=output_size,
                    compression_ratio=compression_ratio(input_size, output_size, mode),
                    image=describe_bitmap(bitmap_side),
                )
            finally:
                self.store.remove(input_path)
            self.gate.register(result.output_filename, output_path)
        except ConversionError as e:
            self.store.remove(output_path)
            logger.warning("%s of %s failed (%s): %s", mode.value, request.original_filename, e.kind, e.message)
            raise
        except Exception as e:
            self.store.remove(output_path)
            logger.exception("%s of %s failed: %s", mode.value, request.original_filename, e)
            raise ConversionFailed(f"Unexpected error: {e}") from e
        except BaseException:
            self.store.remove(output_path)
            raise

        result.duration_seconds = round(time.monotonic() - started, 3)
        logger.info(
            "Processed %s (%s): %s -> %s (%s -> %s bytes)",
            request.original_filename, mode.value, input_path.name, result.output_filename,
            result.input_size, result.output_size,
        )
        return result

    @staticmethod
    def _verify(outcome: CodecOutcome, output_path: Path) -> None:
        if not outcome.exit_succeeded:
            raise ConversionFailed(
                f"Codec exited with status {outcome.exit_code}",
                stdout=outcome.stdout,
                stderr=outcome.stderr,
            )
        if not output_path.is_file():
            raise ConversionFailed(
                "Processing failed - no output file generated",
                stdout=outcome.stdout,
                stderr=outcome.stderr,
            )
        if output_path.stat().st_size == 0:
            raise ConversionFailed(
                "Processing failed - output file is empty",
                stdout=outcome.stdout,
                stderr=outcome.stderr,
            )

    async def submit(self, request: ConversionRequest) -> ConversionResult:
        """Run process() on the worker pool. Caller cancellation does not abort the job."""
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor, self.process, request)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            logger.warning("Client went away during %s; job will finish and clean up in background", request.original_filename)
            future.add_done_callback(_log_abandoned)
            raise

    def process_many(self, requests: list[ConversionRequest]) -> list[Union[ConversionResult, ConversionError]]:
        """Convert several uploads in parallel. One entry per request, in order."""
        futures = [self._executor.submit(self.process, r) for r in requests]
        results: list[Union[ConversionResult, ConversionError]] = []
        for future in futures:
            try:
                results.append(future.result())
            except ConversionError as e:
                results.append(e)
        return results

    async def submit_many(self, requests: list[ConversionRequest]) -> list[Union[ConversionResult, ConversionError]]:
        return await asyncio.to_thread(self.process_many, requests)


def _log_abandoned(future: "asyncio.Future[ConversionResult]") -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.info("Abandoned job ended with %s", exc)
    else:
        logger.info("Abandoned job produced %s; it expires unless downloaded", future.result().output_filename)


# Singleton
_pipeline: Optional[ConversionPipeline] = None


def build_pipeline() -> ConversionPipeline:
    store = ArtifactStore(config.UPLOAD_DIR, config.OUTPUT_DIR, max_upload_bytes=config.MAX_UPLOAD_BYTES)
    return ConversionPipeline(
        store,
        SubprocessCodec(config.CODEC_PATH, timeout_seconds=config.CODEC_TIMEOUT_SECONDS),
        DownloadGate(store, grace_seconds=config.DOWNLOAD_GRACE_SECONDS, ttl_seconds=config.ARTIFACT_TTL_SECONDS),
        max_workers=config.MAX_WORKERS,
    )


def get_pipeline() -> ConversionPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline
