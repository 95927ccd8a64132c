"""External codec invocation."""
import logging
import os
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ppconvert.conversion.errors import CodecLaunchError, ConversionTimeout
from ppconvert.conversion.models import ConversionMode

logger = logging.getLogger("ppconvert.codec")


@dataclass(frozen=True)
class CodecOutcome:
    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def exit_succeeded(self) -> bool:
        return self.exit_code == 0


class Codec(Protocol):
    def invoke(self, mode: ConversionMode, input_path: Path, output_path: Path) -> CodecOutcome:
        """Convert input_path into output_path. Blocking; run off the event loop."""


class SubprocessCodec:
    """Runs `<executable> <mode> <input> <output>` and reports what happened.

    Success is not decided here: the caller still has to check that the
    output file exists and is non-empty.
    """

    def __init__(self, executable: Path, timeout_seconds: float = 120.0):
        self.executable = Path(executable)
        self.timeout_seconds = timeout_seconds

    def invoke(self, mode: ConversionMode, input_path: Path, output_path: Path) -> CodecOutcome:
        cmd = [str(self.executable), mode.value, str(input_path), str(output_path)]
        try:
            # Own session, so a timeout can kill anything the codec forked too.
            proc = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except (FileNotFoundError, PermissionError) as e:
            logger.error("Codec not runnable at %s: %s", self.executable, e)
            raise CodecLaunchError(f"Codec executable not available: {self.executable}") from e
        except OSError as e:
            logger.error("Codec failed to start: %s", e)
            raise CodecLaunchError(f"Could not start codec: {e}") from e

        try:
            stdout, stderr = proc.communicate(timeout=self.timeout_seconds)
        except subprocess.TimeoutExpired:
            self._kill_group(proc)
            proc.communicate()
            logger.error("Codec timed out after %ss: %s %s", self.timeout_seconds, mode.value, input_path.name)
            raise ConversionTimeout(
                f"Codec did not finish within {self.timeout_seconds:g} seconds"
            ) from None
        except BaseException:
            self._kill_group(proc)
            proc.wait()
            raise

        if stderr:
            logger.warning("Codec stderr (%s %s): %s", mode.value, input_path.name, stderr.strip())
        logger.debug("Codec exited with %s for %s", proc.returncode, input_path.name)
        return CodecOutcome(exit_code=proc.returncode, stdout=stdout or "", stderr=stderr or "")

    @staticmethod
    def _kill_group(proc: subprocess.Popen) -> None:
        if hasattr(os, "killpg"):
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        else:
            proc.kill()
