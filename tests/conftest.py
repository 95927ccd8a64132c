"""Shared fixtures: temp directories, stub codecs and a ready pipeline."""

from __future__ import annotations

import io
import shutil
import stat
import sys
import textwrap
from pathlib import Path

import pytest
from PIL import Image

from ppconvert.conversion import (
    ArtifactStore,
    CodecOutcome,
    ConversionMode,
    ConversionPipeline,
    DownloadGate,
    SubprocessCodec,
)

# Bodies for stub codec executables; argv is <mode> <input> <output>.
CODEC_SCRIPTS = {
    "copy": """
        shutil.copyfile(sys.argv[2], sys.argv[3])
    """,
    "copy_with_warning": """
        sys.stderr.write("warning: palette reduced\\n")
        shutil.copyfile(sys.argv[2], sys.argv[3])
    """,
    "record_args": """
        Path(sys.argv[3]).write_text(json.dumps(sys.argv[1:]))
    """,
    "no_output": """
        if os.path.exists(sys.argv[3]):
            os.remove(sys.argv[3])
    """,
    "empty_output": """
        open(sys.argv[3], "wb").close()
    """,
    "crash": """
        Path(sys.argv[3]).write_bytes(b"partial")
        print("decoding row 7")
        sys.stderr.write("Failed to open input file\\n")
        sys.exit(3)
    """,
    "hang": """
        Path(sys.argv[3]).write_bytes(b"partial")
        time.sleep(30)
    """,
    "forking_hang": """
        marker = sys.argv[3] + ".late"
        subprocess.Popen([sys.executable, "-c", "import sys, time; time.sleep(1.5); open(sys.argv[1], 'w').write('late')", marker])
        time.sleep(30)
    """,
}


def write_codec_script(directory: Path, body: str, name: str = "codec") -> Path:
    path = directory / name
    source = f"#!{sys.executable}\nimport json, os, shutil, subprocess, sys, time\nfrom pathlib import Path\n"
    source += textwrap.dedent(body)
    path.write_text(source)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class CopyCodec:
    """In-process codec that copies bytes and records every call."""

    def __init__(self):
        self.calls: list[tuple[ConversionMode, Path, Path]] = []

    def invoke(self, mode, input_path, output_path):
        self.calls.append((mode, Path(input_path), Path(output_path)))
        shutil.copyfile(input_path, output_path)
        return CodecOutcome(exit_code=0)


class QuarterCodec:
    """Writes an output a quarter the size of the input."""

    def invoke(self, mode, input_path, output_path):
        size = Path(input_path).stat().st_size
        Path(output_path).write_bytes(b"\x00" * (size // 4))
        return CodecOutcome(exit_code=0)


class ExplodingCodec:
    def invoke(self, mode, input_path, output_path):
        Path(output_path).write_bytes(b"half")
        raise RuntimeError("codec wrapper bug")


@pytest.fixture
def bmp_bytes() -> bytes:
    img = Image.new("RGB", (8, 6), (200, 30, 30))
    for x in range(8):
        img.putpixel((x, 0), (x * 30, 0, 255 - x * 30))
    buf = io.BytesIO()
    img.save(buf, format="BMP")
    return buf.getvalue()


@pytest.fixture
def store(tmp_path: Path) -> ArtifactStore:
    return ArtifactStore(tmp_path / "uploads", tmp_path / "outputs", max_upload_bytes=1024 * 1024)


@pytest.fixture
def codec_script(tmp_path: Path):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def make(kind: str) -> Path:
        return write_codec_script(bin_dir, CODEC_SCRIPTS[kind], name=f"codec_{kind}")

    return make


@pytest.fixture
def make_pipeline(store: ArtifactStore):
    created: list[ConversionPipeline] = []

    def make(codec, grace_seconds: float = 0, ttl_seconds=None, max_workers: int = 4) -> ConversionPipeline:
        gate = DownloadGate(store, grace_seconds=grace_seconds, ttl_seconds=ttl_seconds)
        pipeline = ConversionPipeline(store, codec, gate, max_workers=max_workers)
        pipeline.start()
        created.append(pipeline)
        return pipeline

    yield make
    for p in created:
        p.shutdown()


@pytest.fixture
def subprocess_pipeline(make_pipeline, codec_script):
    def make(kind: str, timeout_seconds: float = 10, **kwargs) -> ConversionPipeline:
        return make_pipeline(SubprocessCodec(codec_script(kind), timeout_seconds=timeout_seconds), **kwargs)

    return make
