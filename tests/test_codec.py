import json
import logging
import time
from pathlib import Path

import pytest

from ppconvert.conversion import CodecLaunchError, ConversionMode, ConversionTimeout, SubprocessCodec


def _paths(tmp_path: Path) -> tuple[Path, Path]:
    src = tmp_path / "in.bmp"
    src.write_bytes(b"BMdata")
    return src, tmp_path / "out.pp"


def test_invokes_with_positional_contract(codec_script, tmp_path: Path):
    src, out = _paths(tmp_path)
    codec = SubprocessCodec(codec_script("record_args"), timeout_seconds=10)
    outcome = codec.invoke(ConversionMode.DECOMPRESS, src, out)
    assert outcome.exit_succeeded
    assert json.loads(out.read_text()) == ["decompress", str(src), str(out)]


def test_copy_codec_succeeds(codec_script, tmp_path: Path):
    src, out = _paths(tmp_path)
    outcome = SubprocessCodec(codec_script("copy")).invoke(ConversionMode.COMPRESS, src, out)
    assert outcome.exit_code == 0
    assert out.read_bytes() == b"BMdata"


def test_nonzero_exit_is_reported_not_raised(codec_script, tmp_path: Path):
    src, out = _paths(tmp_path)
    outcome = SubprocessCodec(codec_script("crash")).invoke(ConversionMode.COMPRESS, src, out)
    assert not outcome.exit_succeeded
    assert outcome.exit_code == 3
    assert "Failed to open input file" in outcome.stderr
    assert "decoding row 7" in outcome.stdout


def test_stderr_is_logged_as_warning(codec_script, tmp_path: Path, caplog):
    src, out = _paths(tmp_path)
    with caplog.at_level(logging.WARNING, logger="ppconvert.codec"):
        outcome = SubprocessCodec(codec_script("copy_with_warning")).invoke(ConversionMode.COMPRESS, src, out)
    assert outcome.exit_succeeded
    assert "palette reduced" in outcome.stderr
    assert any("palette reduced" in r.getMessage() for r in caplog.records)


def test_missing_executable_is_launch_error(tmp_path: Path):
    src, out = _paths(tmp_path)
    codec = SubprocessCodec(tmp_path / "does-not-exist")
    with pytest.raises(CodecLaunchError):
        codec.invoke(ConversionMode.COMPRESS, src, out)


def test_non_executable_file_is_launch_error(tmp_path: Path):
    src, out = _paths(tmp_path)
    plain = tmp_path / "compress"
    plain.write_text("not a program")
    plain.chmod(0o644)
    with pytest.raises(CodecLaunchError):
        SubprocessCodec(plain).invoke(ConversionMode.COMPRESS, src, out)


def test_timeout_kills_codec(codec_script, tmp_path: Path):
    src, out = _paths(tmp_path)
    codec = SubprocessCodec(codec_script("hang"), timeout_seconds=1)
    with pytest.raises(ConversionTimeout) as exc_info:
        codec.invoke(ConversionMode.COMPRESS, src, out)
    assert exc_info.value.status_code == 504


def test_timeout_kills_processes_the_codec_spawned(codec_script, tmp_path: Path):
    src, out = _paths(tmp_path)
    codec = SubprocessCodec(codec_script("forking_hang"), timeout_seconds=0.5)
    with pytest.raises(ConversionTimeout):
        codec.invoke(ConversionMode.COMPRESS, src, out)
    # The helper would write its marker at 1.5 s if it outlived the codec.
    time.sleep(2.5)
    assert not Path(str(out) + ".late").exists()
