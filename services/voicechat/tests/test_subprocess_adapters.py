"""Tests for the whisper and piper command line adapters."""

import stat
import sys

import pytest

from services.voicechat.errors import SynthesisError, TranscriptionError
from services.voicechat.process import run_process
from services.voicechat.synthesis import PiperSynthesizer, length_scale_for
from services.voicechat.transcription import WhisperTranscriber, normalize_transcript

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses shell scripts")


def _script(tmp_path, name, body):
    path = tmp_path / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return str(path)


class TestRunProcess:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_captures_output_and_stdin(self, tmp_path):
        cat = _script(tmp_path, "echoer", 'cat; echo "oops" >&2; exit 3\n')

        result = await run_process([cat], stdin_data=b"hello")

        assert result.returncode == 3
        assert result.stdout == "hello"
        assert result.stderr.strip() == "oops"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout_kills_child(self, tmp_path):
        slow = _script(tmp_path, "slow", "sleep 5\n")

        with pytest.raises(TimeoutError):
            await run_process([slow], timeout=0.1)


class TestWhisperTranscriber:
    @pytest.mark.unit
    def test_command_line(self):
        transcriber = WhisperTranscriber("whisper-cli", "/models/ggml-base.en.bin")

        assert transcriber.build_command("/tmp/in.wav") == [
            "whisper-cli",
            "-m",
            "/models/ggml-base.en.bin",
            "-f",
            "/tmp/in.wav",
            "-nt",
            "-np",
        ]

    @pytest.mark.unit
    def test_normalize_transcript(self):
        assert normalize_transcript("  hello \n\n  there\t") == "hello there"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stdout_becomes_transcript(self, tmp_path):
        binary = _script(tmp_path, "whisper-cli", 'printf "  Hello\\n   world  \\n"\n')

        text = await WhisperTranscriber(binary, "model.bin").transcribe(tmp_path / "in.wav")

        assert text == "Hello world"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_non_zero_exit_raises(self, tmp_path):
        binary = _script(tmp_path, "whisper-cli", 'echo "failed to load model" >&2; exit 1\n')

        with pytest.raises(TranscriptionError) as excinfo:
            await WhisperTranscriber(binary, "model.bin").transcribe(tmp_path / "in.wav")

        assert excinfo.value.exit_code == 1
        assert "failed to load model" in excinfo.value.stderr

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_binary_raises(self, tmp_path):
        transcriber = WhisperTranscriber(str(tmp_path / "nope"), "model.bin")

        with pytest.raises(TranscriptionError):
            await transcriber.transcribe(tmp_path / "in.wav")


class TestPiperSynthesizer:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("rate", "expected"),
        [(0.85, 1 / 0.85), (1.0, 1.0), (0.1, 1 / 0.6), (3.0, 1 / 1.6)],
    )
    def test_length_scale(self, rate, expected):
        assert length_scale_for(rate) == pytest.approx(expected)

    @pytest.mark.unit
    def test_command_line(self, tmp_path):
        synth = PiperSynthesizer("piper", "voice.onnx", speak_rate=1.0)

        assert synth.build_command(tmp_path / "out.wav") == [
            "piper",
            "--model",
            "voice.onnx",
            "--output_file",
            str(tmp_path / "out.wav"),
            "--length_scale",
            "1.0000",
        ]

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_writes_audio_from_stdin(self, tmp_path):
        # --output_file is the 4th argument
        binary = _script(tmp_path, "piper", 'cat > "$4"\n')
        out_dir = tmp_path / "out"
        out_dir.mkdir()
        synth = PiperSynthesizer(binary, "voice.onnx", temp_dir=out_dir)

        path = await synth.synthesize("hello there")

        assert path.parent == out_dir
        assert path.read_text() == "hello there"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_removes_output_file(self, tmp_path):
        binary = _script(tmp_path, "piper", 'echo "bad voice" >&2; exit 2\n')
        out_dir = tmp_path / "out"
        out_dir.mkdir()
        synth = PiperSynthesizer(binary, "voice.onnx", temp_dir=out_dir)

        with pytest.raises(SynthesisError) as excinfo:
            await synth.synthesize("hello")

        assert excinfo.value.exit_code == 2
        assert list(out_dir.iterdir()) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_output_is_an_error(self, tmp_path):
        binary = _script(tmp_path, "piper", "cat > /dev/null\n")
        out_dir = tmp_path / "out"
        out_dir.mkdir()
        synth = PiperSynthesizer(binary, "voice.onnx", temp_dir=out_dir)

        with pytest.raises(SynthesisError):
            await synth.synthesize("hello")
        assert list(out_dir.iterdir()) == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_text_is_refused(self, tmp_path):
        with pytest.raises(SynthesisError):
            await PiperSynthesizer("piper", "voice.onnx").synthesize("   ")
