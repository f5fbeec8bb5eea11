"""padvault - Transcode Worker.

Sample-accurate trimming of pad audio for export.

Input: source audio bytes + (start_ms, end_ms)
Output: TrimResult(bytes, new_duration_ms, format)

Decoding:
- WAV (8/16/24/32-bit PCM) in-process with the stdlib wave module
- everything else through ffmpeg (f32le on stdout); sample rate and channel
  count come from ffprobe

Re-encoding:
- lossy sources (mp3, ogg) are re-encoded with ffmpeg at 128 kbps
- lossless sources, and any failed lossy encode, become 16-bit PCM WAV

Dependencies:
- Requires ffmpeg/ffprobe in PATH for non-WAV sources
"""

from __future__ import annotations

import io
import json
import logging
import math
import subprocess
import wave
from dataclasses import dataclass

import numpy as np

from padvault.config import (
    FFMPEG_TIMEOUT_SECONDS,
    LOSSY_BITRATE_KBPS,
    TRIM_END_TOLERANCE_MS,
    TRIM_START_TOLERANCE_MS,
)
from padvault.errors import AudioDecodeError
from padvault.schemas import PadSettings
from padvault.utils.audio_meta import extract_audio_metadata, is_lossy, sniff_format

logger = logging.getLogger(__name__)

# Output sample width for WAV encoding (16-bit)
WAV_SAMPWIDTH = 2

# ffmpeg codec/muxer per lossy output format
_LOSSY_ENCODERS = {
    "mp3": ("libmp3lame", "mp3"),
    "ogg": ("libvorbis", "ogg"),
}


# --- Result Types ---


@dataclass
class DecodedAudio:
    """Planar float32 PCM: samples has shape (channels, frames)."""

    samples: np.ndarray
    sample_rate: int

    @property
    def channels(self) -> int:
        return int(self.samples.shape[0])

    @property
    def frames(self) -> int:
        return int(self.samples.shape[1])

    @property
    def duration_ms(self) -> float:
        return self.frames / self.sample_rate * 1000.0


@dataclass
class TrimResult:
    data: bytes
    new_duration_ms: float
    format: str


@dataclass(frozen=True)
class TrimPlan:
    """Whether a pad's play range cuts into its source audio."""

    trim_in: bool
    trim_out: bool

    @property
    def needed(self) -> bool:
        return self.trim_in or self.trim_out


def trim_plan(pad: PadSettings, decoded_duration_ms: float) -> TrimPlan:
    """Decide whether exporting a pad needs a trim.

    Trim-in applies past a 50 ms start offset; trim-out only when more than
    200 ms of tail would be dropped. end_time_ms == 0 plays to the end.
    The plan only decides whether to trim; a trim always cuts the pad's
    whole [start, end) range.
    """
    trim_in = pad.start_time_ms > TRIM_START_TOLERANCE_MS
    trim_out = (
        pad.end_time_ms > 0 and decoded_duration_ms - pad.end_time_ms > TRIM_END_TOLERANCE_MS
    )
    return TrimPlan(trim_in=trim_in, trim_out=trim_out)


# --- ffmpeg Subprocess ---


def _run_tool(cmd: list[str], stdin: bytes) -> subprocess.CompletedProcess:
    """Run ffmpeg/ffprobe with bytes on stdin.

    Raises:
        AudioDecodeError: Tool missing, timed out, or exited non-zero.
    """
    try:
        result = subprocess.run(
            cmd,
            input=stdin,
            capture_output=True,
            check=False,
            timeout=FFMPEG_TIMEOUT_SECONDS,
        )
    except subprocess.TimeoutExpired as e:
        logger.error("%s timed out after %d seconds", cmd[0], FFMPEG_TIMEOUT_SECONDS)
        raise AudioDecodeError(f"{cmd[0]} timed out") from e
    except FileNotFoundError as e:
        logger.error("%s not found in PATH", cmd[0])
        raise AudioDecodeError(f"{cmd[0]} is not installed") from e
    except OSError as e:
        logger.error("%s execution failed: %s", cmd[0], e)
        raise AudioDecodeError(f"{cmd[0]} failed to start") from e

    if result.returncode != 0:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        raise AudioDecodeError(f"{cmd[0]} failed: {stderr[:200] or result.returncode}")
    return result


def _probe_stream(data: bytes) -> tuple[int, int]:
    """Sample rate and channel count of the first audio stream."""
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-select_streams",
        "a:0",
        "-show_entries",
        "stream=sample_rate,channels",
        "-of",
        "json",
        "-i",
        "pipe:0",
    ]
    result = _run_tool(cmd, data)
    try:
        stream = json.loads(result.stdout)["streams"][0]
        return int(stream["sample_rate"]), int(stream["channels"])
    except (ValueError, KeyError, IndexError, TypeError) as e:
        raise AudioDecodeError("no audio stream found") from e


def _decode_with_ffmpeg(data: bytes) -> DecodedAudio:
    sample_rate, channels = _probe_stream(data)
    if sample_rate <= 0 or channels <= 0:
        raise AudioDecodeError("invalid stream parameters")
    cmd = [
        "ffmpeg",
        "-v",
        "error",
        "-i",
        "pipe:0",
        "-f",
        "f32le",
        "-acodec",
        "pcm_f32le",
        "-",
    ]
    result = _run_tool(cmd, data)
    interleaved = np.frombuffer(result.stdout, dtype="<f4")
    usable = len(interleaved) - len(interleaved) % channels
    samples = interleaved[:usable].reshape(-1, channels).T.astype(np.float32)
    return DecodedAudio(samples=samples, sample_rate=sample_rate)


# --- WAV ---


def _pcm_to_float(raw: bytes, sampwidth: int) -> np.ndarray:
    if sampwidth == 1:
        # 8-bit WAV is unsigned
        return (np.frombuffer(raw, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    if sampwidth == 2:
        return np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    if sampwidth == 3:
        packed = np.frombuffer(raw, dtype=np.uint8).reshape(-1, 3).astype(np.int32)
        values = packed[:, 0] | (packed[:, 1] << 8) | (packed[:, 2] << 16)
        values = np.where(values >= 1 << 23, values - (1 << 24), values)
        return values.astype(np.float32) / float(1 << 23)
    if sampwidth == 4:
        return (np.frombuffer(raw, dtype="<i4").astype(np.float64) / float(1 << 31)).astype(
            np.float32
        )
    raise AudioDecodeError(f"unsupported WAV sample width: {sampwidth * 8} bits")


def _decode_wav(data: bytes) -> DecodedAudio:
    try:
        with wave.open(io.BytesIO(data), "rb") as wf:
            channels = wf.getnchannels()
            sampwidth = wf.getsampwidth()
            sample_rate = wf.getframerate()
            raw = wf.readframes(wf.getnframes())
    except (wave.Error, EOFError) as e:
        raise AudioDecodeError(f"unreadable WAV: {e}") from e

    if sample_rate <= 0 or channels <= 0:
        raise AudioDecodeError("invalid WAV header")
    flat = _pcm_to_float(raw, sampwidth)
    usable = len(flat) - len(flat) % channels
    samples = flat[:usable].reshape(-1, channels).T
    return DecodedAudio(samples=np.ascontiguousarray(samples), sample_rate=sample_rate)


def encode_wav(samples: np.ndarray, sample_rate: int) -> bytes:
    """Encode planar float PCM as 16-bit PCM WAV."""
    clipped = np.clip(samples, -1.0, 1.0)
    pcm = (clipped * 32767.0).round().astype("<i2")
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(int(samples.shape[0]))
        wf.setsampwidth(WAV_SAMPWIDTH)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm.T.tobytes())
    return buffer.getvalue()


def _encode_lossy(samples: np.ndarray, sample_rate: int, audio_format: str) -> bytes:
    codec, muxer = _LOSSY_ENCODERS[audio_format]
    cmd = [
        "ffmpeg",
        "-v",
        "error",
        "-f",
        "f32le",
        "-ar",
        str(sample_rate),
        "-ac",
        str(int(samples.shape[0])),
        "-i",
        "pipe:0",
        "-c:a",
        codec,
        "-b:a",
        f"{LOSSY_BITRATE_KBPS}k",
        "-f",
        muxer,
        "-",
    ]
    interleaved = np.ascontiguousarray(samples.T, dtype="<f4").tobytes()
    result = _run_tool(cmd, interleaved)
    if not result.stdout:
        raise AudioDecodeError("encoder produced no output")
    return result.stdout


# --- Public API ---


def decode_pcm(data: bytes, source_format: str | None = None) -> DecodedAudio:
    """Decode audio bytes to planar float32 PCM at the source sample rate.

    Raises:
        AudioDecodeError: Empty, unreadable, or undecodable input.
    """
    if not data:
        raise AudioDecodeError("audio is empty")
    audio_format = source_format or sniff_format(data)
    if audio_format == "wav":
        return _decode_wav(data)
    return _decode_with_ffmpeg(data)


def probe_duration_ms(data: bytes, source_format: str | None = None) -> float | None:
    """Decoded duration of the audio, independent of any stored pad timings.

    Returns:
        Duration in milliseconds, or None if the audio cannot be decoded.
    """
    audio_format = source_format or sniff_format(data)
    if audio_format == "wav":
        # Header-only read; falls through to a full decode if it fails
        meta = extract_audio_metadata(data)
        if meta.duration_sec is not None:
            return meta.duration_sec * 1000.0
    try:
        return decode_pcm(data, audio_format).duration_ms
    except AudioDecodeError as e:
        logger.warning("Could not probe audio duration: %s", e.message)
        return None


def trim(
    source_bytes: bytes,
    start_ms: float,
    end_ms: float,
    source_format: str | None = None,
) -> TrimResult:
    """Cut [start_ms, end_ms) out of the source and re-encode it.

    end_ms == 0 keeps everything after start_ms.

    Raises:
        AudioDecodeError: Source cannot be decoded or the range is empty.
    """
    audio_format = source_format or sniff_format(source_bytes)
    decoded = decode_pcm(source_bytes, audio_format)
    sr = decoded.sample_rate

    start_sample = max(0, math.floor(start_ms / 1000.0 * sr))
    if end_ms > 0:
        end_sample = min(math.floor(end_ms / 1000.0 * sr), decoded.frames)
    else:
        end_sample = decoded.frames
    if end_sample <= start_sample:
        raise AudioDecodeError(
            f"empty trim range: samples {start_sample}..{end_sample} of {decoded.frames}"
        )

    sliced = decoded.samples[:, start_sample:end_sample]
    new_duration_ms = (end_sample - start_sample) / sr * 1000.0

    if is_lossy(audio_format):
        try:
            data = _encode_lossy(sliced, sr, audio_format)
            return TrimResult(data=data, new_duration_ms=new_duration_ms, format=audio_format)
        except AudioDecodeError as e:
            logger.warning("Lossy re-encode failed, falling back to WAV: %s", e.message)

    return TrimResult(
        data=encode_wav(sliced, sr), new_duration_ms=new_duration_ms, format="wav"
    )


__all__ = [
    "DecodedAudio",
    "TrimPlan",
    "TrimResult",
    "decode_pcm",
    "encode_wav",
    "probe_duration_ms",
    "trim",
    "trim_plan",
]


if __name__ == "__main__":
    import sys
    from pathlib import Path

    logging.basicConfig(level=logging.INFO)

    if len(sys.argv) != 5:
        print(f"Usage: {sys.argv[0]} <input> <output> <start_ms> <end_ms>")
        sys.exit(1)

    try:
        trimmed = trim(Path(sys.argv[1]).read_bytes(), float(sys.argv[3]), float(sys.argv[4]))
    except AudioDecodeError as e:
        print(f"Error: {e.error_code} - {e.message}")
        sys.exit(1)

    Path(sys.argv[2]).write_bytes(trimmed.data)
    print(f"Success: {sys.argv[2]} ({trimmed.format})")
    print(f"Duration: {trimmed.new_duration_ms:.1f}ms")
    sys.exit(0)
