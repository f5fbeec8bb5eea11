"""padvault - Audio metadata extraction utilities.

Formats are sniffed from magic bytes because stored blobs carry no file name
or MIME type. WAV metadata is read with the stdlib wave module; everything
else is probed with ffprobe by the transcode worker.
"""

import io
import wave
from dataclasses import dataclass

# Formats re-encoded lossy after a trim
LOSSY_FORMATS = frozenset({"mp3", "ogg"})


@dataclass
class RawAudioMetadata:
    """Raw audio metadata (best-effort). Fields are None when unknown."""

    duration_sec: float | None = None
    sample_rate: int | None = None
    channels: int | None = None
    sample_width: int | None = None
    format_guess: str | None = None


def sniff_format(data: bytes) -> str | None:
    """Guess the container format from the leading bytes.

    Args:
        data: Audio bytes (only the first 12 bytes are inspected).

    Returns:
        "wav", "mp3", "ogg", "flac", "m4a", or None if unrecognized.
    """
    head = bytes(data[:12])
    if len(head) >= 12 and head[:4] == b"RIFF" and head[8:12] == b"WAVE":
        return "wav"
    if head[:3] == b"ID3":
        return "mp3"
    # MPEG audio frame sync: 11 set bits
    if len(head) >= 2 and head[0] == 0xFF and (head[1] & 0xE0) == 0xE0:
        return "mp3"
    if head[:4] == b"OggS":
        return "ogg"
    if head[:4] == b"fLaC":
        return "flac"
    if len(head) >= 8 and head[4:8] == b"ftyp":
        return "m4a"
    return None


def is_lossy(audio_format: str | None) -> bool:
    return audio_format in LOSSY_FORMATS


def extract_wav_metadata(data: bytes) -> RawAudioMetadata:
    """Read WAV header fields from in-memory bytes.

    Raises:
        wave.Error: If the bytes are not a PCM WAV file.
        EOFError: If the header is truncated.
    """
    with wave.open(io.BytesIO(data), "rb") as wf:
        sample_rate = wf.getframerate()
        n_frames = wf.getnframes()
        return RawAudioMetadata(
            duration_sec=n_frames / sample_rate if sample_rate > 0 else None,
            sample_rate=sample_rate,
            channels=wf.getnchannels(),
            sample_width=wf.getsampwidth(),
            format_guess="wav",
        )


def extract_audio_metadata(data: bytes) -> RawAudioMetadata:
    """Best-effort metadata from bytes. Never raises.

    Non-WAV input only gets its sniffed format filled in.
    """
    format_guess = sniff_format(data)
    if format_guess == "wav":
        try:
            return extract_wav_metadata(data)
        except (wave.Error, EOFError):
            pass
    return RawAudioMetadata(format_guess=format_guess)


__all__ = [
    "LOSSY_FORMATS",
    "RawAudioMetadata",
    "sniff_format",
    "is_lossy",
    "extract_wav_metadata",
    "extract_audio_metadata",
]
