"""Read duration and format details from a finished recording."""

from __future__ import annotations

import logging
from pathlib import Path

from models import AudioProbe, CaptureConfig

logger = logging.getLogger(__name__)

try:
    from pydub import AudioSegment
except Exception:  # pragma: no cover
    AudioSegment = None  # type: ignore


def estimate_duration(size_bytes: int, bitrate: int) -> float:
    """Duration implied by ``size_bytes`` at a constant ``bitrate`` (bits/s)."""
    return size_bytes / (bitrate / 8.0)


def probe_audio(path: Path, size_bytes: int, config: CaptureConfig = CaptureConfig()) -> AudioProbe:
    """Decode the container to get its real duration.

    If the file cannot be decoded (e.g. the container trailer is missing),
    the duration is estimated from the file size and the fixed bitrate and
    the fixed capture format is reported.
    """
    if AudioSegment is not None:
        try:
            segment = AudioSegment.from_file(str(path))
            return AudioProbe(
                duration_s=len(segment) / 1000.0,
                sample_rate=int(segment.frame_rate),
                channels=int(segment.channels),
            )
        except Exception as exc:
            logger.warning("Could not read audio properties of %s: %s", Path(path).name, exc)
    return AudioProbe(
        duration_s=estimate_duration(size_bytes, config.bitrate),
        sample_rate=config.sample_rate,
        channels=config.channels,
        estimated=True,
    )
