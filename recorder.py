"""Microphone recorder adapter writing AAC in an M4A container."""

from __future__ import annotations

import logging
import subprocess
import threading
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, List

from models import CaptureConfig

logger = logging.getLogger(__name__)

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

# ffmpeg muxer per container extension.
_MUXERS = {"m4a": "ipod", "aac": "adts", "mp3": "mp3", "wav": "wav"}


def encoder_command(path: Path, config: CaptureConfig, ffmpeg: str = "ffmpeg") -> List[str]:
    """Build the ffmpeg command that encodes s16le PCM from stdin into ``path``."""
    return [
        ffmpeg,
        "-hide_banner",
        "-loglevel",
        "error",
        "-y",
        "-f",
        "s16le",
        "-ar",
        str(config.sample_rate),
        "-ac",
        str(config.channels),
        "-i",
        "pipe:0",
        "-c:a",
        config.codec,
        "-b:a",
        str(config.bitrate),
        "-f",
        _MUXERS.get(config.container, config.container),
        str(path),
    ]


class CaptureStream:
    """One open capture: PortAudio input stream feeding an ffmpeg encoder.

    The encoder stays open across pause/resume so the same file keeps
    growing; ``stop()`` closes its stdin so ffmpeg writes the container
    trailer.
    """

    def __init__(
        self,
        path: Path,
        config: CaptureConfig,
        chunk_ms: int = 100,
        queue_maxsize: int = 50,
        ffmpeg: str = "ffmpeg",
    ) -> None:
        self.path = path
        self.config = config
        self.dropped_chunks = 0
        self._frames = 0
        self._running = False
        self._closed = False
        self._lock = threading.Lock()
        self._queue: Queue[bytes | None] = Queue(maxsize=queue_maxsize)

        self._encoder = subprocess.Popen(
            encoder_command(path, config, ffmpeg),
            stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
        )
        self._writer = threading.Thread(target=self._write_loop, daemon=True)
        self._writer.start()

        blocksize = int(config.sample_rate * (chunk_ms / 1000.0))
        try:
            self._stream: Any = sd.InputStream(
                samplerate=config.sample_rate,
                channels=config.channels,
                dtype="int16",
                blocksize=blocksize,
                callback=self._on_audio,
            )
            self._stream.start()
        except Exception:
            self._close_encoder()
            raise
        self._running = True

    def pause(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._stream.stop()

    def resume(self) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError("capture stream is closed")
            if self._running:
                return
            self._stream.start()
            self._running = True

    def stop(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._running = False
            self._stream.stop()
            self._stream.close()
        self._close_encoder()
        if self._encoder.returncode not in (0, None):
            stderr = self._encoder.stderr.read().decode("utf-8", "replace") if self._encoder.stderr else ""
            raise RuntimeError(f"encoder exited with {self._encoder.returncode}: {stderr.strip()}")

    def current_position(self) -> float:
        return self._frames / float(self.config.sample_rate)

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running:
            return
        if np is None:
            return
        if status:
            logger.debug("Input stream status: %s", status)
        payload = np.asarray(indata, dtype=np.int16).tobytes()
        self._frames += frames
        try:
            self._queue.put_nowait(payload)
        except Full:
            self.dropped_chunks += 1

    def _write_loop(self) -> None:
        stdin = self._encoder.stdin
        while True:
            try:
                chunk = self._queue.get(timeout=0.2)
            except Empty:
                if self._encoder.poll() is not None:
                    return
                continue
            if chunk is None:  # Sentinel
                return
            try:
                stdin.write(chunk)
            except (BrokenPipeError, ValueError, OSError):
                logger.error("Encoder pipe closed while writing %s", self.path.name)
                return

    def _close_encoder(self) -> None:
        try:
            self._queue.put(None, timeout=1.0)
        except Full:
            logger.warning("Writer queue full, %s may be truncated", self.path.name)
        self._writer.join(timeout=2.0)
        try:
            if self._encoder.stdin:
                self._encoder.stdin.close()
        except OSError:
            pass
        try:
            self._encoder.wait(timeout=10.0)
        except subprocess.TimeoutExpired:
            logger.error("Encoder did not exit, killing it")
            self._encoder.kill()
            self._encoder.wait()


class SoundDeviceRecorder:
    def __init__(self, chunk_ms: int = 100, ffmpeg: str = "ffmpeg") -> None:
        self.chunk_ms = chunk_ms
        self.ffmpeg = ffmpeg

    def open(self, path: Path, config: CaptureConfig) -> CaptureStream:
        if sd is None:
            raise RuntimeError("sounddevice is not installed")
        logger.info(
            "Opening capture %s (%d Hz, %d ch, %s @ %d bps)",
            path.name,
            config.sample_rate,
            config.channels,
            config.codec,
            config.bitrate,
        )
        return CaptureStream(path, config, chunk_ms=self.chunk_ms, ffmpeg=self.ffmpeg)
