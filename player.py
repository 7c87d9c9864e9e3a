"""Speaker playback adapter and the single-stream playback controller."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Optional

from config import TICK_INTERVAL_S
from interfaces import PlaybackDevice, PlaybackStream
from ticker import PeriodicTicker

logger = logging.getLogger(__name__)

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

try:
    from pydub import AudioSegment
except Exception:  # pragma: no cover
    AudioSegment = None  # type: ignore


class SoundDevicePlayback:
    """Plays a decoded int16 buffer through a PortAudio output stream."""

    def __init__(self, samples: Any, sample_rate: int, channels: int) -> None:
        self._samples = samples
        self._sample_rate = sample_rate
        self._pos = 0
        self.duration = len(samples) / float(sample_rate)
        self.finished = False
        self.error: Optional[Exception] = None
        self._stream = sd.OutputStream(
            samplerate=sample_rate,
            channels=channels,
            dtype="int16",
            callback=self._on_audio,
        )
        self._stream.start()

    def pause(self) -> None:
        self._stream.stop()

    def resume(self) -> None:
        self._stream.start()

    def stop(self) -> None:
        self._stream.stop()
        self._stream.close()

    def current_position(self) -> float:
        return self._pos / float(self._sample_rate)

    def _on_audio(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        try:
            chunk = self._samples[self._pos:self._pos + frames]
            n = len(chunk)
            outdata[:n] = chunk
            self._pos += n
        except Exception as exc:
            self.error = exc
            raise sd.CallbackAbort() from exc
        if n < frames:
            outdata[n:] = 0
            self.finished = True
            raise sd.CallbackStop()


class SoundDevicePlayer:
    def open(self, path: Path) -> SoundDevicePlayback:
        if sd is None or np is None:
            raise RuntimeError("sounddevice is not installed")
        if AudioSegment is None:
            raise RuntimeError("pydub is not installed")
        segment = AudioSegment.from_file(str(path)).set_sample_width(2)
        samples = np.array(segment.get_array_of_samples(), dtype=np.int16)
        samples = samples.reshape(-1, segment.channels)
        logger.info("Playing %s (%.1f s)", Path(path).name, segment.duration_seconds)
        return SoundDevicePlayback(samples, segment.frame_rate, segment.channels)


class PlaybackController:
    """Owns the one playback stream and polls its position while playing."""

    def __init__(
        self,
        device: PlaybackDevice,
        tick_interval_s: float = TICK_INTERVAL_S,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self._device = device
        self._on_change = on_change
        self._lock = threading.RLock()
        self._stream: Optional[PlaybackStream] = None
        self._ticker = PeriodicTicker(tick_interval_s, self._tick)
        self.current_path: Optional[Path] = None
        self.is_playing = False
        self.current_time = 0.0
        self.duration = 0.0

    @property
    def active(self) -> bool:
        return self._stream is not None

    def play(self, path: Path) -> bool:
        with self._lock:
            self.stop()
            try:
                stream = self._device.open(Path(path))
            except Exception as exc:
                logger.error("Failed to play %s: %s", Path(path).name, exc)
                return False
            self._stream = stream
            self.current_path = Path(path)
            self.duration = stream.duration
            self.is_playing = True
            self._ticker.start()
        self._notify()
        return True

    def toggle(self, path: Path) -> bool:
        with self._lock:
            if self.current_path == Path(path) and self._stream is not None:
                if self.is_playing:
                    self.pause()
                    return True
                return self.resume()
        return self.play(path)

    def pause(self) -> None:
        with self._lock:
            if self._stream is None or not self.is_playing:
                return
            self._ticker.cancel()
            self._safe(self._stream.pause)
            self.is_playing = False
        logger.info("Paused playback")
        self._notify()

    def resume(self) -> bool:
        with self._lock:
            if self._stream is None or self.is_playing:
                return self._stream is not None
            try:
                self._stream.resume()
            except Exception as exc:
                logger.error("Failed to resume playback: %s", exc)
                return False
            self.is_playing = True
            self._ticker.start()
        self._notify()
        return True

    def stop(self) -> None:
        with self._lock:
            self._ticker.cancel()
            stream = self._stream
            if stream is None:
                return
            self._stream = None
            self._safe(stream.stop)
            self.current_path = None
            self.is_playing = False
            self.current_time = 0.0
            self.duration = 0.0
        logger.info("Stopped playback")
        self._notify()

    def _tick(self) -> None:
        stream = self._stream
        if stream is None:
            return
        self.current_time = stream.current_position()
        if stream.error is not None:
            logger.error("Playback error: %s", stream.error)
            self._stop_if_current(stream)
        elif stream.finished:
            logger.info("Playback finished")
            self._stop_if_current(stream)
        else:
            self._notify()

    def _stop_if_current(self, stream: PlaybackStream) -> None:
        # Only the stream this tick observed; play() may have replaced it.
        with self._lock:
            if self._stream is not stream:
                return
            self.stop()

    def _notify(self) -> None:
        if self._on_change:
            self._on_change()

    def _safe(self, action: Callable[[], None]) -> None:
        try:
            action()
        except Exception:
            logger.exception("Playback device call failed")
