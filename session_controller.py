"""State-machine based recording session orchestration."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from config import MIN_UPLOAD_BYTES, STATUS_DISPLAY_S, TICK_INTERVAL_S
from errors import (
    ALREADY_IN_PROGRESS,
    CAPTURE_UNAVAILABLE,
    ERROR_MESSAGES,
    FINALIZE_FAILED,
    NO_RECORDING,
    PLAYBACK_FAILED,
    RESUME_FAILED,
)
from formatters import format_elapsed
from interfaces import CaptureDevice, CaptureStream
from models import (
    CaptureConfig,
    RecordingSession,
    RecordingState,
    StoredRecording,
    UploadPhase,
    UploadResult,
)
from player import PlaybackController
from store import LocalRecordingStore
from ticker import PeriodicTicker
from upload_pipeline import UploadPipeline

logger = logging.getLogger(__name__)

StateCallback = Callable[[RecordingState, RecordingState], None]
StatusCallback = Callable[[Optional[str], bool], None]
ErrorCallback = Callable[[str, str], None]
TickCallback = Callable[[float], None]
RecordingsCallback = Callable[[List[StoredRecording]], None]


class SessionController:
    """Owns the one recording session, the local recordings list and upload status.

    State machine: IDLE -> CAPTURING <-> PAUSED -> FINALIZED -> IDLE. Device
    failures leave the state unchanged and are reported through ``on_error``
    and the status message.
    """

    def __init__(
        self,
        capture_device: CaptureDevice,
        store: LocalRecordingStore,
        pipeline: UploadPipeline,
        player: Optional[PlaybackController] = None,
        capture_config: CaptureConfig = CaptureConfig(),
        keep_after_upload: bool = True,
        min_upload_bytes: int = MIN_UPLOAD_BYTES,
        status_display_s: float = STATUS_DISPLAY_S,
        tick_interval_s: float = TICK_INTERVAL_S,
        on_state_change: Optional[StateCallback] = None,
        on_status: Optional[StatusCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_tick: Optional[TickCallback] = None,
        on_recordings_changed: Optional[RecordingsCallback] = None,
    ) -> None:
        self._capture_device = capture_device
        self._store = store
        self._pipeline = pipeline
        self._player = player
        self._capture_config = capture_config
        self.keep_after_upload = keep_after_upload
        self._min_upload_bytes = min_upload_bytes
        self._status_display_s = status_display_s
        self._on_state_change = on_state_change
        self._on_status = on_status
        self._on_error = on_error
        self._on_tick = on_tick
        self._on_recordings_changed = on_recordings_changed

        self._lock = threading.RLock()
        self._session: Optional[RecordingSession] = None
        self._stream: Optional[CaptureStream] = None
        self._ticker = PeriodicTicker(tick_interval_s, self._tick)
        self._timers: List[threading.Timer] = []
        self._status_token = 0
        self._uploading_path: Optional[Path] = None
        self._upload_seq = 0
        self.status_message: Optional[str] = None
        self.upload_success = False
        self.recordings: List[StoredRecording] = []

        self.purge_undersized_files()
        self.refresh_recordings()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> RecordingState:
        session = self._session
        return session.state if session else RecordingState.IDLE

    @property
    def session(self) -> Optional[RecordingSession]:
        return self._session

    @property
    def current_path(self) -> Optional[Path]:
        session = self._session
        return session.path if session else None

    @property
    def elapsed(self) -> float:
        session = self._session
        return session.elapsed if session else 0.0

    @property
    def formatted_elapsed(self) -> str:
        return format_elapsed(self.elapsed)

    @property
    def upload_phase(self) -> UploadPhase:
        return self._pipeline.phase

    @property
    def is_uploading(self) -> bool:
        return self._uploading_path is not None or self._pipeline.in_flight

    @property
    def player(self) -> Optional[PlaybackController]:
        return self._player

    def current_size(self) -> Optional[int]:
        path = self.current_path
        if path is None:
            return None
        return self._store.size_of(path)

    @property
    def is_too_small_to_upload(self) -> bool:
        size = self.current_size()
        if size is None:
            return True
        return size < self._min_upload_bytes

    def recording_info(self, path: Path) -> Optional[Dict[str, Any]]:
        return self._store.info(Path(path))

    # ------------------------------------------------------------------
    # Recording lifecycle
    # ------------------------------------------------------------------

    def toggle(self) -> bool:
        with self._lock:
            if self.state == RecordingState.CAPTURING:
                return self.pause()
            return self.start()

    def start(self) -> bool:
        with self._lock:
            state = self.state
            if state == RecordingState.CAPTURING:
                return True
            if state == RecordingState.PAUSED:
                return self.resume()
            if state == RecordingState.FINALIZED and not self.reset():
                return False

            self._set_status(None)
            if self._player is not None:
                self._player.stop()

            path = self._store.new_recording_path()
            try:
                stream = self._capture_device.open(path, self._capture_config)
            except Exception as exc:
                logger.error("Failed to start recording: %s", exc)
                self._discard_file(path)
                self._report_error(CAPTURE_UNAVAILABLE, f"Recording failed: {exc}")
                return False

            self._stream = stream
            self._session = RecordingSession(path=path, state=RecordingState.IDLE)
            self._set_state(RecordingState.CAPTURING)
            self._ticker.start()
            logger.info("Recording started: %s", path.name)
            return True

    def pause(self) -> bool:
        with self._lock:
            if self.state != RecordingState.CAPTURING or self._stream is None:
                return False
            self._ticker.cancel()
            try:
                self._stream.pause()
            except Exception as exc:
                logger.error("Failed to pause recording: %s", exc)
                self._ticker.start()
                self._report_error(CAPTURE_UNAVAILABLE, f"Pause failed: {exc}")
                return False
            self._session.elapsed = self._stream.current_position()
            self._set_state(RecordingState.PAUSED)
            logger.info("Recording paused at %.1fs", self._session.elapsed)
            return True

    def resume(self) -> bool:
        with self._lock:
            if self.state != RecordingState.PAUSED or self._stream is None:
                return False
            self._set_status(None)
            if self._player is not None:
                self._player.stop()
            try:
                self._stream.resume()
            except Exception as exc:
                logger.error("Failed to resume recording: %s", exc)
                self._report_error(RESUME_FAILED, "Failed to resume recording")
                return False
            self._set_state(RecordingState.CAPTURING)
            self._ticker.start()
            logger.info("Recording resumed: %s", self._session.path.name)
            return True

    def finalize(self) -> bool:
        with self._lock:
            if self.state != RecordingState.PAUSED or self._stream is None:
                return False
            try:
                self._stream.stop()
            except Exception as exc:
                logger.error("Failed to finalize recording: %s", exc)
                self._report_error(FINALIZE_FAILED, f"Failed to finish recording: {exc}")
                return False
            self._stream = None
            self._set_state(RecordingState.FINALIZED)
            logger.info("Recording finalized: %s", self._session.path.name)
            return True

    def stop_and_finalize(self) -> bool:
        with self._lock:
            if self.state == RecordingState.CAPTURING:
                self.pause()
            if self.state == RecordingState.PAUSED:
                return self.finalize()
            return self.state == RecordingState.FINALIZED

    def reset(self) -> bool:
        with self._lock:
            if self.state != RecordingState.FINALIZED:
                return False
            path = self._session.path
            if self._reject_if_uploading(path):
                return False
            self._set_state(RecordingState.IDLE)
            self._set_status(None)
            if self.keep_after_upload:
                logger.info("Keeping recording file: %s", path.name)
            else:
                self._discard_file(path)
            self.refresh_recordings()
            return True

    def discard(self) -> bool:
        """Drop the active recording and delete its file."""
        with self._lock:
            if self._session is None:
                return False
            if self._reject_if_uploading(self._session.path):
                return False
            self._ticker.cancel()
            if self._stream is not None:
                try:
                    self._stream.stop()
                except Exception:
                    logger.exception("Failed to close capture stream while discarding")
                self._stream = None
            path = self._session.path
            self._set_state(RecordingState.IDLE)
            self._discard_file(path)
            self.refresh_recordings()
            return True

    def shutdown(self) -> None:
        with self._lock:
            for timer in self._timers:
                timer.cancel()
            self._timers.clear()
            if self._player is not None:
                self._player.stop()
            if self._stream is not None:
                self.stop_and_finalize()
            self._ticker.cancel()

    # ------------------------------------------------------------------
    # Local recordings
    # ------------------------------------------------------------------

    def refresh_recordings(self) -> List[StoredRecording]:
        """Rescan the store: audio files other than the active one, at least
        the minimum upload size, newest first."""
        active = self.current_path
        try:
            files = self._store.list_audio_files()
        except OSError as exc:
            logger.error("Error loading saved recordings: %s", exc)
            files = []

        visible = []
        for recording in files:
            if active is not None and recording.path == active:
                continue
            if recording.size_bytes < self._min_upload_bytes:
                logger.debug(
                    "Skipping small file %s (%d bytes)", recording.name, recording.size_bytes
                )
                continue
            visible.append(recording)
        visible.sort(key=lambda r: r.created_at, reverse=True)

        self.recordings = visible
        logger.info("Loaded %d saved recordings", len(visible))
        if self._on_recordings_changed:
            self._on_recordings_changed(list(visible))
        return list(visible)

    def purge_undersized_files(self) -> int:
        """Delete audio files below the minimum size left by interrupted captures."""
        active = self.current_path
        try:
            files = self._store.list_audio_files()
        except OSError as exc:
            logger.error("Error during cleanup: %s", exc)
            return 0

        deleted = 0
        for recording in files:
            if active is not None and recording.path == active:
                continue
            if recording.size_bytes >= self._min_upload_bytes:
                continue
            try:
                self._store.delete(recording.path)
            except OSError as exc:
                logger.warning("Failed to clean up %s: %s", recording.name, exc)
                continue
            logger.info("Cleaned up small file %s (%d bytes)", recording.name, recording.size_bytes)
            deleted += 1
        if deleted:
            logger.info("Cleaned up %d small recordings", deleted)
        return deleted

    def save_as(self, name: str) -> Optional[Path]:
        with self._lock:
            path = self.current_path
            if path is None:
                logger.warning("No current recording to save")
                return None
            if self.state != RecordingState.FINALIZED and not self.stop_and_finalize():
                logger.error("Cannot save %s: recording could not be finalized", path.name)
                return None
            try:
                target = self._store.copy_as(path, name)
            except (OSError, ValueError) as exc:
                logger.error("Failed to save recording as %s: %s", name, exc)
                return None
            logger.info("Saved recording as %s", target.name)
            self.refresh_recordings()
            return target

    def delete_recording(self, path: Path) -> bool:
        path = Path(path)
        with self._lock:
            if path == self.current_path:
                return self.discard()
            if self._reject_if_uploading(path):
                return False
            if self._player is not None and self._player.current_path == path:
                self._player.stop()
            deleted = self._delete_quietly(path)
            self.refresh_recordings()
            return deleted

    def delete_all_recordings(self) -> int:
        with self._lock:
            if self._player is not None and self._player.current_path is not None:
                if any(r.path == self._player.current_path for r in self.recordings):
                    self._player.stop()
            deleted = 0
            for recording in list(self.recordings):
                if recording.path == self._uploading_path:
                    logger.warning("Skipping %s, upload in progress", recording.name)
                    continue
                if self._delete_quietly(recording.path):
                    deleted += 1
            logger.info("Deleted %d recordings", deleted)
            self.refresh_recordings()
            return deleted

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def play(self, path: Path) -> bool:
        with self._lock:
            if self._player is None:
                return False
            if self.state == RecordingState.CAPTURING:
                self.pause()
            if not self._player.play(Path(path)):
                self._report_error(PLAYBACK_FAILED, f"Cannot play {Path(path).name}")
                return False
            return True

    def toggle_playback(self, path: Path) -> bool:
        with self._lock:
            if self._player is None:
                return False
            if self.state == RecordingState.CAPTURING:
                self.pause()
            if not self._player.toggle(Path(path)):
                self._report_error(PLAYBACK_FAILED, f"Cannot play {Path(path).name}")
                return False
            return True

    def pause_playback(self) -> None:
        if self._player is not None:
            self._player.pause()

    def stop_playback(self) -> None:
        if self._player is not None:
            self._player.stop()

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload_file(self, path: Path, reset_after_success: bool = False) -> Optional[threading.Thread]:
        """Upload ``path`` on a worker thread; returns the thread, or None if rejected.

        A rejected call leaves the status and the running upload untouched.
        """
        path = Path(path)
        with self._lock:
            if self.is_uploading:
                logger.warning("Upload already in progress, ignoring %s", path.name)
                return None
            self._uploading_path = path
            self._upload_seq += 1
            seq = self._upload_seq
            self._set_status("Uploading audio...")
            worker = threading.Thread(
                target=self._upload_worker, args=(path, seq, reset_after_success), daemon=True
            )
            worker.start()
            return worker

    def upload_current(self) -> Optional[threading.Thread]:
        path = self.current_path
        if path is None:
            logger.warning("Upload blocked: no current recording")
            self._report_error(NO_RECORDING, "No recording to upload")
            return None
        return self.upload_file(path, reset_after_success=True)

    def stop_and_upload(self) -> Optional[threading.Thread]:
        """Long-press affordance: finalize now, then upload and reset on success."""
        with self._lock:
            if self.current_path is not None and not self.is_uploading:
                self.stop_and_finalize()
            return self.upload_current()

    def _upload_worker(self, path: Path, seq: int, reset_after_success: bool) -> None:
        result = self._pipeline.submit(path, prepare=self._finalize_if_active)
        self._handle_upload_result(path, seq, result, reset_after_success)

    def _finalize_if_active(self, path: Path) -> None:
        with self._lock:
            if path == self.current_path and self.state in (
                RecordingState.CAPTURING,
                RecordingState.PAUSED,
            ):
                logger.info("Finalizing %s before upload", path.name)
                self.stop_and_finalize()

    def _handle_upload_result(
        self, path: Path, seq: int, result: UploadResult, reset: bool
    ) -> None:
        with self._lock:
            if self._uploading_path == path:
                self._uploading_path = None
            if not result.success:
                # The message stays until superseded; only the phase times out.
                self._report_error(result.code, f"Upload failed: {result.message}")
                self._schedule(self._clear_phase, seq)
                return
            token = self._set_status("Upload successful!", success=True)
            self._schedule(self._end_success_display, path, token, seq, reset)

    def _end_success_display(self, path: Path, token: int, seq: int, reset: bool) -> None:
        with self._lock:
            if reset and path == self.current_path and self.state == RecordingState.FINALIZED:
                self.reset()
            elif token == self._status_token:
                self._set_status(None)
            self._clear_phase(seq)

    def _clear_phase(self, seq: int) -> None:
        with self._lock:
            if seq == self._upload_seq:
                self._pipeline.clear()

    def _reject_if_uploading(self, path: Optional[Path]) -> bool:
        if path is None or path != self._uploading_path:
            return False
        logger.warning("%s is being uploaded", path.name)
        self._report_error(ALREADY_IN_PROGRESS, ERROR_MESSAGES[ALREADY_IN_PROGRESS])
        return True

    def _schedule(self, fn: Callable[..., None], *args: Any) -> None:
        self._timers = [t for t in self._timers if t.is_alive()]
        timer = threading.Timer(self._status_display_s, fn, args=args)
        timer.daemon = True
        self._timers.append(timer)
        timer.start()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _tick(self) -> None:
        stream = self._stream
        session = self._session
        if stream is None or session is None:
            return
        session.elapsed = stream.current_position()
        if self._on_tick:
            self._on_tick(session.elapsed)

    def _discard_file(self, path: Path) -> None:
        if self._store.exists(path):
            self._delete_quietly(path)

    def _delete_quietly(self, path: Path) -> bool:
        try:
            self._store.delete(path)
        except OSError as exc:
            logger.error("Failed to delete %s: %s", path.name, exc)
            return False
        logger.info("Deleted recording: %s", path.name)
        return True

    def _set_status(self, message: Optional[str], success: bool = False) -> int:
        self._status_token += 1
        self.status_message = message
        self.upload_success = success
        if self._on_status:
            self._on_status(message, success)
        return self._status_token

    def _report_error(self, code: str, message: str) -> None:
        self._set_status(message)
        if self._on_error:
            self._on_error(code, message)

    def _set_state(self, to_state: RecordingState) -> None:
        from_state = self.state
        if to_state == RecordingState.IDLE:
            self._session = None
        else:
            self._session.state = to_state
        if from_state != to_state and self._on_state_change:
            self._on_state_change(from_state, to_state)
