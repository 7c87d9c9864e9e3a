from __future__ import annotations

import os
import threading
import time
from pathlib import Path

from errors import (
    ALREADY_IN_PROGRESS,
    CAPTURE_UNAVAILABLE,
    FINALIZE_FAILED,
    RESUME_FAILED,
    SERVER_ERROR,
    UploadError,
)
from models import RecordingState, UploadPhase
from player import PlaybackController
from session_controller import SessionController
from store import LocalRecordingStore
from upload_pipeline import UploadPipeline

KIB = 1024


class FakeCaptureStream:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.path.write_bytes(b"")
        self.paused = False
        self.stopped = False
        self.position = 0.0
        self.fail_resume = False
        self.fail_stop = False

    def grow(self, n_bytes: int) -> None:
        with open(self.path, "ab") as fh:
            fh.write(b"\x00" * n_bytes)

    def pause(self) -> None:
        self.paused = True

    def resume(self) -> None:
        if self.fail_resume:
            raise RuntimeError("device busy")
        self.paused = False

    def stop(self) -> None:
        if self.fail_stop:
            raise RuntimeError("flush failed")
        self.stopped = True

    def current_position(self) -> float:
        return self.position


class FakeCaptureDevice:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.streams: list[FakeCaptureStream] = []

    def open(self, path, config) -> FakeCaptureStream:  # noqa: ANN001
        if self.error is not None:
            raise self.error
        stream = FakeCaptureStream(path)
        self.streams.append(stream)
        return stream


class FakeClient:
    def __init__(
        self,
        file_id: str = "abc123",
        upload_error: Exception | None = None,
        workflow_error: Exception | None = None,
    ) -> None:
        self.file_id = file_id
        self.upload_error = upload_error
        self.workflow_error = workflow_error
        self.upload_calls: list[Path] = []
        self.workflow_calls: list[str] = []
        self.on_upload = None

    def upload_file(self, path, audio, created_at) -> str:  # noqa: ANN001
        self.upload_calls.append(path)
        if self.on_upload:
            self.on_upload(path)
        if self.upload_error:
            raise self.upload_error
        return self.file_id

    def run_workflow(self, file_id: str) -> None:
        self.workflow_calls.append(file_id)
        if self.workflow_error:
            raise self.workflow_error


class FakePlaybackStream:
    def __init__(self, path: Path) -> None:
        self.path = path
        self.duration = 4.0
        self.finished = False
        self.error = None
        self.stopped = False
        self.file_present_at_stop: bool | None = None

    def pause(self) -> None:
        pass

    def resume(self) -> None:
        pass

    def stop(self) -> None:
        self.stopped = True
        self.file_present_at_stop = self.path.exists()

    def current_position(self) -> float:
        return 0.0


class FakePlaybackDevice:
    def __init__(self) -> None:
        self.streams: list[FakePlaybackStream] = []

    def open(self, path: Path) -> FakePlaybackStream:
        stream = FakePlaybackStream(path)
        self.streams.append(stream)
        return stream


def _write_audio(directory: Path, name: str, size: int, mtime: float | None = None) -> Path:
    path = directory / name
    path.write_bytes(b"\x00" * size)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def _make_controller(tmp_path: Path, device=None, client=None, **kwargs):  # noqa: ANN001, ANN202
    store = LocalRecordingStore(tmp_path)
    device = device or FakeCaptureDevice()
    client = client or FakeClient()
    controller = SessionController(
        capture_device=device,
        store=store,
        pipeline=UploadPipeline(client, store),
        status_display_s=kwargs.pop("status_display_s", 0.05),
        tick_interval_s=kwargs.pop("tick_interval_s", 0.01),
        **kwargs,
    )
    return controller, device, client, store


def _wait_until(predicate, timeout: float = 2.0) -> bool:  # noqa: ANN001
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# ---------------------------------------------------------------
# State machine
# ---------------------------------------------------------------

def test_start_pause_resume_keeps_same_file(tmp_path: Path) -> None:
    controller, device, _, _ = _make_controller(tmp_path)
    transitions: list[tuple[RecordingState, RecordingState]] = []
    controller._on_state_change = lambda f, t: transitions.append((f, t))

    assert controller.start() is True
    first_path = controller.current_path
    assert controller.pause() is True
    assert controller.resume() is True

    assert controller.state == RecordingState.CAPTURING
    assert controller.current_path == first_path
    assert len(device.streams) == 1
    assert transitions == [
        (RecordingState.IDLE, RecordingState.CAPTURING),
        (RecordingState.CAPTURING, RecordingState.PAUSED),
        (RecordingState.PAUSED, RecordingState.CAPTURING),
    ]
    controller.shutdown()


def test_capture_unavailable_leaves_idle(tmp_path: Path) -> None:
    errors: list[tuple[str, str]] = []
    controller, _, _, _ = _make_controller(
        tmp_path,
        device=FakeCaptureDevice(error=RuntimeError("permission denied")),
        on_error=lambda c, m: errors.append((c, m)),
    )

    assert controller.start() is False

    assert controller.state == RecordingState.IDLE
    assert controller.current_path is None
    assert errors[0][0] == CAPTURE_UNAVAILABLE
    assert "permission denied" in controller.status_message


def test_resume_failure_stays_paused(tmp_path: Path) -> None:
    errors: list[tuple[str, str]] = []
    controller, device, _, _ = _make_controller(
        tmp_path, on_error=lambda c, m: errors.append((c, m))
    )
    controller.start()
    controller.pause()
    device.streams[0].fail_resume = True

    assert controller.resume() is False

    assert controller.state == RecordingState.PAUSED
    assert errors == [(RESUME_FAILED, "Failed to resume recording")]
    controller.shutdown()


def test_finalize_failure_stays_paused(tmp_path: Path) -> None:
    errors: list[tuple[str, str]] = []
    controller, device, _, _ = _make_controller(
        tmp_path, on_error=lambda c, m: errors.append((c, m))
    )
    controller.start()
    device.streams[0].fail_stop = True

    assert controller.stop_and_finalize() is False

    assert controller.state == RecordingState.PAUSED
    assert errors[0][0] == FINALIZE_FAILED


def test_finalize_requires_pause_and_closes_stream(tmp_path: Path) -> None:
    controller, device, _, _ = _make_controller(tmp_path)
    controller.start()

    assert controller.finalize() is False  # still capturing
    assert controller.stop_and_finalize() is True

    assert controller.state == RecordingState.FINALIZED
    assert device.streams[0].stopped is True


def test_toggle_pauses_then_resumes(tmp_path: Path) -> None:
    controller, _, _, _ = _make_controller(tmp_path)

    controller.toggle()
    assert controller.state == RecordingState.CAPTURING
    controller.toggle()
    assert controller.state == RecordingState.PAUSED
    controller.toggle()
    assert controller.state == RecordingState.CAPTURING
    controller.shutdown()


def test_start_from_finalized_begins_new_file(tmp_path: Path) -> None:
    controller, device, _, _ = _make_controller(tmp_path)
    controller.start()
    device.streams[0].grow(60 * KIB)
    first = controller.current_path
    controller.stop_and_finalize()

    controller.start()

    assert controller.state == RecordingState.CAPTURING
    assert controller.current_path != first
    assert first in [r.path for r in controller.recordings]
    controller.shutdown()


def test_elapsed_updates_while_capturing_and_freezes_on_pause(tmp_path: Path) -> None:
    ticks: list[float] = []
    controller, device, _, _ = _make_controller(tmp_path, on_tick=ticks.append)
    controller.start()
    device.streams[0].position = 65.4

    assert _wait_until(lambda: controller.elapsed == 65.4)
    assert controller.formatted_elapsed == "01:05"

    controller.pause()
    device.streams[0].position = 99.0
    time.sleep(0.05)

    assert controller.elapsed == 65.4
    assert ticks
    controller.shutdown()


def test_reset_keeps_file_by_default(tmp_path: Path) -> None:
    controller, device, _, _ = _make_controller(tmp_path)
    controller.start()
    device.streams[0].grow(60 * KIB)
    path = controller.current_path
    controller.stop_and_finalize()

    assert controller.reset() is True

    assert controller.state == RecordingState.IDLE
    assert controller.current_path is None
    assert [r.path for r in controller.recordings] == [path]


def test_reset_deletes_file_when_not_kept(tmp_path: Path) -> None:
    controller, device, _, _ = _make_controller(tmp_path, keep_after_upload=False)
    controller.start()
    device.streams[0].grow(60 * KIB)
    path = controller.current_path
    controller.stop_and_finalize()

    controller.reset()

    assert not path.exists()
    assert controller.recordings == []


def test_discard_deletes_active_file(tmp_path: Path) -> None:
    controller, device, _, _ = _make_controller(tmp_path)
    controller.start()
    device.streams[0].grow(60 * KIB)
    path = controller.current_path

    assert controller.discard() is True

    assert controller.state == RecordingState.IDLE
    assert device.streams[0].stopped is True
    assert not path.exists()


def test_is_too_small_to_upload(tmp_path: Path) -> None:
    controller, device, _, _ = _make_controller(tmp_path)
    assert controller.is_too_small_to_upload is True  # no recording

    controller.start()
    device.streams[0].grow(40 * KIB)
    assert controller.is_too_small_to_upload is True
    device.streams[0].grow(20 * KIB)
    assert controller.is_too_small_to_upload is False
    controller.shutdown()


# ---------------------------------------------------------------
# Local store scan, purge, save-as, delete
# ---------------------------------------------------------------

def test_purge_on_startup_removes_undersized_files(tmp_path: Path) -> None:
    small = _write_audio(tmp_path, "crashed.m4a", 10 * KIB)
    also_small = _write_audio(tmp_path, "partial.wav", 49 * KIB)
    kept = _write_audio(tmp_path, "good.m4a", 60 * KIB)
    notes = _write_audio(tmp_path, "notes.txt", 10)

    controller, _, _, _ = _make_controller(tmp_path)

    assert not small.exists()
    assert not also_small.exists()
    assert kept.exists()
    assert notes.exists()  # not an audio file
    assert [r.path for r in controller.refresh_recordings()] == [kept]


def test_refresh_sorts_newest_first_and_is_idempotent(tmp_path: Path) -> None:
    now = time.time()
    t1 = _write_audio(tmp_path, "a.m4a", 60 * KIB, mtime=now - 300)
    t2 = _write_audio(tmp_path, "b.mp3", 60 * KIB, mtime=now - 200)
    t3 = _write_audio(tmp_path, "c.aac", 60 * KIB, mtime=now - 100)
    controller, _, _, _ = _make_controller(tmp_path)

    first = controller.refresh_recordings()
    second = controller.refresh_recordings()

    assert [r.path for r in first] == [t3, t2, t1]
    assert first == second


def test_refresh_excludes_active_recording(tmp_path: Path) -> None:
    controller, device, _, _ = _make_controller(tmp_path)
    controller.start()
    device.streams[0].grow(60 * KIB)

    assert controller.refresh_recordings() == []
    controller.shutdown()


def test_save_as_copies_active_file(tmp_path: Path) -> None:
    controller, device, _, _ = _make_controller(tmp_path)
    controller.start()
    device.streams[0].grow(60 * KIB)
    controller.stop_and_finalize()
    original = controller.current_path

    saved = controller.save_as("meeting")

    assert saved == tmp_path / "meeting.m4a"
    assert saved.read_bytes() == original.read_bytes()
    assert original.exists()
    assert controller.current_path == original
    assert [r.path for r in controller.recordings] == [saved]


def test_save_as_without_recording_returns_none(tmp_path: Path) -> None:
    controller, _, _, _ = _make_controller(tmp_path)
    assert controller.save_as("nothing") is None


def test_save_as_finalizes_capturing_recording_first(tmp_path: Path) -> None:
    controller, device, _, _ = _make_controller(tmp_path)
    controller.start()
    device.streams[0].grow(60 * KIB)

    saved = controller.save_as("interview")

    assert saved == tmp_path / "interview.m4a"
    assert device.streams[0].stopped is True
    assert controller.state == RecordingState.FINALIZED


def test_save_as_rejects_names_outside_store(tmp_path: Path) -> None:
    store_dir = tmp_path / "memos"
    controller, device, _, _ = _make_controller(store_dir)
    controller.start()
    device.streams[0].grow(60 * KIB)
    controller.stop_and_finalize()

    assert controller.save_as("../escaped") is None
    assert controller.save_as("nested/name") is None
    assert not (tmp_path / "escaped.m4a").exists()
    assert controller.recordings == []


def test_delete_stops_playback_of_target_first(tmp_path: Path) -> None:
    path = _write_audio(tmp_path, "memo.m4a", 60 * KIB)
    playback_device = FakePlaybackDevice()
    player = PlaybackController(playback_device, tick_interval_s=0.01)
    controller, _, _, _ = _make_controller(tmp_path, player=player)
    controller.play(path)

    assert controller.delete_recording(path) is True

    stream = playback_device.streams[0]
    assert stream.stopped is True
    assert stream.file_present_at_stop is True
    assert player.current_path is None
    assert not path.exists()


def test_delete_never_raises_when_remove_fails(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    path = _write_audio(tmp_path, "memo.m4a", 60 * KIB)
    controller, _, _, store = _make_controller(tmp_path)

    def _fail(p: Path) -> None:
        raise PermissionError("read-only")

    monkeypatch.setattr(store, "delete", _fail)

    assert controller.delete_recording(path) is False
    assert path.exists()


def test_delete_all_skips_failures(tmp_path: Path, monkeypatch) -> None:  # noqa: ANN001
    stuck = _write_audio(tmp_path, "stuck.m4a", 60 * KIB)
    _write_audio(tmp_path, "one.m4a", 60 * KIB)
    _write_audio(tmp_path, "two.m4a", 60 * KIB)
    controller, _, _, store = _make_controller(tmp_path)
    real_delete = store.delete

    def _delete(p: Path) -> None:
        if p == stuck:
            raise PermissionError("locked")
        real_delete(p)

    monkeypatch.setattr(store, "delete", _delete)

    assert controller.delete_all_recordings() == 2
    assert [r.path for r in controller.recordings] == [stuck]


def test_recording_info(tmp_path: Path) -> None:
    path = _write_audio(tmp_path, "memo.m4a", 60 * KIB)
    controller, _, _, _ = _make_controller(tmp_path)

    info = controller.recording_info(path)

    assert info["filename"] == "memo.m4a"
    assert info["extension"] == "m4a"
    assert info["size"] == 60 * KIB
    assert controller.recording_info(tmp_path / "missing.m4a") is None


# ---------------------------------------------------------------
# Playback / capture exclusivity
# ---------------------------------------------------------------

def test_start_stops_playback(tmp_path: Path) -> None:
    path = _write_audio(tmp_path, "memo.m4a", 60 * KIB)
    player = PlaybackController(FakePlaybackDevice(), tick_interval_s=0.01)
    controller, _, _, _ = _make_controller(tmp_path, player=player)
    controller.play(path)
    assert player.is_playing is True

    controller.start()

    assert player.is_playing is False
    assert player.current_path is None
    controller.shutdown()


def test_play_pauses_capture(tmp_path: Path) -> None:
    path = _write_audio(tmp_path, "memo.m4a", 60 * KIB)
    player = PlaybackController(FakePlaybackDevice(), tick_interval_s=0.01)
    controller, _, _, _ = _make_controller(tmp_path, player=player)
    controller.start()

    assert controller.play(path) is True

    assert controller.state == RecordingState.PAUSED
    assert player.current_path == path
    controller.shutdown()


# ---------------------------------------------------------------
# Upload
# ---------------------------------------------------------------

def test_stop_and_upload_end_to_end(tmp_path: Path) -> None:
    statuses: list[tuple[str | None, bool]] = []
    controller, device, client, _ = _make_controller(
        tmp_path, on_status=lambda m, s: statuses.append((m, s))
    )
    finalized_at_upload: list[bool] = []
    client.on_upload = lambda p: finalized_at_upload.append(device.streams[0].stopped)

    controller.start()
    device.streams[0].grow(60 * KIB)
    path = controller.current_path

    worker = controller.stop_and_upload()
    assert worker is not None
    worker.join(timeout=2.0)

    assert client.upload_calls == [path]
    assert finalized_at_upload == [True]
    assert client.workflow_calls == ["abc123"]
    assert ("Upload successful!", True) in statuses

    assert _wait_until(lambda: controller.upload_phase == UploadPhase.IDLE)
    assert controller.state == RecordingState.IDLE
    assert controller.current_path is None
    assert controller.status_message is None
    assert [r.path for r in controller.refresh_recordings()] == [path]


def test_upload_current_finalizes_capturing_file(tmp_path: Path) -> None:
    controller, device, client, _ = _make_controller(tmp_path)
    controller.start()
    device.streams[0].grow(60 * KIB)

    worker = controller.upload_current()
    worker.join(timeout=2.0)

    assert device.streams[0].stopped is True
    assert len(client.upload_calls) == 1


def test_upload_without_recording_is_rejected(tmp_path: Path) -> None:
    controller, _, client, _ = _make_controller(tmp_path)

    assert controller.stop_and_upload() is None
    assert client.upload_calls == []
    assert controller.status_message == "No recording to upload"


def test_upload_too_small_reports_and_keeps_session(tmp_path: Path) -> None:
    controller, device, client, _ = _make_controller(tmp_path)
    controller.start()
    device.streams[0].grow(40 * KIB)

    controller.stop_and_upload().join(timeout=2.0)

    assert client.upload_calls == []
    assert controller.status_message == "Upload failed: Recording too short (min 3 seconds)"
    assert controller.state == RecordingState.FINALIZED


def test_upload_failure_message_persists(tmp_path: Path) -> None:
    errors: list[tuple[str, str]] = []
    client = FakeClient(workflow_error=UploadError(SERVER_ERROR, "Workflow failed: HTTP 502", 502))
    controller, device, _, _ = _make_controller(
        tmp_path, client=client, on_error=lambda c, m: errors.append((c, m))
    )
    controller.start()
    device.streams[0].grow(60 * KIB)
    path = controller.current_path

    controller.stop_and_upload().join(timeout=2.0)
    time.sleep(0.15)

    assert errors == [(SERVER_ERROR, "Upload failed: Workflow failed: HTTP 502")]
    assert controller.status_message == "Upload failed: Workflow failed: HTTP 502"
    assert controller.upload_success is False
    assert controller.state == RecordingState.FINALIZED
    assert controller.current_path == path


def test_stored_upload_clears_status_without_reset(tmp_path: Path) -> None:
    path = _write_audio(tmp_path, "memo.m4a", 60 * KIB)
    controller, _, client, _ = _make_controller(tmp_path)

    controller.upload_file(path).join(timeout=2.0)

    assert client.upload_calls == [path]
    assert _wait_until(lambda: controller.upload_phase == UploadPhase.IDLE)
    assert controller.status_message is None
    assert path.exists()


def test_second_upload_while_in_flight_is_rejected(tmp_path: Path) -> None:
    path = _write_audio(tmp_path, "memo.m4a", 60 * KIB)
    gate = threading.Event()
    started = threading.Event()
    client = FakeClient()

    def _block(p: Path) -> None:
        started.set()
        gate.wait(timeout=2.0)

    client.on_upload = _block
    controller, _, _, _ = _make_controller(tmp_path, client=client)

    worker = controller.upload_file(path)
    assert started.wait(timeout=2.0)

    assert controller.upload_file(path) is None

    gate.set()
    worker.join(timeout=2.0)
    assert client.upload_calls == [path]


def test_new_recording_clears_failure_message(tmp_path: Path) -> None:
    controller, device, _, _ = _make_controller(tmp_path)
    controller.start()
    device.streams[0].grow(40 * KIB)
    controller.stop_and_upload().join(timeout=2.0)
    assert controller.status_message is not None

    controller.start()

    assert controller.status_message is None
    controller.shutdown()


def test_failed_upload_phase_returns_to_idle_and_message_stays(tmp_path: Path) -> None:
    path = _write_audio(tmp_path, "memo.m4a", 60 * KIB)
    client = FakeClient(upload_error=UploadError(SERVER_ERROR, "File upload failed: HTTP 500", 500))
    controller, _, _, _ = _make_controller(tmp_path, client=client)

    controller.upload_file(path).join(timeout=2.0)

    assert _wait_until(lambda: controller.upload_phase == UploadPhase.IDLE)
    assert controller.status_message == "Upload failed: File upload failed: HTTP 500"
    assert controller.is_uploading is False


def _blocking_client() -> tuple[FakeClient, threading.Event, threading.Event]:
    client = FakeClient()
    started = threading.Event()
    gate = threading.Event()

    def _block(p: Path) -> None:
        started.set()
        gate.wait(timeout=2.0)

    client.on_upload = _block
    return client, started, gate


def test_start_does_not_reset_file_being_uploaded(tmp_path: Path) -> None:
    errors: list[tuple[str, str]] = []
    client, started, gate = _blocking_client()
    controller, device, _, _ = _make_controller(
        tmp_path,
        client=client,
        keep_after_upload=False,
        on_error=lambda c, m: errors.append((c, m)),
    )
    controller.start()
    device.streams[0].grow(60 * KIB)
    path = controller.current_path

    worker = controller.stop_and_upload()
    assert started.wait(timeout=2.0)

    assert controller.start() is False
    assert controller.discard() is False
    assert controller.delete_recording(path) is False
    assert path.exists()
    assert controller.state == RecordingState.FINALIZED
    assert controller.current_path == path
    assert len(device.streams) == 1
    assert errors[0][0] == ALREADY_IN_PROGRESS

    gate.set()
    worker.join(timeout=2.0)
    assert client.upload_calls == [path]
    assert client.workflow_calls == ["abc123"]

    # Reset after the success display deletes the file under the retention policy.
    assert _wait_until(lambda: controller.upload_phase == UploadPhase.IDLE)
    assert controller.state == RecordingState.IDLE
    assert not path.exists()


def test_stored_file_being_uploaded_is_not_deleted(tmp_path: Path) -> None:
    path = _write_audio(tmp_path, "memo.m4a", 60 * KIB)
    other = _write_audio(tmp_path, "other.m4a", 60 * KIB)
    client, started, gate = _blocking_client()
    controller, _, _, _ = _make_controller(tmp_path, client=client)

    worker = controller.upload_file(path)
    assert started.wait(timeout=2.0)

    assert controller.delete_recording(path) is False
    assert controller.delete_all_recordings() == 1
    assert path.exists()
    assert not other.exists()

    gate.set()
    worker.join(timeout=2.0)


def test_rejected_upload_leaves_status_untouched(tmp_path: Path) -> None:
    path = _write_audio(tmp_path, "memo.m4a", 60 * KIB)
    statuses: list[tuple[str | None, bool]] = []
    client, started, gate = _blocking_client()
    controller, _, _, _ = _make_controller(
        tmp_path, client=client, on_status=lambda m, s: statuses.append((m, s))
    )

    worker = controller.upload_file(path)
    assert started.wait(timeout=2.0)
    assert controller.upload_file(path) is None

    assert statuses == [("Uploading audio...", False)]
    gate.set()
    worker.join(timeout=2.0)
