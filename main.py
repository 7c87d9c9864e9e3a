"""Application entrypoint."""

from __future__ import annotations

import logging
import os
import sys

from config import STATUS_DISPLAY_S, JsonConfigStore
from dify_client import DifyClient, default_device_info
from formatters import format_elapsed, format_file_size
from hotkey import GlobalHotkeyAdapter
from models import RecordingState, StoredRecording
from overlay import OverlayWindow
from player import PlaybackController, SoundDevicePlayer
from recorder import SoundDeviceRecorder
from session_controller import SessionController
from store import LocalRecordingStore
from upload_pipeline import UploadPipeline

try:
    from PySide6.QtCore import QObject, Signal, QSize
    from PySide6.QtGui import QAction, QIcon, QPixmap, QPainter, QColor, QBrush
    from PySide6.QtWidgets import QApplication, QInputDialog, QMenu, QMessageBox, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))  # transparent background
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


ICON_COLORS = {
    RecordingState.IDLE.value: "#888888",       # grey
    RecordingState.CAPTURING.value: "#FF4444",  # red
    RecordingState.PAUSED.value: "#FFD60A",     # yellow
    RecordingState.FINALIZED.value: "#44AA44",  # green
}

TOOLTIPS = {
    RecordingState.IDLE.value: "Ready",
    RecordingState.CAPTURING.value: "Recording",
    RecordingState.PAUSED.value: "Paused",
    RecordingState.FINALIZED.value: "Finished",
}


class UIBridge(QObject):
    state_signal = Signal(str, str)  # from_state, to_state
    status_signal = Signal(str, bool)
    tick_signal = Signal(float)
    recordings_signal = Signal()


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store = JsonConfigStore()
        self.overlay = OverlayWindow()
        self.ui = UIBridge()
        self.ui.state_signal.connect(self._on_state_change_ui)
        self.ui.status_signal.connect(self._on_status_ui)
        self.ui.tick_signal.connect(self._on_tick_ui)
        self.ui.recordings_signal.connect(self._rebuild_recordings_menu)

        store = LocalRecordingStore(self.config_store.get_recordings_dir())
        self.client = DifyClient(
            api_key=self.config_store.get_api_key(),
            upload_endpoint=self.config_store.get_upload_endpoint(),
            workflow_endpoint=self.config_store.get_workflow_endpoint(),
            user=self.config_store.get_user(),
            device=default_device_info(self.config_store.get_source_label()),
            request_timeout_s=self.config_store.get_request_timeout_s(),
        )
        self.tray = QSystemTrayIcon()
        self.recordings_menu = QMenu("Recordings")
        self.controller = SessionController(
            capture_device=SoundDeviceRecorder(),
            store=store,
            pipeline=UploadPipeline(self.client, store),
            player=PlaybackController(SoundDevicePlayer()),
            keep_after_upload=self.config_store.get_keep_after_upload(),
            on_state_change=self._on_state_change,
            on_status=self._on_status,
            on_tick=self._on_tick,
            on_recordings_changed=self._on_recordings_changed,
        )
        self.hotkey = GlobalHotkeyAdapter(hotkey_name=self.config_store.get_hotkey())

        self.tray.setIcon(_create_icon(ICON_COLORS[RecordingState.IDLE.value]))
        self.tray.setToolTip("Voice Memo — Ready")
        self._setup_menu()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()

        self.record_action = QAction("Start Recording", menu)
        self.record_action.triggered.connect(self.controller.toggle)
        menu.addAction(self.record_action)

        upload_action = QAction("Stop && Upload", menu)
        upload_action.triggered.connect(self.controller.stop_and_upload)
        menu.addAction(upload_action)

        discard_action = QAction("Discard Recording", menu)
        discard_action.triggered.connect(self.controller.discard)
        menu.addAction(discard_action)

        menu.addSeparator()
        menu.addMenu(self.recordings_menu)
        self._rebuild_recordings_menu()

        keep_action = QAction("Keep Recordings After Upload", menu)
        keep_action.setCheckable(True)
        keep_action.setChecked(self.controller.keep_after_upload)
        keep_action.toggled.connect(self._set_keep_after_upload)
        menu.addAction(keep_action)

        api_action = QAction("Set API Key", menu)
        api_action.triggered.connect(self._set_api_key)
        menu.addAction(api_action)

        hotkey_action = QAction("Set Hotkey", menu)
        hotkey_action.triggered.connect(self._set_hotkey)
        menu.addAction(hotkey_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)

    def _rebuild_recordings_menu(self) -> None:
        self.recordings_menu.clear()
        recordings = self.controller.recordings
        if not recordings:
            empty = QAction("No recordings", self.recordings_menu)
            empty.setEnabled(False)
            self.recordings_menu.addAction(empty)
            return
        for recording in recordings:
            self.recordings_menu.addMenu(self._recording_submenu(recording))
        self.recordings_menu.addSeparator()
        delete_all = QAction("Delete All", self.recordings_menu)
        delete_all.triggered.connect(self._delete_all)
        self.recordings_menu.addAction(delete_all)

    def _recording_submenu(self, recording: StoredRecording) -> QMenu:
        title = f"{recording.created_at:%Y-%m-%d %H:%M}  ({format_file_size(recording.size_bytes)})"
        submenu = QMenu(title, self.recordings_menu)
        path = recording.path
        # triggered(bool) passes "checked"; keep it out of the controller calls.
        for label, handler in (
            ("Play / Pause", lambda checked=False: self.controller.toggle_playback(path)),
            ("Upload", lambda checked=False: self.controller.upload_file(path)),
            ("Delete", lambda checked=False: self.controller.delete_recording(path)),
        ):
            action = QAction(label, submenu)
            action.triggered.connect(handler)
            submenu.addAction(action)
        return submenu

    def _delete_all(self) -> None:
        answer = QMessageBox.question(None, "Delete All", "Delete all saved recordings?")
        if answer == QMessageBox.Yes:
            self.controller.delete_all_recordings()

    def _set_keep_after_upload(self, keep: bool) -> None:
        self.controller.keep_after_upload = keep
        self.config_store.set_keep_after_upload(keep)

    def _set_api_key(self) -> None:
        value, ok = QInputDialog.getText(None, "API Key", "Dify API Key")
        if not ok:
            return
        self.config_store.set_api_key(value)
        self.client.set_api_key(value)
        QMessageBox.information(None, "Saved", "API Key saved and applied.")

    def _set_hotkey(self) -> None:
        value, ok = QInputDialog.getText(
            None, "Hotkey", "Use pynput key format, e.g. Key.alt_l"
        )
        if not ok or not value:
            return
        self.config_store.set_hotkey(value)
        QMessageBox.information(None, "Saved", "Hotkey saved. Restart app to apply.")

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: RecordingState, to_state: RecordingState) -> None:
        self.ui.state_signal.emit(from_state.value, to_state.value)

    def _on_status(self, message: str | None, success: bool) -> None:
        self.ui.status_signal.emit(message or "", success)

    def _on_tick(self, elapsed: float) -> None:
        self.ui.tick_signal.emit(elapsed)

    def _on_recordings_changed(self, recordings: list) -> None:
        self.ui.recordings_signal.emit()

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_state_change_ui(self, from_state: str, to_state: str) -> None:
        self.tray.setIcon(_create_icon(ICON_COLORS[to_state]))
        self.tray.setToolTip(f"Voice Memo — {TOOLTIPS[to_state]}")
        if to_state == RecordingState.CAPTURING.value:
            self.record_action.setText("Pause Recording")
            self.overlay.show_timer(self.controller.formatted_elapsed)
        else:
            self.record_action.setText(
                "Resume Recording" if to_state == RecordingState.PAUSED.value else "Start Recording"
            )
            if to_state == RecordingState.IDLE.value:
                self.overlay.hide_with_delay(400)

    def _on_status_ui(self, message: str, success: bool) -> None:
        if not message:
            if self.controller.state != RecordingState.CAPTURING:
                self.overlay.hide_with_delay(0)
            return
        if self.controller.is_uploading:
            self.tray.setToolTip(f"Voice Memo — {message}")
        self.overlay.show_status(
            message, success, hide_after_ms=int(STATUS_DISPLAY_S * 1000) if success else None
        )

    def _on_tick_ui(self, elapsed: float) -> None:
        if self.controller.state == RecordingState.CAPTURING:
            self.overlay.show_timer(format_elapsed(elapsed))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        try:
            self.hotkey.start(
                on_tap=self.controller.toggle,
                on_long_press=self.controller.stop_and_upload,
            )
        except Exception as exc:
            self.overlay.show_status(f"Hotkey disabled: {exc}", success=False, hide_after_ms=2000)
        return self.app.exec()

    def quit(self) -> None:
        self.hotkey.stop()
        self.controller.shutdown()
        self.app.quit()


def main() -> int:
    logging.basicConfig(
        level=os.getenv("VOICE_MEMO_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
