"""Overlay window showing the recording timer and upload status."""

from __future__ import annotations

try:
    from PySide6.QtCore import Qt, QTimer
    from PySide6.QtWidgets import QApplication, QLabel, QWidget, QVBoxLayout
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QApplication = None  # type: ignore
    QLabel = object  # type: ignore
    QWidget = object  # type: ignore
    QVBoxLayout = object  # type: ignore

_BASE_STYLE = "font-size: 18px; padding: 12px 16px; border-radius: 12px;"
STYLE_TIMER = "color: white; background: rgba(0,0,0,190);" + _BASE_STYLE
STYLE_SUCCESS = "color: #FFD60A; background: rgba(0,0,0,210);" + _BASE_STYLE
STYLE_FAILURE = "color: #FF6B6B; background: rgba(0,0,0,210);" + _BASE_STYLE


class OverlayWindow(QWidget):
    def __init__(self) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowFlags(
            Qt.WindowStaysOnTopHint | Qt.FramelessWindowHint | Qt.Tool
        )
        self.setAttribute(Qt.WA_TranslucentBackground, True)
        self.setMinimumWidth(220)

        self._label = QLabel("")
        self._label.setAlignment(Qt.AlignCenter)
        self._label.setStyleSheet(STYLE_TIMER)

        layout = QVBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.addWidget(self._label)
        self.setLayout(layout)

        self._hide_timer: QTimer | None = None

    def _top_right(self) -> None:
        if QApplication is None:
            return
        screen = QApplication.primaryScreen()
        if screen is None:
            return
        geom = screen.availableGeometry()
        self.adjustSize()
        self.move(geom.x() + geom.width() - self.width() - 24, geom.y() + 40)

    def show_timer(self, text: str) -> None:
        """Show the running MM:SS timer until hidden."""
        self._cancel_hide_timer()
        self._label.setStyleSheet(STYLE_TIMER)
        self._label.setText(f"● {text}")
        self._top_right()
        self.show()

    def show_status(self, text: str, success: bool, hide_after_ms: int | None = None) -> None:
        self._cancel_hide_timer()
        self._label.setStyleSheet(STYLE_SUCCESS if success else STYLE_FAILURE)
        self._label.setText(("✓ " if success else "✗ ") + text)
        self._top_right()
        self.show()
        if hide_after_ms is not None:
            self.hide_with_delay(hide_after_ms)

    def hide_with_delay(self, delay_ms: int = 400) -> None:
        self._cancel_hide_timer()
        if QTimer is not None:
            self._hide_timer = QTimer()
            self._hide_timer.setSingleShot(True)
            self._hide_timer.timeout.connect(self.hide)
            self._hide_timer.start(delay_ms)

    def _cancel_hide_timer(self) -> None:
        if self._hide_timer is not None:
            self._hide_timer.stop()
            self._hide_timer = None
