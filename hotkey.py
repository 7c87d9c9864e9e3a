"""Global hotkey adapter based on pynput.

A tap calls ``on_tap`` on release; holding the key for ``long_press_s``
calls ``on_long_press`` while it is still held and swallows the release.
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from config import LONG_PRESS_S

try:
    from pynput import keyboard
except Exception:  # pragma: no cover
    keyboard = None  # type: ignore


class GlobalHotkeyAdapter:
    def __init__(self, hotkey_name: str = "Key.alt_l", long_press_s: float = LONG_PRESS_S) -> None:
        self._hotkey_name = hotkey_name
        self._long_press_s = long_press_s
        self._listener: Optional[object] = None
        self._pressed = False
        self._long_fired = False
        self._hold_timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def start(self, on_tap: Callable[[], None], on_long_press: Callable[[], None]) -> None:
        if keyboard is None:
            raise RuntimeError("pynput is not installed")

        def _fire_long_press() -> None:
            with self._lock:
                if not self._pressed:
                    return
                self._long_fired = True
            on_long_press()

        def _on_press(key: object) -> None:
            if str(key) != self._hotkey_name:
                return
            with self._lock:
                if self._pressed:
                    return
                self._pressed = True
                self._long_fired = False
                self._hold_timer = threading.Timer(self._long_press_s, _fire_long_press)
                self._hold_timer.daemon = True
                self._hold_timer.start()

        def _on_release(key: object) -> None:
            if str(key) != self._hotkey_name:
                return
            with self._lock:
                if not self._pressed:
                    return
                self._pressed = False
                if self._hold_timer is not None:
                    self._hold_timer.cancel()
                    self._hold_timer = None
                was_long = self._long_fired
            if not was_long:
                on_tap()

        self._listener = keyboard.Listener(on_press=_on_press, on_release=_on_release)
        self._listener.start()

    def stop(self) -> None:
        if self._hold_timer is not None:
            self._hold_timer.cancel()
        listener = self._listener
        if listener is not None:
            listener.stop()
            self._listener = None
