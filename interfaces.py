"""Protocol interfaces used by SessionController."""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol

from models import CaptureConfig


class CaptureStream(Protocol):
    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def stop(self) -> None: ...

    def current_position(self) -> float: ...


class CaptureDevice(Protocol):
    def open(self, path: Path, config: CaptureConfig) -> CaptureStream: ...


class PlaybackStream(Protocol):
    duration: float
    finished: bool
    error: Optional[Exception]

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def stop(self) -> None: ...

    def current_position(self) -> float: ...


class PlaybackDevice(Protocol):
    def open(self, path: Path) -> PlaybackStream: ...


class ConfigStore(Protocol):
    def get_api_key(self) -> str: ...

    def set_api_key(self, key: str) -> None: ...

    def get_hotkey(self) -> str: ...

    def set_hotkey(self, hotkey: str) -> None: ...

    def get_keep_after_upload(self) -> bool: ...

    def set_keep_after_upload(self, keep: bool) -> None: ...
