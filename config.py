"""Simple JSON-based config store."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

UPLOAD_ENDPOINT = "https://api.dify.ai/v1/files/upload"
WORKFLOW_ENDPOINT = "https://api.dify.ai/v1/workflows/run"
DEFAULT_USER = "watch-app-user"

# 50 KiB is roughly 3 seconds of audio at 32 kbit/s.
MIN_UPLOAD_BYTES = 50 * 1024
STATUS_DISPLAY_S = 2.0
TICK_INTERVAL_S = 0.1
LONG_PRESS_S = 0.5


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "voice_memo" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_api_key(self) -> str:
        data = self._read_all()
        return str(data.get("api_key", "")) or os.getenv("DIFY_API_KEY", "")

    def set_api_key(self, key: str) -> None:
        self._set("api_key", key)

    def get_hotkey(self) -> str:
        data = self._read_all()
        return str(data.get("hotkey", "Key.alt_l"))

    def set_hotkey(self, hotkey: str) -> None:
        self._set("hotkey", hotkey)

    def get_recordings_dir(self) -> Path:
        data = self._read_all()
        value = data.get("recordings_dir")
        if value:
            return Path(str(value)).expanduser()
        return Path.home() / "VoiceMemos"

    def set_recordings_dir(self, path: Path) -> None:
        self._set("recordings_dir", str(path))

    def get_keep_after_upload(self) -> bool:
        data = self._read_all()
        return bool(data.get("keep_after_upload", True))

    def set_keep_after_upload(self, keep: bool) -> None:
        self._set("keep_after_upload", keep)

    def get_upload_endpoint(self) -> str:
        return str(self._read_all().get("upload_endpoint", UPLOAD_ENDPOINT))

    def get_workflow_endpoint(self) -> str:
        return str(self._read_all().get("workflow_endpoint", WORKFLOW_ENDPOINT))

    def get_user(self) -> str:
        return str(self._read_all().get("user", DEFAULT_USER))

    def get_source_label(self) -> str:
        return str(self._read_all().get("source_label", "Desktop Recorder"))

    def get_request_timeout_s(self) -> Optional[float]:
        value = self._read_all().get("request_timeout_s")
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid request_timeout_s: %r", value)
            return None

    def _set(self, key: str, value: Any) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            logger.warning("Config file %s is unreadable, using defaults", self._path)
            return {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
