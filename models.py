"""Core data models for the app."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


class RecordingState(str, Enum):
    IDLE = "IDLE"
    CAPTURING = "CAPTURING"
    PAUSED = "PAUSED"
    FINALIZED = "FINALIZED"


class UploadPhase(str, Enum):
    IDLE = "IDLE"
    READING_FILE = "READING_FILE"
    UPLOADING = "UPLOADING"
    SUBMITTING_WORKFLOW = "SUBMITTING_WORKFLOW"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class CaptureConfig:
    sample_rate: int = 16000
    channels: int = 1
    codec: str = "aac"
    quality: str = "medium"
    bitrate: int = 32000
    container: str = "m4a"


@dataclass
class RecordingSession:
    path: Path
    state: RecordingState = RecordingState.CAPTURING
    elapsed: float = 0.0


@dataclass(frozen=True)
class StoredRecording:
    path: Path
    created_at: datetime
    size_bytes: int

    @property
    def name(self) -> str:
        return self.path.name


@dataclass
class UploadResult:
    success: bool
    code: str = ""
    message: str = ""
    status: Optional[int] = None
    file_id: str = ""


@dataclass
class AudioProbe:
    duration_s: float
    sample_rate: int
    channels: int
    estimated: bool = False


@dataclass
class DeviceInfo:
    source: str
    platform: str
    os_version: str
    device_model: str
    app_version: Optional[str] = None
