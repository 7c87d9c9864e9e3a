"""Shared error codes and user-facing messages."""

from __future__ import annotations

from typing import Optional

CAPTURE_UNAVAILABLE = "CAPTURE_UNAVAILABLE"
RESUME_FAILED = "RESUME_FAILED"
FINALIZE_FAILED = "FINALIZE_FAILED"
FILE_TOO_SMALL = "FILE_TOO_SMALL"
ALREADY_IN_PROGRESS = "ALREADY_IN_PROGRESS"
TRANSPORT_ERROR = "TRANSPORT_ERROR"
SERVER_ERROR = "SERVER_ERROR"
MALFORMED_RESPONSE = "MALFORMED_RESPONSE"
FILESYSTEM_ERROR = "FILESYSTEM_ERROR"
NO_RECORDING = "NO_RECORDING"
AUTH_MISSING = "AUTH_MISSING"
PLAYBACK_FAILED = "PLAYBACK_FAILED"

ERROR_MESSAGES = {
    CAPTURE_UNAVAILABLE: "Recording failed to start",
    RESUME_FAILED: "Failed to resume recording",
    FINALIZE_FAILED: "Failed to finish recording",
    FILE_TOO_SMALL: "Recording too short (min 3 seconds)",
    ALREADY_IN_PROGRESS: "Upload already in progress",
    TRANSPORT_ERROR: "Network failed, please retry.",
    SERVER_ERROR: "Server error",
    MALFORMED_RESPONSE: "No file ID in response",
    FILESYSTEM_ERROR: "Cannot read file",
    NO_RECORDING: "No recording to upload",
    AUTH_MISSING: "API key is not configured.",
    PLAYBACK_FAILED: "Playback failed",
}


class UploadError(Exception):
    """A failed upload or workflow call, tagged with an error code."""

    def __init__(self, code: str, message: str = "", status: Optional[int] = None) -> None:
        super().__init__(message or ERROR_MESSAGES.get(code, code))
        self.code = code
        self.message = message or ERROR_MESSAGES.get(code, code)
        self.status = status
