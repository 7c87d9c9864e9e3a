"""Single-flight, two-stage upload of a finished recording."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Optional, Protocol

from config import MIN_UPLOAD_BYTES
from errors import (
    ALREADY_IN_PROGRESS,
    ERROR_MESSAGES,
    FILE_TOO_SMALL,
    FILESYSTEM_ERROR,
    UploadError,
)
from models import UploadPhase, UploadResult
from store import LocalRecordingStore

logger = logging.getLogger(__name__)

PhaseCallback = Callable[[UploadPhase], None]


class UploadClient(Protocol):
    def upload_file(self, path: Path, audio: bytes, created_at) -> str: ...  # noqa: ANN001

    def run_workflow(self, file_id: str) -> None: ...


class UploadPipeline:
    def __init__(
        self,
        client: UploadClient,
        store: LocalRecordingStore,
        min_upload_bytes: int = MIN_UPLOAD_BYTES,
        on_phase: Optional[PhaseCallback] = None,
    ) -> None:
        self._client = client
        self._store = store
        self._min_upload_bytes = min_upload_bytes
        self._on_phase = on_phase
        self._flight = threading.Lock()
        self._phase = UploadPhase.IDLE
        self.last_result: Optional[UploadResult] = None

    @property
    def phase(self) -> UploadPhase:
        return self._phase

    @property
    def in_flight(self) -> bool:
        return self._flight.locked()

    def submit(
        self,
        path: Path,
        prepare: Optional[Callable[[Path], None]] = None,
    ) -> UploadResult:
        """Upload ``path`` and trigger the workflow.

        ``prepare`` runs before the size check; the session controller uses
        it to finalize the file when it is the active recording. A call made
        while another submission is running is rejected without side effects.
        """
        if not self._flight.acquire(blocking=False):
            logger.warning("Upload already in progress, rejecting %s", Path(path).name)
            return UploadResult(
                success=False,
                code=ALREADY_IN_PROGRESS,
                message=ERROR_MESSAGES[ALREADY_IN_PROGRESS],
            )
        try:
            result = self._run(Path(path), prepare)
        finally:
            self._flight.release()
        self.last_result = result
        return result

    def clear(self) -> None:
        """Return a finished attempt to IDLE once its result has been shown."""
        if self.in_flight:
            return
        if self._phase in (UploadPhase.SUCCEEDED, UploadPhase.FAILED):
            self._set_phase(UploadPhase.IDLE)

    def _run(self, path: Path, prepare: Optional[Callable[[Path], None]]) -> UploadResult:
        if prepare is not None:
            prepare(path)

        size = self._store.size_of(path)
        if size is None:
            logger.error("Cannot determine size of %s", path)
            return self._fail(FILESYSTEM_ERROR, ERROR_MESSAGES[FILESYSTEM_ERROR])
        if size < self._min_upload_bytes:
            logger.warning(
                "File too small to upload: %d bytes (minimum %d)", size, self._min_upload_bytes
            )
            return self._fail(FILE_TOO_SMALL, ERROR_MESSAGES[FILE_TOO_SMALL])

        self._set_phase(UploadPhase.READING_FILE)
        try:
            audio = self._store.read_bytes(path)
        except OSError as exc:
            logger.error("Cannot read %s: %s", path, exc)
            return self._fail(FILESYSTEM_ERROR, ERROR_MESSAGES[FILESYSTEM_ERROR])
        created_at = self._store.created_at(path)

        try:
            self._set_phase(UploadPhase.UPLOADING)
            file_id = self._client.upload_file(path, audio, created_at)
            self._set_phase(UploadPhase.SUBMITTING_WORKFLOW)
            self._client.run_workflow(file_id)
        except UploadError as exc:
            logger.error("Upload of %s failed: %s", path.name, exc.message)
            return self._fail(exc.code, exc.message, exc.status)

        self._set_phase(UploadPhase.SUCCEEDED)
        logger.info("Upload of %s succeeded", path.name)
        return UploadResult(success=True, file_id=file_id)

    def _fail(self, code: str, message: str, status: Optional[int] = None) -> UploadResult:
        self._set_phase(UploadPhase.FAILED)
        return UploadResult(success=False, code=code, message=message, status=status)

    def _set_phase(self, phase: UploadPhase) -> None:
        if phase == self._phase:
            return
        self._phase = phase
        if self._on_phase:
            self._on_phase(phase)
