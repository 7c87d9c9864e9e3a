"""Dify file-upload and workflow-run client.

An upload is two calls: the audio file is posted as multipart form data to
``/v1/files/upload`` which answers with a file ``id``; that id is then
referenced as a ``local_file`` audio input in a ``/v1/workflows/run`` call.
"""

from __future__ import annotations

import logging
import platform
from datetime import datetime, timezone
from importlib import metadata
from pathlib import Path
from typing import Any, List, Optional, Tuple

import requests

from audio_probe import probe_audio
from config import DEFAULT_USER, UPLOAD_ENDPOINT, WORKFLOW_ENDPOINT
from errors import AUTH_MISSING, MALFORMED_RESPONSE, SERVER_ERROR, TRANSPORT_ERROR, UploadError
from models import AudioProbe, CaptureConfig, DeviceInfo

logger = logging.getLogger(__name__)

AUDIO_MIME_TYPE = "audio/x-m4a"
DIST_NAME = "voice-memo-uploader"

FormPart = Tuple[str, Tuple[Optional[str], Any]]


def default_device_info(source: str = "Desktop Recorder") -> DeviceInfo:
    try:
        app_version: Optional[str] = metadata.version(DIST_NAME)
    except metadata.PackageNotFoundError:
        app_version = None
    return DeviceInfo(
        source=source,
        platform=platform.system() or "unknown",
        os_version=platform.release() or "unknown",
        device_model=platform.machine() or "unknown",
        app_version=app_version,
    )


def iso8601(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_upload_parts(
    filename: str,
    audio: bytes,
    probe: AudioProbe,
    created_at: datetime,
    device: DeviceInfo,
    user: str = DEFAULT_USER,
    config: CaptureConfig = CaptureConfig(),
) -> List[FormPart]:
    """Multipart parts in wire order; the file part comes first."""
    parts: List[FormPart] = [
        ("file", (filename, audio, AUDIO_MIME_TYPE)),
        ("user", (None, user)),
        ("duration", (None, f"{probe.duration_s:.2f}")),
        ("sample_rate", (None, str(int(probe.sample_rate)))),
        ("channels", (None, str(probe.channels))),
        ("format", (None, config.container)),
        ("codec", (None, config.codec)),
        ("bitrate", (None, str(config.bitrate))),
        ("source", (None, device.source)),
        ("timestamp", (None, iso8601(created_at))),
    ]
    if device.app_version:
        parts.append(("app_version", (None, device.app_version)))
    parts.extend(
        [
            ("platform", (None, device.platform)),
            ("os_version", (None, device.os_version)),
            ("device_model", (None, device.device_model)),
        ]
    )
    return parts


def build_workflow_payload(file_id: str, user: str = DEFAULT_USER) -> dict:
    return {
        "inputs": {
            "audio": {
                "transfer_method": "local_file",
                "upload_file_id": file_id,
                "type": "audio",
            }
        },
        "response_mode": "streaming",
        "user": user,
    }


class DifyClient:
    def __init__(
        self,
        api_key: str,
        upload_endpoint: str = UPLOAD_ENDPOINT,
        workflow_endpoint: str = WORKFLOW_ENDPOINT,
        user: str = DEFAULT_USER,
        device: Optional[DeviceInfo] = None,
        capture_config: CaptureConfig = CaptureConfig(),
        session: Optional[requests.Session] = None,
        request_timeout_s: Optional[float] = None,
    ) -> None:
        self._api_key = api_key
        self._upload_endpoint = upload_endpoint
        self._workflow_endpoint = workflow_endpoint
        self._user = user
        self._device = device or default_device_info()
        self._capture_config = capture_config
        self._session = session or requests.Session()
        self._request_timeout_s = request_timeout_s

    def set_api_key(self, api_key: str) -> None:
        self._api_key = api_key

    def upload_file(self, path: Path, audio: bytes, created_at: datetime) -> str:
        """Post the audio bytes and return the remote file id."""
        self._require_api_key()
        path = Path(path)
        probe = probe_audio(path, len(audio), self._capture_config)
        logger.info(
            "Uploading %s (%d bytes, %.2f s%s) to %s",
            path.name,
            len(audio),
            probe.duration_s,
            " estimated" if probe.estimated else "",
            self._upload_endpoint,
        )
        parts = build_upload_parts(
            path.name, audio, probe, created_at, self._device, self._user, self._capture_config
        )
        response = self._post(self._upload_endpoint, "File upload", files=parts)

        try:
            data = response.json()
        except ValueError:
            raise UploadError(MALFORMED_RESPONSE, "Upload response is not JSON")
        file_id = data.get("id") if isinstance(data, dict) else None
        if not isinstance(file_id, str):
            raise UploadError(MALFORMED_RESPONSE, "No file ID in response")
        logger.info("File uploaded with id %s", file_id)
        return file_id

    def run_workflow(self, file_id: str) -> None:
        self._require_api_key()
        logger.info("Sending file %s to workflow %s", file_id, self._workflow_endpoint)
        self._post(
            self._workflow_endpoint,
            "Workflow",
            json=build_workflow_payload(file_id, self._user),
        )
        logger.info("Workflow request completed")

    def _post(self, url: str, stage: str, **kwargs: Any) -> requests.Response:
        headers = {"Authorization": f"Bearer {self._api_key}"}
        try:
            response = self._session.post(
                url, headers=headers, timeout=self._request_timeout_s, **kwargs
            )
        except requests.RequestException as exc:
            logger.error("%s request failed: %s", stage, exc)
            raise UploadError(TRANSPORT_ERROR, f"{stage} failed: {exc}") from exc

        logger.info("%s response: HTTP %s", stage, response.status_code)
        logger.debug("%s response body: %s", stage, response.text[:2000])
        if not 200 <= response.status_code < 300:
            raise UploadError(
                SERVER_ERROR,
                f"{stage} failed: HTTP {response.status_code}",
                status=response.status_code,
            )
        return response

    def _require_api_key(self) -> None:
        if not self._api_key:
            raise UploadError(AUTH_MISSING)
