"""Local directory holding recorded audio files."""

from __future__ import annotations

import logging
import os
import shutil
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from models import StoredRecording

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = ("wav", "m4a", "mp3", "aac")


def _created_timestamp(stat: os.stat_result) -> float:
    # st_birthtime only exists on macOS/BSD/Windows.
    return float(getattr(stat, "st_birthtime", stat.st_mtime))


class LocalRecordingStore:
    def __init__(self, directory: Path, extension: str = "m4a") -> None:
        self.directory = Path(directory)
        self.extension = extension
        self.directory.mkdir(parents=True, exist_ok=True)

    def new_recording_path(self) -> Path:
        return self.directory / f"recording_{time.time()}.{self.extension}"

    def list_audio_files(self) -> List[StoredRecording]:
        """Return every audio file in the store with its size and creation time.

        Files whose metadata cannot be read are skipped.
        """
        recordings: List[StoredRecording] = []
        for path in self.directory.iterdir():
            if path.name.startswith("."):
                continue
            if path.suffix.lower().lstrip(".") not in AUDIO_EXTENSIONS:
                continue
            try:
                stat = path.stat()
            except OSError as exc:
                logger.warning("Cannot stat %s: %s", path.name, exc)
                continue
            if not path.is_file():
                continue
            recordings.append(
                StoredRecording(
                    path=path,
                    created_at=datetime.fromtimestamp(_created_timestamp(stat)),
                    size_bytes=stat.st_size,
                )
            )
        return recordings

    def exists(self, path: Path) -> bool:
        return Path(path).is_file()

    def size_of(self, path: Path) -> Optional[int]:
        try:
            return Path(path).stat().st_size
        except OSError:
            return None

    def created_at(self, path: Path) -> datetime:
        try:
            return datetime.fromtimestamp(_created_timestamp(Path(path).stat()))
        except OSError:
            return datetime.now()

    def read_bytes(self, path: Path) -> bytes:
        return Path(path).read_bytes()

    def copy_as(self, source: Path, name: str) -> Path:
        """Copy ``source`` to ``<name>.<ext>`` in the store, keeping the original."""
        source = Path(source)
        if name in ("", ".", "..") or Path(name).name != name or "/" in name:
            raise ValueError(f"invalid recording name: {name!r}")
        target = self.directory / f"{name}{source.suffix}"
        if target.exists():
            raise FileExistsError(f"{target.name} already exists")
        shutil.copy2(source, target)
        return target

    def delete(self, path: Path) -> None:
        Path(path).unlink()

    def info(self, path: Path) -> Optional[Dict[str, Any]]:
        path = Path(path)
        try:
            stat = path.stat()
        except FileNotFoundError:
            logger.warning("File does not exist: %s", path)
            return None
        except OSError as exc:
            logger.warning("Failed to get recording info for %s: %s", path, exc)
            return None
        return {
            "path": str(path),
            "filename": path.name,
            "extension": path.suffix.lstrip("."),
            "size": stat.st_size,
            "created": datetime.fromtimestamp(_created_timestamp(stat)),
            "modified": datetime.fromtimestamp(stat.st_mtime),
        }
