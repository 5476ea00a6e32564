"""Compiled artifact cache.

Compiled templates are Python modules stored as ``<md5(source path)>.py``
under one directory. The name depends on the source *location* only, so
editing a template keeps its artifact path while moving it changes it.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from types import CodeType
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, Field

log = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".py"


class CacheStats(BaseModel):
    """Summary of the artifact directory, for operators."""

    path: str
    enabled: bool
    auto_reload: bool
    count: int = 0
    size: int = Field(default=0, description="Total size in bytes")
    oldest: Optional[datetime] = None
    newest: Optional[datetime] = None

    @property
    def size_human(self) -> str:
        size = float(self.size)
        for unit in ("B", "KB", "MB", "GB"):
            if size < 1024 or unit == "GB":
                return f"{size:.0f} {unit}" if unit == "B" else f"{size:.2f} {unit}"
            size /= 1024
        return f"{size:.2f} GB"


def atomic_write_text(path: Path, text: str) -> None:
    """Write text to ``path`` through a temporary file and ``os.replace``.

    Readers never observe a partially written artifact.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp:
            tmp.write(text)
            tmp.flush()
            os.fsync(tmp.fileno())
        os.replace(tmp_name, path)
    finally:
        if os.path.exists(tmp_name):
            os.remove(tmp_name)


class CompiledArtifactCache:
    """Stores compiled artifacts and decides when they are stale.

    Args:
        cache_dir: Directory holding the artifacts.
        auto_reload: Compare source and artifact mtimes on every lookup.
            When off, an existing artifact is used until it is cleared.
        enabled: When off every artifact is expired and nothing is written.
    """

    def __init__(self, cache_dir: Path | str, auto_reload: bool = False, enabled: bool = True):
        self.cache_dir = Path(cache_dir)
        self.auto_reload = auto_reload
        self.enabled = enabled
        # artifact path -> (mtime_ns, code object)
        self._code: Dict[str, Tuple[int, CodeType]] = {}

    def location_for(self, source_path: Path | str) -> Path:
        """Artifact path for a resolved source path."""
        digest = hashlib.md5(str(source_path).encode("utf-8")).hexdigest()
        return self.cache_dir / f"{digest}{ARTIFACT_SUFFIX}"

    def is_expired(self, source_path: Path | str, artifact_path: Path | None = None) -> bool:
        """Whether the artifact for ``source_path`` must be (re)compiled."""
        if not self.enabled:
            return True

        artifact_path = artifact_path or self.location_for(source_path)
        try:
            artifact_mtime = artifact_path.stat().st_mtime
        except OSError:
            return True

        if not self.auto_reload:
            return False

        try:
            source_mtime = Path(source_path).stat().st_mtime
        except OSError:
            return True
        return source_mtime > artifact_mtime

    def put(self, artifact_path: Path, code: str) -> bool:
        """Write an artifact. Returns False when disabled or on I/O failure."""
        if not self.enabled:
            return False

        self._code.pop(str(artifact_path), None)
        try:
            atomic_write_text(artifact_path, code)
        except OSError as e:
            log.warning(f"Could not write compiled view {artifact_path}: {e}")
            return False

        log.debug(f"Wrote compiled view {artifact_path}")
        return True

    def get(self, source_path: Path | str) -> Optional[str]:
        """Artifact source for ``source_path``, None when expired or unreadable."""
        artifact_path = self.location_for(source_path)
        if self.is_expired(source_path, artifact_path):
            return None
        try:
            return artifact_path.read_text(encoding="utf-8")
        except OSError as e:
            log.warning(f"Could not read compiled view {artifact_path}: {e}")
            return None

    def exists(self, source_path: Path | str) -> bool:
        return self.location_for(source_path).exists()

    def load(self, artifact_path: Path) -> CodeType:
        """Code object for an artifact, memoized until the file changes."""
        key = str(artifact_path)
        mtime = artifact_path.stat().st_mtime_ns

        cached = self._code.get(key)
        if cached is not None and cached[0] == mtime:
            return cached[1]

        code = compile(artifact_path.read_text(encoding="utf-8"), key, "exec")
        self._code[key] = (mtime, code)
        return code

    def forget(self, source_path: Path | str) -> bool:
        """Remove the artifact of one source. True when nothing is left behind."""
        artifact_path = self.location_for(source_path)
        self._code.pop(str(artifact_path), None)
        try:
            artifact_path.unlink()
        except FileNotFoundError:
            return True
        except OSError as e:
            log.warning(f"Could not remove compiled view {artifact_path}: {e}")
            return False
        return True

    def clear(self) -> int:
        """Remove every artifact. Returns the number of files removed."""
        self._code.clear()
        if not self.cache_dir.is_dir():
            return 0

        count = 0
        for artifact in self.cache_dir.glob(f"*{ARTIFACT_SUFFIX}"):
            if not artifact.is_file():
                continue
            try:
                artifact.unlink()
            except OSError as e:
                log.warning(f"Could not remove compiled view {artifact}: {e}")
                continue
            count += 1

        log.debug(f"Cleared {count} compiled view(s) from {self.cache_dir}")
        return count

    def stats(self) -> CacheStats:
        stats = CacheStats(
            path=str(self.cache_dir), enabled=self.enabled, auto_reload=self.auto_reload
        )
        if not self.cache_dir.is_dir():
            return stats

        mtimes = []
        for artifact in self.cache_dir.glob(f"*{ARTIFACT_SUFFIX}"):
            try:
                info = artifact.stat()
            except OSError:
                continue
            stats.count += 1
            stats.size += info.st_size
            mtimes.append(info.st_mtime)

        if mtimes:
            stats.oldest = datetime.fromtimestamp(min(mtimes), tz=timezone.utc)
            stats.newest = datetime.fromtimestamp(max(mtimes), tz=timezone.utc)
        return stats
